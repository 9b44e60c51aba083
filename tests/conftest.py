from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from backend.domain.models import Coordinates, Site, VehicleRate, VehicleType
from backend.repository.data_repository import DataRepository
from backend.services.availability_service import AvailabilityProber
from backend.services.broadcast_service import AvailabilityBroadcaster
from backend.services.capacity_service import CapacityLedger
from backend.services.expiry_service import ExpirySweeper
from backend.services.pubsub import SubscriptionHub
from backend.services.reservation_service import ReservationService
from backend.utils.clock import Clock
from backend.utils.config import Settings, get_settings
from backend.utils.locks import KeyedLockRegistry


T0 = datetime(2026, 3, 2, 4, 30, tzinfo=timezone.utc)

CAR_RATE = VehicleRate(
    first_hour=Decimal("50"),
    additional_hour=Decimal("30"),
    daily_cap=Decimal("300"),
)
BIKE_RATE = VehicleRate(
    first_hour=Decimal("20"),
    additional_hour=Decimal("10"),
    daily_cap=Decimal("100"),
)


class ManualClock(Clock):
    """Clock whose current instant only moves when a test moves it."""

    def __init__(self, settings: Settings, start: datetime = T0) -> None:
        super().__init__(settings)
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, instant: datetime) -> None:
        self._now = instant

    def advance(self, **delta: float) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now


@dataclass
class Engine:
    settings: Settings
    clock: ManualClock
    repository: DataRepository
    hub: SubscriptionHub
    ledger: CapacityLedger
    prober: AvailabilityProber
    locks: KeyedLockRegistry
    reservations: ReservationService
    sweeper: ExpirySweeper

    def add_site(self, cars: int = 1, bikes: int = 1, name: str = "Test Lot") -> Site:
        return self.repository.create_site(
            name=name,
            address="1 Test Road, Chennai",
            location=Coordinates(latitude=13.0417, longitude=80.2338),
            total_spots={VehicleType.CAR: cars, VehicleType.BIKE: bikes},
            rates={VehicleType.CAR: CAR_RATE, VehicleType.BIKE: BIKE_RATE},
        )


def build_test_settings(tmp_path, filename: str, **overrides) -> Settings:
    get_settings.cache_clear()
    base = get_settings()
    defaults = {
        "database_path": tmp_path / filename,
        "display_timezone": "Asia/Kolkata",
        "sweeper_enabled": False,
        "seed_demo_sites": False,
        "access_key": "test-access-key",
        "google_maps_api_key": None,
    }
    return replace(base, **{**defaults, **overrides})


@pytest.fixture
def settings(tmp_path) -> Settings:
    return build_test_settings(tmp_path, "engine.db")


@pytest.fixture
def engine(settings) -> Engine:
    clock = ManualClock(settings)
    repository = DataRepository(settings)
    repository.initialize_database()
    hub = SubscriptionHub()
    hub.open()
    prober = AvailabilityProber(repository=repository, settings=settings)
    ledger = CapacityLedger(repository=repository, clock=clock, prober=prober, settings=settings)
    locks = KeyedLockRegistry()
    reservations = ReservationService(
        repository=repository,
        ledger=ledger,
        prober=prober,
        broadcaster=AvailabilityBroadcaster(transport=hub, clock=clock),
        locks=locks,
        clock=clock,
        settings=settings,
    )
    sweeper = ExpirySweeper(
        reservation_service=reservations,
        repository=repository,
        clock=clock,
        settings=settings,
    )
    yield Engine(
        settings=settings,
        clock=clock,
        repository=repository,
        hub=hub,
        ledger=ledger,
        prober=prober,
        locks=locks,
        reservations=reservations,
        sweeper=sweeper,
    )
    sweeper.stop()
    hub.close()
