from __future__ import annotations

from datetime import timedelta

import pytest

from backend.domain.errors import ReservationValidationError, SiteNotFoundError
from backend.domain.models import Coordinates, ReservationStatus, VehicleType

from conftest import CAR_RATE


def test_empty_site_reports_full_capacity(engine) -> None:
    site = engine.add_site(cars=3)
    snapshot = engine.ledger.occupancy(site, VehicleType.CAR)

    assert snapshot.total_spots == 3
    assert snapshot.active_count == 0
    assert snapshot.pending_count == 0
    assert snapshot.available == 3
    assert snapshot.as_of == engine.clock.now()


def test_active_reservation_occupies_until_it_ends(engine) -> None:
    site = engine.add_site(cars=2)
    engine.reservations.create_reservation(
        user_id="u1", site_id=site.site_id, vehicle_type="car", immediate=True
    )

    snapshot = engine.ledger.occupancy(site, VehicleType.CAR)
    assert snapshot.active_count == 1
    assert snapshot.available == 1
    # Bikes are counted separately.
    assert engine.ledger.available(site, VehicleType.BIKE) == 1


def test_pending_reservation_occupies_from_its_scheduled_start(engine) -> None:
    site = engine.add_site(cars=1)
    start = engine.clock.now() + timedelta(hours=2)
    engine.reservations.create_reservation(
        user_id="u1", site_id=site.site_id, vehicle_type="car", requested_start=start
    )

    assert engine.ledger.available(site, VehicleType.CAR) == 1
    assert engine.ledger.available(site, VehicleType.CAR, start - timedelta(seconds=1)) == 1
    assert engine.ledger.available(site, VehicleType.CAR, start) == 0
    assert engine.ledger.available(site, VehicleType.CAR, start + timedelta(days=1)) == 0


def test_occupancy_can_exclude_pending(engine) -> None:
    site = engine.add_site(cars=1)
    start = engine.clock.now() + timedelta(minutes=30)
    engine.reservations.create_reservation(
        user_id="u1", site_id=site.site_id, vehicle_type="car", requested_start=start
    )

    snapshot = engine.ledger.occupancy(site, VehicleType.CAR, start, include_pending=False)
    assert snapshot.pending_count == 0
    assert snapshot.available == 1


def test_completed_and_cancelled_reservations_free_their_spot(engine) -> None:
    site = engine.add_site(cars=1)
    created = engine.reservations.create_reservation(
        user_id="u1", site_id=site.site_id, vehicle_type="car", immediate=True
    )
    engine.clock.advance(hours=1)
    engine.reservations.end_reservation(created.reservation.reservation_id, "u1")
    assert engine.ledger.available(site, VehicleType.CAR) == 1

    scheduled = engine.reservations.create_reservation(
        user_id="u1",
        site_id=site.site_id,
        vehicle_type="car",
        requested_start=engine.clock.now(),
    )
    assert engine.ledger.available(site, VehicleType.CAR) == 0
    engine.reservations.cancel_reservation(scheduled.reservation.reservation_id, "u1")
    assert engine.ledger.available(site, VehicleType.CAR) == 1

    history = engine.reservations.list_reservations("u1")
    assert [item.status for item in history] == [
        ReservationStatus.CANCELLED,
        ReservationStatus.COMPLETED,
    ]


def test_check_availability_returns_no_suggestion_when_free(engine) -> None:
    site = engine.add_site(cars=1)
    result = engine.ledger.check_availability(site.site_id, "car")

    assert result.is_available is True
    assert result.next_available is None


def test_check_availability_suggests_time_when_full(engine) -> None:
    site = engine.add_site(cars=1)
    start = engine.clock.now() + timedelta(hours=1)
    engine.reservations.create_reservation(
        user_id="u1", site_id=site.site_id, vehicle_type="car", requested_start=start
    )

    result = engine.ledger.check_availability(site.site_id, VehicleType.CAR, start)
    assert result.is_available is False
    assert result.next_available is not None
    assert result.next_available >= start
    # The pending booking never ends, so the probe runs out and falls back.
    assert result.next_available_verified is False
    assert result.next_available == start + timedelta(minutes=60)


def test_unknown_site_raises_not_found(engine) -> None:
    with pytest.raises(SiteNotFoundError):
        engine.ledger.check_availability(999, "car")


def test_vehicle_type_not_offered_raises_validation(engine) -> None:
    site = engine.repository.create_site(
        name="Car Only",
        address="",
        location=Coordinates(latitude=13.0, longitude=80.2),
        total_spots={VehicleType.CAR: 1},
        rates={VehicleType.CAR: CAR_RATE},
    )
    with pytest.raises(ReservationValidationError):
        engine.ledger.check_availability(site.site_id, "bike")


def test_zero_capacity_is_always_full(engine) -> None:
    site = engine.add_site(cars=0)
    result = engine.ledger.check_availability(site.site_id, "car")
    assert result.is_available is False
    assert result.snapshot.available == 0
