"""Capacity ledger: occupancy and remaining spots at an instant."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from backend.domain.constraints import parse_vehicle_type
from backend.domain.errors import ReservationValidationError, SiteNotFoundError
from backend.domain.models import AvailabilityCheck, OccupancySnapshot, Site, VehicleType
from backend.repository.data_repository import DataRepository
from backend.services.availability_service import AvailabilityProber, ProbeResult
from backend.utils.clock import Clock
from backend.utils.config import Settings, get_settings


class CapacityLedger:
    """Read-only view of how many spots are taken at a given instant.

    Active reservations occupy a spot from their start until they end.
    Pending reservations occupy a spot from their scheduled start onward,
    even before the driver arrives, so a scheduled booking cannot be
    double-sold.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        clock: Optional[Clock] = None,
        prober: Optional[AvailabilityProber] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or Clock(self._settings)
        self._prober = prober or AvailabilityProber(
            repository=self._repository,
            settings=self._settings,
        )

    def require_site(self, site_id: int) -> Site:
        site = self._repository.get_site(site_id)
        if site is None:
            raise SiteNotFoundError(site_id)
        return site

    @staticmethod
    def require_vehicle_type(site: Site, vehicle_type: VehicleType | str) -> VehicleType:
        parsed = parse_vehicle_type(vehicle_type)
        if not site.offers(parsed):
            raise ReservationValidationError(
                f"Site {site.site_id} does not offer {parsed.value} parking"
            )
        return parsed

    def occupancy(
        self,
        site: Site,
        vehicle_type: VehicleType,
        at: Optional[datetime] = None,
        include_pending: bool = True,
    ) -> OccupancySnapshot:
        instant = at or self._clock.now()
        active_count = self._repository.count_active_at(site.site_id, vehicle_type, instant)
        pending_count = 0
        if include_pending:
            pending_count = self._repository.count_pending_at(site.site_id, vehicle_type, instant)
        return OccupancySnapshot(
            site_id=site.site_id,
            vehicle_type=vehicle_type,
            total_spots=site.total_spots.get(vehicle_type, 0),
            active_count=active_count,
            pending_count=pending_count,
            as_of=instant,
        )

    def available(
        self,
        site: Site,
        vehicle_type: VehicleType,
        at: Optional[datetime] = None,
    ) -> int:
        return self.occupancy(site, vehicle_type, at).available

    def check_availability(
        self,
        site_id: int,
        vehicle_type: VehicleType | str,
        at: Optional[datetime] = None,
    ) -> AvailabilityCheck:
        """Occupancy at ``at`` plus, when full, the probed next free instant."""
        site = self.require_site(site_id)
        parsed_type = self.require_vehicle_type(site, vehicle_type)
        instant = self._clock.to_instant(at) if at is not None else self._clock.now()
        snapshot = self.occupancy(site, parsed_type, instant)
        if snapshot.available > 0:
            return AvailabilityCheck(snapshot=snapshot)

        probe = self._prober.suggest(site, parsed_type, instant)
        return AvailabilityCheck(
            snapshot=snapshot,
            next_available=probe.instant,
            next_available_verified=probe.verified,
        )

    def next_available(
        self,
        site_id: int,
        vehicle_type: VehicleType | str,
        from_instant: Optional[datetime] = None,
    ) -> ProbeResult:
        site = self.require_site(site_id)
        parsed_type = self.require_vehicle_type(site, vehicle_type)
        instant = (
            self._clock.to_instant(from_instant) if from_instant is not None else self._clock.now()
        )
        return self._prober.suggest(site, parsed_type, instant)
