"""Forward probe for the next instant at which a spot frees up."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from backend.domain.models import Site, VehicleType
from backend.repository.data_repository import DataRepository
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class ProbeResult:
    instant: datetime
    verified: bool


class AvailabilityProber:
    """Bounded linear scan over fixed increments.

    The scan does not lock anything, so a result can be stale by the time
    the caller acts on it. Treat it as a hint.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._step = timedelta(minutes=self._settings.probe_step_minutes)
        self._max_steps = self._settings.probe_max_steps
        self._fallback = timedelta(minutes=self._settings.fallback_retry_minutes)

    def find_next_available(
        self,
        site: Site,
        vehicle_type: VehicleType,
        from_instant: datetime,
    ) -> Optional[datetime]:
        total_spots = site.total_spots.get(vehicle_type, 0)
        candidate = from_instant
        for _ in range(self._max_steps):
            candidate = candidate + self._step
            occupying = self._repository.count_occupying_at(site.site_id, vehicle_type, candidate)
            if occupying < total_spots:
                return candidate
        logger.info(
            "No free %s spot at site %s within %s steps of %s",
            vehicle_type.value,
            site.site_id,
            self._max_steps,
            from_instant.isoformat(),
        )
        return None

    def fallback_instant(self, from_instant: datetime) -> datetime:
        """Heuristic retry hint used when the scan is exhausted; not a capacity check."""
        return from_instant + self._fallback

    def suggest(self, site: Site, vehicle_type: VehicleType, from_instant: datetime) -> ProbeResult:
        found = self.find_next_available(site, vehicle_type, from_instant)
        if found is not None:
            return ProbeResult(instant=found, verified=True)
        return ProbeResult(instant=self.fallback_instant(from_instant), verified=False)
