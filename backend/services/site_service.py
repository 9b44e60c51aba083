"""Site lookup with live availability, nearby search and destination search."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from geopy.distance import geodesic

from backend.domain.constraints import validate_site
from backend.domain.errors import DependencyFailureError, ReservationValidationError
from backend.domain.models import Coordinates, Site, SiteAvailability, VehicleRate, VehicleType
from backend.repository.data_repository import DataRepository
from backend.services.capacity_service import CapacityLedger
from backend.services.geocoding_service import GeocodedAddress, Geocoder
from backend.utils.clock import Clock
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class DestinationSearchResult:
    destination: GeocodedAddress
    sites: list[SiteAvailability]


def distance_km(origin: Coordinates, target: Coordinates) -> float:
    return float(
        geodesic(
            (origin.latitude, origin.longitude),
            (target.latitude, target.longitude),
        ).km
    )


class SiteService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        ledger: Optional[CapacityLedger] = None,
        geocoder: Optional[Geocoder] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or Clock(self._settings)
        self._ledger = ledger or CapacityLedger(
            repository=self._repository,
            clock=self._clock,
            settings=self._settings,
        )
        self._geocoder = geocoder

    def register_site(
        self,
        *,
        name: str,
        address: str,
        location: Coordinates,
        total_spots: Mapping[VehicleType, int],
        rates: Mapping[VehicleType, VehicleRate],
    ) -> Site:
        candidate = Site(
            site_id=0,
            name=name,
            address=address,
            location=location,
            total_spots=dict(total_spots),
            rates=dict(rates),
        )
        validate_site(candidate)
        site = self._repository.create_site(
            name=name,
            address=address,
            location=location,
            total_spots=total_spots,
            rates=rates,
        )
        logger.info("Registered site %s (%s)", site.site_id, site.name)
        return site

    def _with_availability(self, site: Site, distance: Optional[float] = None) -> SiteAvailability:
        now = self._clock.now()
        return SiteAvailability(
            site=site,
            snapshots={
                vehicle_type: self._ledger.occupancy(site, vehicle_type, now)
                for vehicle_type in site.total_spots
            },
            distance_km=distance,
        )

    def get_site(self, site_id: int) -> SiteAvailability:
        return self._with_availability(self._ledger.require_site(site_id))

    def find_nearby(
        self,
        origin: Coordinates,
        radius_km: Optional[float] = None,
    ) -> list[SiteAvailability]:
        """Sites within ``radius_km`` of ``origin``, closest first."""
        radius = self._settings.nearby_default_radius_km if radius_km is None else radius_km
        if radius <= 0:
            raise ReservationValidationError("radius_km must be > 0")
        if not (-90.0 <= origin.latitude <= 90.0 and -180.0 <= origin.longitude <= 180.0):
            raise ReservationValidationError("Latitude and longitude are out of range")

        in_range: list[tuple[float, Site]] = []
        for site in self._repository.list_sites():
            distance = distance_km(origin, site.location)
            if distance <= radius:
                in_range.append((distance, site))
        in_range.sort(key=lambda item: (item[0], item[1].site_id))
        return [
            self._with_availability(site, distance=round(distance, 1))
            for distance, site in in_range
        ]

    def search_by_destination(
        self,
        address: str,
        radius_km: Optional[float] = None,
    ) -> DestinationSearchResult:
        if self._geocoder is None:
            raise DependencyFailureError("Destination search is not configured")
        destination = self._geocoder.geocode(address)
        logger.info(
            "Geocoded %r to (%s, %s)",
            destination.query,
            destination.coordinates.latitude,
            destination.coordinates.longitude,
        )
        return DestinationSearchResult(
            destination=destination,
            sites=self.find_nearby(destination.coordinates, radius_km),
        )
