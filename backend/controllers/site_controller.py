"""HTTP controller layer for site lookup and capacity queries."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from backend.controllers.dependencies import (
    get_capacity_ledger,
    get_clock,
    get_site_service,
    to_http_exception,
)
from backend.domain.errors import ReservationEngineError
from backend.domain.models import Coordinates, OccupancySnapshot, SiteAvailability, VehicleType
from backend.services.capacity_service import CapacityLedger
from backend.services.site_service import SiteService
from backend.utils.clock import Clock
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/sites", tags=["sites"])


class RateResponse(BaseModel):
    first_hour: Decimal = Field(ge=0)
    additional_hour: Decimal = Field(ge=0)
    daily_cap: Decimal = Field(ge=0)


class OccupancyResponse(BaseModel):
    vehicle_type: VehicleType
    total_spots: int = Field(ge=0)
    available_spots: int
    occupied_active: int = Field(ge=0)
    occupied_pending: int = Field(ge=0)


class SiteResponse(BaseModel):
    id: int
    name: str
    address: str
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    rates: dict[VehicleType, RateResponse]
    availability: list[OccupancyResponse]
    distance_km: Optional[float] = None
    current_time_formatted: str


class AvailabilityResponse(BaseModel):
    available: bool
    available_spots: int
    total_capacity: int = Field(ge=0)
    occupied_active: int = Field(ge=0)
    occupied_pending: int = Field(ge=0)
    requested_time: datetime
    requested_time_formatted: str
    next_available: Optional[datetime] = None
    next_available_formatted: Optional[str] = None
    next_available_verified: Optional[bool] = None


class NextAvailableResponse(BaseModel):
    from_time: datetime
    next_available: datetime
    next_available_formatted: str
    next_available_verified: bool


class DestinationResponse(BaseModel):
    query: str
    formatted_address: str
    latitude: float
    longitude: float


class DestinationSearchResponse(BaseModel):
    destination: DestinationResponse
    sites: list[SiteResponse]


def _to_occupancy(snapshot: OccupancySnapshot) -> OccupancyResponse:
    return OccupancyResponse(
        vehicle_type=snapshot.vehicle_type,
        total_spots=snapshot.total_spots,
        available_spots=snapshot.available,
        occupied_active=snapshot.active_count,
        occupied_pending=snapshot.pending_count,
    )


def to_site_response(item: SiteAvailability, clock: Clock) -> SiteResponse:
    site = item.site
    return SiteResponse(
        id=site.site_id,
        name=site.name,
        address=site.address,
        latitude=site.location.latitude,
        longitude=site.location.longitude,
        rates={
            vehicle_type: RateResponse(
                first_hour=rate.first_hour,
                additional_hour=rate.additional_hour,
                daily_cap=rate.daily_cap,
            )
            for vehicle_type, rate in site.rates.items()
        },
        availability=[
            _to_occupancy(item.snapshots[vehicle_type])
            for vehicle_type in sorted(item.snapshots, key=lambda value: value.value)
        ],
        distance_km=item.distance_km,
        current_time_formatted=clock.format_display(clock.now()),
    )


@router.get("/nearby", response_model=list[SiteResponse])
def get_nearby_sites(
    lat: float = Query(ge=-90.0, le=90.0),
    lng: float = Query(ge=-180.0, le=180.0),
    radius_km: Optional[float] = Query(default=None, gt=0.0),
    service: SiteService = Depends(get_site_service),
    clock: Clock = Depends(get_clock),
) -> list[SiteResponse]:
    try:
        sites = service.find_nearby(Coordinates(latitude=lat, longitude=lng), radius_km)
    except ReservationEngineError as exc:
        raise to_http_exception(exc) from exc
    return [to_site_response(item, clock) for item in sites]


@router.get("/search", response_model=DestinationSearchResponse)
def search_sites_by_destination(
    address: str = Query(min_length=1),
    radius_km: Optional[float] = Query(default=None, gt=0.0),
    service: SiteService = Depends(get_site_service),
    clock: Clock = Depends(get_clock),
) -> DestinationSearchResponse:
    try:
        result = service.search_by_destination(address, radius_km)
    except ReservationEngineError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - unexpected failure
        logger.exception("Unexpected destination search failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to search by destination",
        ) from exc
    return DestinationSearchResponse(
        destination=DestinationResponse(
            query=result.destination.query,
            formatted_address=result.destination.formatted_address,
            latitude=result.destination.coordinates.latitude,
            longitude=result.destination.coordinates.longitude,
        ),
        sites=[to_site_response(item, clock) for item in result.sites],
    )


@router.get("/{site_id}", response_model=SiteResponse)
def get_site(
    site_id: int,
    service: SiteService = Depends(get_site_service),
    clock: Clock = Depends(get_clock),
) -> SiteResponse:
    try:
        item = service.get_site(site_id)
    except ReservationEngineError as exc:
        raise to_http_exception(exc) from exc
    return to_site_response(item, clock)


@router.get("/{site_id}/availability", response_model=AvailabilityResponse)
def check_availability(
    site_id: int,
    vehicle_type: VehicleType,
    at: Optional[datetime] = None,
    ledger: CapacityLedger = Depends(get_capacity_ledger),
    clock: Clock = Depends(get_clock),
) -> AvailabilityResponse:
    """Occupancy now or at a future instant; suggests a later time when full."""
    try:
        result = ledger.check_availability(site_id, vehicle_type, at)
    except ReservationEngineError as exc:
        raise to_http_exception(exc) from exc

    snapshot = result.snapshot
    response = AvailabilityResponse(
        available=result.is_available,
        available_spots=snapshot.available,
        total_capacity=snapshot.total_spots,
        occupied_active=snapshot.active_count,
        occupied_pending=snapshot.pending_count,
        requested_time=snapshot.as_of,
        requested_time_formatted=clock.format_display(snapshot.as_of),
    )
    if not result.is_available and result.next_available is not None:
        response.next_available = result.next_available
        response.next_available_formatted = clock.format_display(result.next_available)
        response.next_available_verified = result.next_available_verified
    return response


@router.get("/{site_id}/next-available", response_model=NextAvailableResponse)
def get_next_available(
    site_id: int,
    vehicle_type: VehicleType,
    from_time: Optional[datetime] = None,
    ledger: CapacityLedger = Depends(get_capacity_ledger),
    clock: Clock = Depends(get_clock),
) -> NextAvailableResponse:
    try:
        origin = clock.to_instant(from_time) if from_time is not None else clock.now()
        probe = ledger.next_available(site_id, vehicle_type, origin)
    except ReservationEngineError as exc:
        raise to_http_exception(exc) from exc
    return NextAvailableResponse(
        from_time=origin,
        next_available=probe.instant,
        next_available_formatted=clock.format_display(probe.instant),
        next_available_verified=probe.verified,
    )
