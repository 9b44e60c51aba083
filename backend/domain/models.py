"""Domain models for sites, reservations and capacity snapshots."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class VehicleType(str, Enum):
    CAR = "car"
    BIKE = "bike"


class ReservationStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"


OUTSTANDING_STATUSES = (ReservationStatus.PENDING, ReservationStatus.ACTIVE)
TERMINAL_STATUSES = (ReservationStatus.COMPLETED, ReservationStatus.CANCELLED)


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class VehicleRate:
    first_hour: Decimal
    additional_hour: Decimal
    daily_cap: Decimal


@dataclass(frozen=True)
class Site:
    site_id: int
    name: str
    address: str
    location: Coordinates
    total_spots: dict[VehicleType, int]
    rates: dict[VehicleType, VehicleRate]

    def offers(self, vehicle_type: VehicleType) -> bool:
        return vehicle_type in self.total_spots and vehicle_type in self.rates


@dataclass(frozen=True)
class Reservation:
    reservation_id: int
    user_id: str
    site_id: int
    vehicle_type: VehicleType
    vehicle_plate: Optional[str]
    start_time: datetime
    end_time: Optional[datetime]
    max_end_time: Optional[datetime]
    status: ReservationStatus
    fee: Optional[Decimal]
    payment_status: PaymentStatus = PaymentStatus.UNPAID


@dataclass(frozen=True)
class OccupancySnapshot:
    site_id: int
    vehicle_type: VehicleType
    total_spots: int
    active_count: int
    pending_count: int
    as_of: datetime

    @property
    def occupied(self) -> int:
        return self.active_count + self.pending_count

    @property
    def available(self) -> int:
        return self.total_spots - self.occupied


@dataclass(frozen=True)
class AvailabilityCheck:
    snapshot: OccupancySnapshot
    next_available: Optional[datetime] = None
    next_available_verified: bool = False

    @property
    def is_available(self) -> bool:
        return self.snapshot.available > 0


@dataclass(frozen=True)
class FeeBreakdown:
    duration_hours: Decimal
    base_fee: Decimal
    late_fee: Decimal
    total_fee: Decimal
    is_late: bool


@dataclass(frozen=True)
class AvailabilityUpdate:
    site_id: int
    vehicle_type: VehicleType
    available_spots: int
    occupied_active: int
    occupied_pending: int
    as_of: datetime

    @classmethod
    def from_snapshot(cls, snapshot: OccupancySnapshot) -> "AvailabilityUpdate":
        return cls(
            site_id=snapshot.site_id,
            vehicle_type=snapshot.vehicle_type,
            available_spots=snapshot.available,
            occupied_active=snapshot.active_count,
            occupied_pending=snapshot.pending_count,
            as_of=snapshot.as_of,
        )


@dataclass(frozen=True)
class CreatedReservation:
    reservation: Reservation
    warning: Optional[str] = None


@dataclass(frozen=True)
class CompletedReservation:
    reservation: Reservation
    fee: FeeBreakdown
    warning: Optional[str] = None


@dataclass(frozen=True)
class SiteAvailability:
    site: Site
    snapshots: dict[VehicleType, OccupancySnapshot]
    distance_km: Optional[float] = None
