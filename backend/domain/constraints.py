"""Domain-level validation rules for sites, reservations and engine tuning."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from backend.domain.errors import InvalidStateError, ReservationValidationError
from backend.domain.models import TERMINAL_STATUSES, ReservationStatus, Site, VehicleType
from backend.utils.config import Settings


ALLOWED_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.PENDING: frozenset(
        {ReservationStatus.ACTIVE, ReservationStatus.CANCELLED}
    ),
    ReservationStatus.ACTIVE: frozenset({ReservationStatus.COMPLETED}),
    ReservationStatus.COMPLETED: frozenset(),
    ReservationStatus.CANCELLED: frozenset(),
}

MAX_PLATE_LENGTH = 16


@dataclass(frozen=True)
class EngineConfig:
    start_grace_minutes: int
    pending_expiry_minutes: int
    probe_step_minutes: int
    probe_max_steps: int
    fallback_retry_minutes: int
    late_fee_multiplier: Decimal
    sweep_interval_seconds: float

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineConfig":
        try:
            multiplier = Decimal(settings.late_fee_multiplier)
        except InvalidOperation as exc:
            raise ValueError("late_fee_multiplier must be a decimal number") from exc
        config = cls(
            start_grace_minutes=settings.start_grace_minutes,
            pending_expiry_minutes=settings.pending_expiry_minutes,
            probe_step_minutes=settings.probe_step_minutes,
            probe_max_steps=settings.probe_max_steps,
            fallback_retry_minutes=settings.fallback_retry_minutes,
            late_fee_multiplier=multiplier,
            sweep_interval_seconds=settings.sweep_interval_seconds,
        )
        validate_engine_config(config)
        return config


def validate_engine_config(config: EngineConfig) -> None:
    if config.start_grace_minutes < 0:
        raise ValueError("start_grace_minutes must be >= 0")
    if config.pending_expiry_minutes < 0:
        raise ValueError("pending_expiry_minutes must be >= 0")
    if config.probe_step_minutes <= 0:
        raise ValueError("probe_step_minutes must be > 0")
    if config.probe_max_steps <= 0:
        raise ValueError("probe_max_steps must be > 0")
    if config.fallback_retry_minutes <= 0:
        raise ValueError("fallback_retry_minutes must be > 0")
    if config.late_fee_multiplier < 0:
        raise ValueError("late_fee_multiplier must be >= 0")
    if config.sweep_interval_seconds <= 0:
        raise ValueError("sweep_interval_seconds must be > 0")


def ensure_transition(current: ReservationStatus, target: ReservationStatus) -> None:
    if current in TERMINAL_STATUSES:
        raise InvalidStateError(
            f"Reservation is already {current.value}",
            current_status=current.value,
        )
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStateError(
            f"Reservation cannot move from {current.value} to {target.value}",
            current_status=current.value,
        )


def parse_vehicle_type(value: str | VehicleType) -> VehicleType:
    if isinstance(value, VehicleType):
        return value
    try:
        return VehicleType(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(item.value for item in VehicleType)
        raise ReservationValidationError(
            f"Invalid vehicle type {value!r}; expected one of: {allowed}"
        ) from exc


def normalize_plate(plate: str | None) -> str | None:
    if plate is None:
        return None
    cleaned = " ".join(plate.split()).upper()
    if not cleaned:
        return None
    if len(cleaned) > MAX_PLATE_LENGTH:
        raise ReservationValidationError(
            f"vehicle plate must be at most {MAX_PLATE_LENGTH} characters"
        )
    return cleaned


def validate_site(site: Site) -> None:
    if not site.name.strip():
        raise ReservationValidationError("site name must be non-empty")
    if not -90.0 <= site.location.latitude <= 90.0:
        raise ReservationValidationError("latitude must be within [-90, 90]")
    if not -180.0 <= site.location.longitude <= 180.0:
        raise ReservationValidationError("longitude must be within [-180, 180]")
    for vehicle_type, spots in site.total_spots.items():
        if spots < 0:
            raise ReservationValidationError(
                f"total spots for {vehicle_type.value} must be >= 0"
            )
        if vehicle_type not in site.rates:
            raise ReservationValidationError(
                f"missing rate schedule for {vehicle_type.value}"
            )
    for vehicle_type, rate in site.rates.items():
        if min(rate.first_hour, rate.additional_hour, rate.daily_cap) < 0:
            raise ReservationValidationError(
                f"rates for {vehicle_type.value} must be non-negative"
            )
