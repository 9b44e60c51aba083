"""Tests for engine tuning validation and reservation state rules."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest

from backend.domain.constraints import (
    EngineConfig,
    ensure_transition,
    normalize_plate,
    parse_vehicle_type,
    validate_engine_config,
    validate_site,
)
from backend.domain.errors import InvalidStateError, ReservationValidationError
from backend.domain.models import Coordinates, ReservationStatus, Site, VehicleType

from conftest import BIKE_RATE, CAR_RATE


def valid_config(**overrides) -> EngineConfig:
    """Return a valid baseline EngineConfig, optionally overriding fields."""
    defaults = {
        "start_grace_minutes": 15,
        "pending_expiry_minutes": 15,
        "probe_step_minutes": 30,
        "probe_max_steps": 48,
        "fallback_retry_minutes": 60,
        "late_fee_multiplier": Decimal("1.5"),
        "sweep_interval_seconds": 60.0,
    }
    defaults.update(overrides)
    return EngineConfig(**defaults)


def valid_site(**overrides) -> Site:
    defaults = {
        "site_id": 1,
        "name": "T Nagar Parking Complex",
        "address": "Pondy Bazaar, T Nagar, Chennai",
        "location": Coordinates(latitude=13.0417, longitude=80.2338),
        "total_spots": {VehicleType.CAR: 1, VehicleType.BIKE: 1},
        "rates": {VehicleType.CAR: CAR_RATE, VehicleType.BIKE: BIKE_RATE},
    }
    defaults.update(overrides)
    return Site(**defaults)


# --- Baseline pass ---

def test_valid_config_passes() -> None:
    """A fully valid config must not raise."""
    validate_engine_config(valid_config())


def test_config_from_settings_parses_multiplier(settings) -> None:
    config = EngineConfig.from_settings(settings)
    assert config.late_fee_multiplier == Decimal("1.5")
    assert config.start_grace_minutes == 15


def test_config_from_settings_rejects_non_numeric_multiplier(settings) -> None:
    with pytest.raises(ValueError):
        EngineConfig.from_settings(replace(settings, late_fee_multiplier="lots"))


# --- Tuning bounds ---

@pytest.mark.parametrize(
    "field, value",
    [
        ("start_grace_minutes", -1),
        ("pending_expiry_minutes", -1),
        ("probe_step_minutes", 0),
        ("probe_max_steps", 0),
        ("fallback_retry_minutes", 0),
        ("late_fee_multiplier", Decimal("-0.5")),
        ("sweep_interval_seconds", 0.0),
    ],
)
def test_out_of_range_tuning_raises(field, value) -> None:
    with pytest.raises(ValueError):
        validate_engine_config(valid_config(**{field: value}))


def test_zero_grace_and_zero_multiplier_pass() -> None:
    """Exact lower boundaries must pass."""
    validate_engine_config(
        valid_config(start_grace_minutes=0, late_fee_multiplier=Decimal("0"))
    )


# --- State machine ---

@pytest.mark.parametrize(
    "current, target",
    [
        (ReservationStatus.PENDING, ReservationStatus.ACTIVE),
        (ReservationStatus.PENDING, ReservationStatus.CANCELLED),
        (ReservationStatus.ACTIVE, ReservationStatus.COMPLETED),
    ],
)
def test_allowed_transitions_pass(current, target) -> None:
    ensure_transition(current, target)


@pytest.mark.parametrize(
    "current, target",
    [
        (ReservationStatus.PENDING, ReservationStatus.COMPLETED),
        (ReservationStatus.ACTIVE, ReservationStatus.CANCELLED),
        (ReservationStatus.ACTIVE, ReservationStatus.PENDING),
        (ReservationStatus.COMPLETED, ReservationStatus.ACTIVE),
        (ReservationStatus.CANCELLED, ReservationStatus.PENDING),
        (ReservationStatus.CANCELLED, ReservationStatus.CANCELLED),
    ],
)
def test_disallowed_transitions_raise(current, target) -> None:
    with pytest.raises(InvalidStateError) as exc_info:
        ensure_transition(current, target)
    assert exc_info.value.current_status == current.value


@pytest.mark.parametrize("current", [ReservationStatus.COMPLETED, ReservationStatus.CANCELLED])
def test_terminal_status_reports_it_is_final(current) -> None:
    with pytest.raises(InvalidStateError, match=f"already {current.value}"):
        ensure_transition(current, ReservationStatus.ACTIVE)


# --- Input parsing ---

def test_parse_vehicle_type_accepts_mixed_case() -> None:
    assert parse_vehicle_type(" Car ") is VehicleType.CAR
    assert parse_vehicle_type(VehicleType.BIKE) is VehicleType.BIKE


def test_parse_vehicle_type_rejects_unknown() -> None:
    with pytest.raises(ReservationValidationError):
        parse_vehicle_type("truck")


def test_normalize_plate_uppercases_and_collapses_whitespace() -> None:
    assert normalize_plate("  tn 09   ab 1234 ") == "TN 09 AB 1234"
    assert normalize_plate("   ") is None
    assert normalize_plate(None) is None


def test_normalize_plate_rejects_overlong_plate() -> None:
    with pytest.raises(ReservationValidationError):
        normalize_plate("X" * 17)


# --- Site validation ---

def test_valid_site_passes() -> None:
    validate_site(valid_site())


def test_site_with_negative_capacity_raises() -> None:
    with pytest.raises(ReservationValidationError):
        validate_site(valid_site(total_spots={VehicleType.CAR: -1}))


def test_site_missing_rate_for_offered_type_raises() -> None:
    with pytest.raises(ReservationValidationError):
        validate_site(valid_site(rates={VehicleType.BIKE: BIKE_RATE}))


def test_site_with_out_of_range_latitude_raises() -> None:
    with pytest.raises(ReservationValidationError):
        validate_site(valid_site(location=Coordinates(latitude=91.0, longitude=80.0)))


def test_site_with_blank_name_raises() -> None:
    with pytest.raises(ReservationValidationError):
        validate_site(valid_site(name="  "))
