"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    database_path: Path
    log_level: str
    display_timezone: str

    start_grace_minutes: int
    pending_expiry_minutes: int
    probe_step_minutes: int
    probe_max_steps: int
    fallback_retry_minutes: int
    late_fee_multiplier: str

    sweep_interval_seconds: float
    sweeper_enabled: bool
    seed_demo_sites: bool

    access_key: Optional[str]
    session_ttl_seconds: float
    max_sessions: int
    google_maps_api_key: Optional[str]
    geocoding_base_url: str
    geocoding_timeout_seconds: float
    nearby_default_radius_km: float


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process; call ``get_settings.cache_clear()`` to reload."""
    return Settings(
        app_name=_env_str("APP_NAME", "Parking Reservation Engine"),
        app_version=_env_str("APP_VERSION", "1.0.0"),
        database_path=Path(_env_str("DATABASE_PATH", "data/parking.db")),
        log_level=_env_str("LOG_LEVEL", "INFO"),
        display_timezone=_env_str("DISPLAY_TIMEZONE", "Asia/Kolkata"),
        start_grace_minutes=_env_int("START_GRACE_MINUTES", 15),
        pending_expiry_minutes=_env_int("PENDING_EXPIRY_MINUTES", 15),
        probe_step_minutes=_env_int("PROBE_STEP_MINUTES", 30),
        probe_max_steps=_env_int("PROBE_MAX_STEPS", 48),
        fallback_retry_minutes=_env_int("FALLBACK_RETRY_MINUTES", 60),
        late_fee_multiplier=_env_str("LATE_FEE_MULTIPLIER", "1.5"),
        sweep_interval_seconds=_env_float("SWEEP_INTERVAL_SECONDS", 60.0),
        sweeper_enabled=_env_bool("SWEEPER_ENABLED", True),
        seed_demo_sites=_env_bool("SEED_DEMO_SITES", True),
        access_key=_env_optional("API_ACCESS_KEY"),
        session_ttl_seconds=_env_float("SESSION_TTL_SECONDS", 12 * 60 * 60.0),
        max_sessions=_env_int("MAX_SESSIONS", 10_000),
        google_maps_api_key=_env_optional("GOOGLE_MAPS_API_KEY"),
        geocoding_base_url=_env_str(
            "GEOCODING_BASE_URL",
            "https://maps.googleapis.com/maps/api/geocode/json",
        ),
        geocoding_timeout_seconds=_env_float("GEOCODING_TIMEOUT_SECONDS", 5.0),
        nearby_default_radius_km=_env_float("NEARBY_DEFAULT_RADIUS_KM", 5.0),
    )
