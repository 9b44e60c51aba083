"""Typed failures raised by the reservation engine.

Each error carries the structured detail a caller needs to act on it; the
HTTP layer serializes ``to_detail()`` as the response body.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional


def _iso(instant: Optional[datetime]) -> Optional[str]:
    return instant.isoformat() if instant is not None else None


class ReservationEngineError(Exception):
    """Base class for every engine failure."""

    code = "engine_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class NotFoundError(ReservationEngineError):
    code = "not_found"


class SiteNotFoundError(NotFoundError):
    def __init__(self, site_id: int) -> None:
        super().__init__(f"Parking site {site_id} not found")
        self.site_id = site_id


class ReservationNotFoundError(NotFoundError):
    def __init__(self, reservation_id: int) -> None:
        super().__init__(f"Reservation {reservation_id} not found")
        self.reservation_id = reservation_id


class ForbiddenError(ReservationEngineError):
    code = "forbidden"


class InvalidStateError(ReservationEngineError):
    code = "invalid_state"

    def __init__(self, message: str, current_status: Optional[str] = None) -> None:
        super().__init__(message)
        self.current_status = current_status

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail["current_status"] = self.current_status
        return detail


class ConflictError(ReservationEngineError):
    code = "conflict"


class OutstandingReservationError(ConflictError):
    """The user already holds a pending or active reservation."""

    def __init__(self, existing_reservation_id: Optional[int]) -> None:
        super().__init__("You already have an active reservation")
        self.existing_reservation_id = existing_reservation_id

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail["existing_reservation_id"] = self.existing_reservation_id
        return detail


class CapacityExhaustedError(ConflictError):
    """No spot of the requested type is free at the requested instant.

    ``next_available`` comes from the bounded forward probe. When the probe
    finds nothing, ``fallback_retry_at`` is a heuristic retry hint and is not
    backed by any capacity check.
    """

    code = "no_capacity"

    def __init__(
        self,
        requested_at: datetime,
        next_available: Optional[datetime],
        fallback_retry_at: datetime,
    ) -> None:
        super().__init__("No spots available for this vehicle type at the requested time")
        self.requested_at = requested_at
        self.next_available = next_available
        self.fallback_retry_at = fallback_retry_at

    @property
    def next_available_verified(self) -> bool:
        return self.next_available is not None

    @property
    def suggested_instant(self) -> datetime:
        return self.next_available or self.fallback_retry_at

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail.update(
            {
                "requested_time": _iso(self.requested_at),
                "next_available": _iso(self.suggested_instant),
                "next_available_verified": self.next_available_verified,
            }
        )
        return detail


class TooEarlyError(ReservationEngineError):
    code = "too_early"

    def __init__(
        self,
        scheduled_time: datetime,
        earliest_start: datetime,
        current_time: datetime,
        grace_minutes: int,
    ) -> None:
        super().__init__(
            "Cannot start reservation before the scheduled time "
            f"({grace_minutes}-minute grace period allowed)"
        )
        self.scheduled_time = scheduled_time
        self.earliest_start = earliest_start
        self.current_time = current_time

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail.update(
            {
                "scheduled_time": _iso(self.scheduled_time),
                "earliest_start": _iso(self.earliest_start),
                "current_time": _iso(self.current_time),
            }
        )
        return detail


class ReservationValidationError(ReservationEngineError):
    code = "validation_error"


class DependencyFailureError(ReservationEngineError):
    """The store, the pub/sub transport or the geocoder is unavailable."""

    code = "dependency_failure"
