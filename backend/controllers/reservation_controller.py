"""HTTP controller layer for the reservation lifecycle."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from backend.controllers.dependencies import (
    get_clock,
    get_reservation_service,
    require_user,
    to_http_exception,
)
from backend.domain.errors import ReservationEngineError
from backend.domain.models import PaymentStatus, Reservation, ReservationStatus, VehicleType
from backend.services.reservation_service import ReservationService
from backend.utils.clock import Clock
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/reservations", tags=["reservations"])


class CreateReservationRequest(BaseModel):
    site_id: int = Field(gt=0)
    vehicle_type: VehicleType
    vehicle_plate: Optional[str] = Field(default=None, max_length=16)
    start_time: Optional[datetime] = None
    reserve_now: bool = False

    @field_validator("vehicle_plate")
    @classmethod
    def blank_plate_is_missing(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value


class ReservationResponse(BaseModel):
    id: int
    user_id: str
    site_id: int
    vehicle_type: VehicleType
    vehicle_plate: Optional[str]
    status: ReservationStatus
    payment_status: PaymentStatus
    start_time: datetime
    start_time_formatted: str
    end_time: Optional[datetime] = None
    end_time_formatted: Optional[str] = None
    max_end_time: Optional[datetime] = None
    max_end_time_formatted: Optional[str] = None
    fee: Optional[Decimal] = Field(default=None, ge=0)
    warning: Optional[str] = None


class CompletedReservationResponse(ReservationResponse):
    duration_hours: Decimal = Field(ge=0)
    late_fee: Optional[Decimal] = Field(default=None, ge=0)


class CancelReservationResponse(BaseModel):
    message: str
    reservation: ReservationResponse


def to_reservation_response(
    reservation: Reservation,
    clock: Clock,
    warning: Optional[str] = None,
) -> ReservationResponse:
    return ReservationResponse(
        id=reservation.reservation_id,
        user_id=reservation.user_id,
        site_id=reservation.site_id,
        vehicle_type=reservation.vehicle_type,
        vehicle_plate=reservation.vehicle_plate,
        status=reservation.status,
        payment_status=reservation.payment_status,
        start_time=reservation.start_time,
        start_time_formatted=clock.format_display(reservation.start_time),
        end_time=reservation.end_time,
        end_time_formatted=(
            clock.format_display(reservation.end_time) if reservation.end_time else None
        ),
        max_end_time=reservation.max_end_time,
        max_end_time_formatted=(
            clock.format_display(reservation.max_end_time) if reservation.max_end_time else None
        ),
        fee=reservation.fee,
        warning=warning,
    )


def _unexpected(action: str, exc: Exception) -> HTTPException:
    logger.exception("Unexpected failure while trying to %s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
def create_reservation(
    payload: CreateReservationRequest,
    user_id: str = Depends(require_user),
    service: ReservationService = Depends(get_reservation_service),
    clock: Clock = Depends(get_clock),
) -> ReservationResponse:
    try:
        created = service.create_reservation(
            user_id=user_id,
            site_id=payload.site_id,
            vehicle_type=payload.vehicle_type,
            vehicle_plate=payload.vehicle_plate,
            requested_start=payload.start_time,
            immediate=payload.reserve_now,
        )
    except ReservationEngineError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - unexpected failure
        raise _unexpected("create reservation", exc) from exc
    return to_reservation_response(created.reservation, clock, warning=created.warning)


@router.get("", response_model=list[ReservationResponse])
def list_reservations(
    user_id: str = Depends(require_user),
    service: ReservationService = Depends(get_reservation_service),
    clock: Clock = Depends(get_clock),
) -> list[ReservationResponse]:
    try:
        reservations = service.list_reservations(user_id)
    except ReservationEngineError as exc:
        raise to_http_exception(exc) from exc
    return [to_reservation_response(item, clock) for item in reservations]


@router.get("/{reservation_id}", response_model=ReservationResponse)
def get_reservation(
    reservation_id: int,
    user_id: str = Depends(require_user),
    service: ReservationService = Depends(get_reservation_service),
    clock: Clock = Depends(get_clock),
) -> ReservationResponse:
    try:
        reservation = service.get_reservation(reservation_id, user_id)
    except ReservationEngineError as exc:
        raise to_http_exception(exc) from exc
    return to_reservation_response(reservation, clock)


@router.put("/{reservation_id}/start", response_model=ReservationResponse)
def start_reservation(
    reservation_id: int,
    user_id: str = Depends(require_user),
    service: ReservationService = Depends(get_reservation_service),
    clock: Clock = Depends(get_clock),
) -> ReservationResponse:
    try:
        reservation = service.start_reservation(reservation_id, user_id)
    except ReservationEngineError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - unexpected failure
        raise _unexpected("start reservation", exc) from exc
    return to_reservation_response(reservation, clock)


@router.put("/{reservation_id}/end", response_model=CompletedReservationResponse)
def end_reservation(
    reservation_id: int,
    user_id: str = Depends(require_user),
    service: ReservationService = Depends(get_reservation_service),
    clock: Clock = Depends(get_clock),
) -> CompletedReservationResponse:
    try:
        completed = service.end_reservation(reservation_id, user_id)
    except ReservationEngineError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - unexpected failure
        raise _unexpected("end reservation", exc) from exc

    base = to_reservation_response(completed.reservation, clock, warning=completed.warning)
    return CompletedReservationResponse(
        **base.model_dump(),
        duration_hours=completed.fee.duration_hours,
        late_fee=completed.fee.late_fee if completed.fee.is_late else None,
    )


@router.delete("/{reservation_id}", response_model=CancelReservationResponse)
def cancel_reservation(
    reservation_id: int,
    user_id: str = Depends(require_user),
    service: ReservationService = Depends(get_reservation_service),
    clock: Clock = Depends(get_clock),
) -> CancelReservationResponse:
    try:
        reservation = service.cancel_reservation(reservation_id, user_id)
    except ReservationEngineError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - unexpected failure
        raise _unexpected("cancel reservation", exc) from exc
    return CancelReservationResponse(
        message="Reservation cancelled",
        reservation=to_reservation_response(reservation, clock),
    )
