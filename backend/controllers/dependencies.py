"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.domain.errors import (
    ConflictError,
    DependencyFailureError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ReservationEngineError,
    ReservationValidationError,
    TooEarlyError,
)
from backend.services.auth_service import AuthService, InvalidCredentialsError
from backend.services.capacity_service import CapacityLedger
from backend.services.reservation_service import ReservationService
from backend.services.site_service import SiteService
from backend.utils.clock import Clock
from backend.utils.config import get_settings


bearer_scheme = HTTPBearer(auto_error=False)

_STATUS_BY_ERROR: tuple[tuple[type[ReservationEngineError], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (ConflictError, status.HTTP_409_CONFLICT),
    (TooEarlyError, status.HTTP_400_BAD_REQUEST),
    (InvalidStateError, status.HTTP_400_BAD_REQUEST),
    (ReservationValidationError, status.HTTP_400_BAD_REQUEST),
    (DependencyFailureError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def to_http_exception(exc: ReservationEngineError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.to_detail())
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=exc.to_detail(),
    )


def _from_state(request: Request, name: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name.replace('_', ' ').capitalize()} is not initialized",
        )
    return service


def get_auth_service(request: Request) -> AuthService:
    service = getattr(request.app.state, "auth_service", None)
    if service is None:
        service = AuthService(settings=get_settings())
        request.app.state.auth_service = service
    return service


def get_reservation_service(request: Request) -> ReservationService:
    return _from_state(request, "reservation_service")


def get_capacity_ledger(request: Request) -> CapacityLedger:
    return _from_state(request, "capacity_ledger")


def get_site_service(request: Request) -> SiteService:
    return _from_state(request, "site_service")


def get_clock(request: Request) -> Clock:
    clock = getattr(request.app.state, "clock", None)
    if clock is None:
        clock = Clock(get_settings())
        request.app.state.clock = clock
    return clock


def require_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> str:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header with Bearer token is required",
        )
    try:
        return auth_service.resolve_user(credentials.credentials)
    except InvalidCredentialsError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
