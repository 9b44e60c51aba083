"""Reservation lifecycle: admission, creation, start, end and cancellation."""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from backend.domain.constraints import EngineConfig, ensure_transition, normalize_plate
from backend.domain.errors import (
    CapacityExhaustedError,
    DependencyFailureError,
    ForbiddenError,
    InvalidStateError,
    OutstandingReservationError,
    ReservationNotFoundError,
    ReservationValidationError,
    TooEarlyError,
)
from backend.domain.models import (
    CompletedReservation,
    CreatedReservation,
    OccupancySnapshot,
    Reservation,
    ReservationStatus,
    Site,
    VehicleType,
)
from backend.domain.pricing import compute_fee
from backend.repository.data_repository import DataRepository
from backend.services.availability_service import AvailabilityProber
from backend.services.broadcast_service import AvailabilityBroadcaster
from backend.services.capacity_service import CapacityLedger
from backend.utils.clock import Clock
from backend.utils.config import Settings, get_settings
from backend.utils.locks import KeyedLockRegistry
from backend.utils.logger import get_logger


logger = get_logger(__name__)

LATE_EXIT_WARNING = (
    "You were parked beyond the maximum allowed time due to another reservation."
)


class ReservationService:
    """Owns the reservation state machine.

    Every mutation for a (site, vehicle type) pair runs under that pair's
    lock: the occupancy read, the write, and the broadcast that follows it.
    That keeps the last spot from being sold twice and keeps broadcasts for
    one pair in the order their writes were committed.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        ledger: Optional[CapacityLedger] = None,
        prober: Optional[AvailabilityProber] = None,
        broadcaster: Optional[AvailabilityBroadcaster] = None,
        locks: Optional[KeyedLockRegistry] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._config = EngineConfig.from_settings(self._settings)
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or Clock(self._settings)
        self._prober = prober or AvailabilityProber(
            repository=self._repository,
            settings=self._settings,
        )
        self._ledger = ledger or CapacityLedger(
            repository=self._repository,
            clock=self._clock,
            prober=self._prober,
            settings=self._settings,
        )
        self._broadcaster = broadcaster
        self._locks = locks or KeyedLockRegistry()

    @staticmethod
    def _key(site_id: int, vehicle_type: VehicleType) -> tuple[int, str]:
        return (site_id, vehicle_type.value)

    def _coerce_start(self, requested_start: datetime | str | None) -> datetime:
        if requested_start is None:
            return self._clock.now()
        if isinstance(requested_start, datetime):
            return self._clock.to_instant(requested_start)
        try:
            return self._clock.parse_instant(requested_start)
        except (TypeError, ValueError) as exc:
            raise ReservationValidationError(
                f"start_time is not a valid ISO-8601 timestamp: {requested_start!r}"
            ) from exc

    def _load_owned(self, reservation_id: int, user_id: str) -> Reservation:
        reservation = self._repository.get_reservation(reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        if reservation.user_id != user_id:
            raise ForbiddenError("Not authorized to manage this reservation")
        return reservation

    def _transition(
        self,
        reservation: Reservation,
        target: ReservationStatus,
        end_time: Optional[datetime] = None,
        fee: Optional[Decimal] = None,
    ) -> Reservation:
        ensure_transition(reservation.status, target)
        updated = self._repository.transition_reservation(
            reservation.reservation_id,
            expected_status=reservation.status,
            new_status=target,
            end_time=end_time,
            fee=fee,
        )
        if updated is None:
            latest = self._repository.get_reservation(reservation.reservation_id)
            current = latest.status.value if latest is not None else "missing"
            raise InvalidStateError(
                f"Reservation {reservation.reservation_id} changed concurrently; "
                f"current status: {current}",
                current_status=current,
            )
        return updated

    def _refresh_availability(
        self,
        site: Site,
        vehicle_type: VehicleType,
    ) -> Optional[OccupancySnapshot]:
        """Recompute current occupancy and push it; call with the pair's lock held."""
        try:
            snapshot = self._ledger.occupancy(site, vehicle_type)
            if self._broadcaster is not None:
                self._broadcaster.publish(site.site_id, vehicle_type, snapshot)
            return snapshot
        except DependencyFailureError as exc:
            # The mutation is already committed; delivery is best-effort.
            logger.warning(
                "Availability update skipped for site=%s type=%s: %s",
                site.site_id,
                vehicle_type.value,
                exc,
            )
            return None

    def create_reservation(
        self,
        *,
        user_id: str,
        site_id: int,
        vehicle_type: VehicleType | str,
        vehicle_plate: Optional[str] = None,
        requested_start: datetime | str | None = None,
        immediate: bool = False,
    ) -> CreatedReservation:
        if not user_id or not user_id.strip():
            raise ReservationValidationError("user id is required")
        start_time = self._coerce_start(requested_start)
        now = self._clock.now()
        if immediate:
            if start_time > now:
                raise ReservationValidationError(
                    "Immediate reservations cannot start in the future; schedule it instead"
                )
            # Occupancy is only known from now on; a stale start is not honoured.
            start_time = now
        elif start_time < now:
            raise ReservationValidationError(
                "Scheduled reservations cannot start in the past"
            )
        site = self._ledger.require_site(site_id)
        parsed_type = self._ledger.require_vehicle_type(site, vehicle_type)
        plate = normalize_plate(vehicle_plate)

        existing = self._repository.find_outstanding_reservation(user_id)
        if existing is not None:
            raise OutstandingReservationError(existing.reservation_id)

        reservation: Optional[Reservation] = None
        max_end_time: Optional[datetime] = None
        warning: Optional[str] = None
        with self._locks.hold(self._key(site.site_id, parsed_type)):
            # An immediate arrival does not yield to scheduled bookings that
            # have not started; those are protected by max_end_time below.
            snapshot = self._ledger.occupancy(
                site,
                parsed_type,
                start_time,
                include_pending=not immediate,
            )
            if snapshot.available > 0:
                reservation, max_end_time, warning = self._admit(
                    site,
                    parsed_type,
                    user_id=user_id,
                    plate=plate,
                    start_time=start_time,
                    immediate=immediate,
                    last_spot=snapshot.available == 1,
                )

        if reservation is None:
            # The forward scan is advisory and runs without the pair's lock.
            raise CapacityExhaustedError(
                requested_at=start_time,
                next_available=self._prober.find_next_available(site, parsed_type, start_time),
                fallback_retry_at=self._prober.fallback_instant(start_time),
            )

        logger.info(
            "Reservation %s created for user=%s site=%s type=%s status=%s max_end=%s",
            reservation.reservation_id,
            user_id,
            site.site_id,
            parsed_type.value,
            reservation.status.value,
            max_end_time.isoformat() if max_end_time else None,
        )
        return CreatedReservation(reservation=reservation, warning=warning)

    def _admit(
        self,
        site: Site,
        vehicle_type: VehicleType,
        *,
        user_id: str,
        plate: Optional[str],
        start_time: datetime,
        immediate: bool,
        last_spot: bool,
    ) -> tuple[Reservation, Optional[datetime], Optional[str]]:
        """Insert an admitted reservation; call with the pair's lock held."""
        status = ReservationStatus.ACTIVE if immediate else ReservationStatus.PENDING
        max_end_time: Optional[datetime] = None
        warning: Optional[str] = None
        if immediate and last_spot:
            upcoming = self._repository.find_earliest_pending_after(
                site.site_id,
                vehicle_type,
                start_time,
            )
            if upcoming is not None:
                max_end_time = upcoming.start_time
                warning = (
                    "Note: Your parking is only available until "
                    f"{self._clock.format_display(max_end_time)} "
                    "due to an upcoming reservation."
                )

        reservation = self._repository.insert_reservation(
            user_id=user_id,
            site_id=site.site_id,
            vehicle_type=vehicle_type,
            vehicle_plate=plate,
            start_time=start_time,
            max_end_time=max_end_time,
            status=status,
        )
        if immediate:
            self._refresh_availability(site, vehicle_type)
        return reservation, max_end_time, warning

    def start_reservation(self, reservation_id: int, user_id: str) -> Reservation:
        reservation = self._load_owned(reservation_id, user_id)
        if reservation.status is not ReservationStatus.PENDING:
            raise InvalidStateError(
                f"Reservation is already {reservation.status.value}",
                current_status=reservation.status.value,
            )

        now = self._clock.now()
        earliest_start = reservation.start_time - timedelta(
            minutes=self._config.start_grace_minutes
        )
        if now < earliest_start:
            raise TooEarlyError(
                scheduled_time=reservation.start_time,
                earliest_start=earliest_start,
                current_time=now,
                grace_minutes=self._config.start_grace_minutes,
            )

        site = self._ledger.require_site(reservation.site_id)
        with self._locks.hold(self._key(site.site_id, reservation.vehicle_type)):
            updated = self._transition(reservation, ReservationStatus.ACTIVE)
            self._refresh_availability(site, reservation.vehicle_type)

        logger.info("Reservation %s started by user=%s", reservation_id, user_id)
        return updated

    def end_reservation(self, reservation_id: int, user_id: str) -> CompletedReservation:
        reservation = self._load_owned(reservation_id, user_id)
        if reservation.status is not ReservationStatus.ACTIVE:
            raise InvalidStateError(
                "Reservation must be active to end, current status: "
                f"{reservation.status.value}",
                current_status=reservation.status.value,
            )

        site = self._ledger.require_site(reservation.site_id)
        rate = site.rates[reservation.vehicle_type]
        with self._locks.hold(self._key(site.site_id, reservation.vehicle_type)):
            # A reservation started inside the early grace window can end
            # before its scheduled start; bill it from start to start.
            end_time = max(self._clock.now(), reservation.start_time)
            fee = compute_fee(
                rate,
                start_time=reservation.start_time,
                end_time=end_time,
                max_end_time=reservation.max_end_time,
                late_fee_multiplier=self._config.late_fee_multiplier,
            )
            updated = self._transition(
                reservation,
                ReservationStatus.COMPLETED,
                end_time=end_time,
                fee=fee.total_fee,
            )
            self._refresh_availability(site, reservation.vehicle_type)

        logger.info(
            "Reservation %s completed: %.2fh fee=%s late_fee=%s",
            reservation_id,
            fee.duration_hours,
            fee.total_fee,
            fee.late_fee,
        )
        return CompletedReservation(
            reservation=updated,
            fee=fee,
            warning=LATE_EXIT_WARNING if fee.is_late else None,
        )

    def cancel_reservation(self, reservation_id: int, user_id: str) -> Reservation:
        reservation = self._load_owned(reservation_id, user_id)
        if reservation.status is not ReservationStatus.PENDING:
            raise InvalidStateError(
                "Only pending reservations can be cancelled, current status: "
                f"{reservation.status.value}",
                current_status=reservation.status.value,
            )

        site = self._ledger.require_site(reservation.site_id)
        with self._locks.hold(self._key(site.site_id, reservation.vehicle_type)):
            updated = self._transition(reservation, ReservationStatus.CANCELLED)
            self._refresh_availability(site, reservation.vehicle_type)

        logger.info("Reservation %s cancelled by user=%s", reservation_id, user_id)
        return updated

    def expire_reservation(self, reservation: Reservation) -> Optional[Reservation]:
        """Cancel an unconfirmed pending reservation; no-op if it already moved on."""
        site = self._ledger.require_site(reservation.site_id)
        with self._locks.hold(self._key(site.site_id, reservation.vehicle_type)):
            updated = self._repository.transition_reservation(
                reservation.reservation_id,
                expected_status=ReservationStatus.PENDING,
                new_status=ReservationStatus.CANCELLED,
            )
            if updated is None:
                return None
            self._refresh_availability(site, reservation.vehicle_type)
        return updated

    def get_reservation(self, reservation_id: int, user_id: str) -> Reservation:
        return self._load_owned(reservation_id, user_id)

    def list_reservations(self, user_id: str) -> list[Reservation]:
        return self._repository.list_reservations_for_user(user_id)
