"""Background sweeper that cancels pending reservations nobody started."""

from __future__ import annotations

import threading
from datetime import timedelta
from typing import Optional

from backend.domain.constraints import EngineConfig
from backend.domain.errors import DependencyFailureError
from backend.repository.data_repository import DataRepository
from backend.services.reservation_service import ReservationService
from backend.utils.clock import Clock
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class ExpirySweeper:
    """Periodically cancels pending reservations past their start grace window.

    ``run_once`` is safe to call at any time and from any thread; a
    reservation that was started or cancelled in the meantime is skipped.
    """

    def __init__(
        self,
        reservation_service: ReservationService,
        repository: Optional[DataRepository] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._config = EngineConfig.from_settings(self._settings)
        self._reservation_service = reservation_service
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or Clock(self._settings)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lifecycle_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> list[int]:
        """Cancel every expired pending reservation; returns the cancelled ids."""
        cutoff = self._clock.now() - timedelta(minutes=self._config.pending_expiry_minutes)
        try:
            expired = self._repository.list_expired_pending(cutoff)
        except DependencyFailureError as exc:
            logger.error("Expiry sweep could not load pending reservations: %s", exc)
            return []

        if expired:
            logger.info("Found %s expired pending reservations", len(expired))

        cancelled: list[int] = []
        for reservation in expired:
            try:
                updated = self._reservation_service.expire_reservation(reservation)
            except Exception:
                logger.exception(
                    "Failed to expire reservation %s; continuing sweep",
                    reservation.reservation_id,
                )
                continue
            if updated is None:
                continue
            cancelled.append(updated.reservation_id)
            logger.info(
                "Cancelled expired reservation %s (scheduled %s)",
                updated.reservation_id,
                self._clock.format_display(updated.start_time),
            )
        return cancelled

    def _loop(self) -> None:
        interval = self._config.sweep_interval_seconds
        while not self._stop_event.wait(interval):
            try:
                self.run_once()
            except Exception:
                logger.exception("Unexpected expiry sweep failure")

    def start(self) -> None:
        with self._lifecycle_lock:
            if self.running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._loop,
                name="expiry-sweeper",
                daemon=True,
            )
            self._thread.start()
        logger.info(
            "Expiry sweeper scheduled every %s seconds",
            self._config.sweep_interval_seconds,
        )

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._lifecycle_lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
            thread.join(timeout)
            self._thread = None
        logger.info("Expiry sweeper stopped")
