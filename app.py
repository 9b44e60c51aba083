"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and owns the lifecycle of the
subscription hub and the expiry sweeper.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from backend.controllers.auth_controller import router as auth_router
from backend.controllers.realtime_controller import router as realtime_router
from backend.controllers.reservation_controller import router as reservation_router
from backend.controllers.site_controller import router as site_router
from backend.repository.data_repository import DataRepository
from backend.services.auth_service import AuthService
from backend.services.availability_service import AvailabilityProber
from backend.services.broadcast_service import AvailabilityBroadcaster
from backend.services.capacity_service import CapacityLedger
from backend.services.expiry_service import ExpirySweeper
from backend.services.geocoding_service import GoogleGeocodingService
from backend.services.pubsub import SubscriptionHub
from backend.services.reservation_service import ReservationService
from backend.services.site_service import SiteService
from backend.utils.clock import Clock
from backend.utils.config import Settings, get_settings
from backend.utils.locks import KeyedLockRegistry
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None, clock: Optional[Clock] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every dependency is created here and injected via app.state; nothing
    is a hidden module-level singleton.
    """
    settings = settings or get_settings()
    clock = clock or Clock(settings)

    # --- Repository (single SQLite connection factory) ---
    repository = DataRepository(settings)

    # --- Transport and broadcasting ---
    subscription_hub = SubscriptionHub()
    broadcaster = AvailabilityBroadcaster(transport=subscription_hub, clock=clock)

    # --- Services ---
    locks = KeyedLockRegistry()
    prober = AvailabilityProber(repository=repository, settings=settings)
    capacity_ledger = CapacityLedger(
        repository=repository,
        clock=clock,
        prober=prober,
        settings=settings,
    )
    reservation_service = ReservationService(
        repository=repository,
        ledger=capacity_ledger,
        prober=prober,
        broadcaster=broadcaster,
        locks=locks,
        clock=clock,
        settings=settings,
    )
    expiry_sweeper = ExpirySweeper(
        reservation_service=reservation_service,
        repository=repository,
        clock=clock,
        settings=settings,
    )
    geocoder = GoogleGeocodingService(settings=settings)
    site_service = SiteService(
        repository=repository,
        ledger=capacity_ledger,
        geocoder=geocoder,
        clock=clock,
        settings=settings,
    )
    auth_service = AuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        try:
            yield
        finally:
            _shutdown(app)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(auth_router)
    app.include_router(site_router)
    app.include_router(reservation_router)
    app.include_router(realtime_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.clock = clock
    app.state.repository = repository
    app.state.subscription_hub = subscription_hub
    app.state.broadcaster = broadcaster
    app.state.capacity_ledger = capacity_ledger
    app.state.reservation_service = reservation_service
    app.state.expiry_sweeper = expiry_sweeper
    app.state.geocoder = geocoder
    app.state.site_service = site_service
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Order matters:
      1. Schema must exist before seeding.
      2. The hub must be open before anything can publish to it.
      3. The sweeper starts last, once the store and hub are ready.
    """
    settings: Settings = app.state.settings
    repository: DataRepository = app.state.repository
    subscription_hub: SubscriptionHub = app.state.subscription_hub
    expiry_sweeper: ExpirySweeper = app.state.expiry_sweeper

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_sites:
        logger.info("Startup: seeding demo sites (skipped if Sites table not empty)")
        repository.seed_demo_sites()

    logger.info("Startup: opening subscription hub")
    subscription_hub.open()

    if settings.sweeper_enabled:
        logger.info("Startup: starting expiry sweeper")
        expiry_sweeper.start()

    logger.info("Startup complete, system ready")


def _shutdown(app: FastAPI) -> None:
    """Stop background work before closing the transport it publishes to."""
    expiry_sweeper: ExpirySweeper = app.state.expiry_sweeper
    subscription_hub: SubscriptionHub = app.state.subscription_hub
    geocoder: GoogleGeocodingService = app.state.geocoder

    logger.info("Shutdown: stopping expiry sweeper")
    expiry_sweeper.stop()
    logger.info("Shutdown: closing subscription hub")
    subscription_hub.close()
    geocoder.close()
    logger.info("Shutdown complete")


# Module-level app object for uvicorn
app = create_app()
