"""
FastAPI app entrypoint.

WebSocket /ws carries the space_* protocol; GET /spaces is a read-only view.
The rent scheduler runs on a background thread for the lifetime of the app.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker

# Load .env from backend/ before any app code
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from spacerent.api.message_router import SpaceMessageRouter
from spacerent.api.routes import spaces, ws
from spacerent.config import Settings, settings
from spacerent.core.clock import Clock, utcnow
from spacerent.core.rate_limit import RateLimiter
from spacerent.db.session import SessionLocal, create_all
from spacerent.scheduler.rent_job import RentScheduler
from spacerent.services.access_service import AccessService
from spacerent.services.identity import GuestIdentityProvider, HeaderIdentityProvider, IdentityProvider
from spacerent.services.payments import BoundedPaymentVerifier, HttpPaymentVerifier, PaymentVerifier
from spacerent.services.rental_service import RentalService
from spacerent.services.space_store import SpaceStore

logger = logging.getLogger(__name__)

# Dev origins; CORS_ORIGINS (comma-separated) adds production frontends
_DEFAULT_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def _cors_origins(config: Settings) -> list[str]:
    origins = list(_DEFAULT_CORS_ORIGINS)
    if config.cors_origins:
        origins.extend(o.strip() for o in config.cors_origins.split(",") if o.strip())
    return origins


def create_app(
    *,
    config: Settings = settings,
    session_factory: sessionmaker | None = None,
    verifier: PaymentVerifier | None = None,
    identity_provider: IdentityProvider | None = None,
    clock: Clock = utcnow,
    run_scheduler: bool = True,
) -> FastAPI:
    """
    Wire store, services, router and scheduler. Arguments override the
    production collaborators (tests pass an in-memory DB and a fake verifier).
    """
    owns_verifier = verifier is None
    if verifier is None:
        verifier = BoundedPaymentVerifier(
            HttpPaymentVerifier(
                config.payment_verifier_url,
                api_key=config.payment_verifier_api_key,
                timeout=config.payment_verifier_timeout_seconds,
            ),
            timeout=config.payment_verifier_timeout_seconds,
        )
    if identity_provider is None:
        identity_provider = HeaderIdentityProvider() if config.trust_identity_headers else GuestIdentityProvider()

    store = SpaceStore(session_factory or SessionLocal, clock=clock)
    rental_service = RentalService(store, verifier, config)
    access_service = AccessService(store, verifier, failure_grace=config.eligibility_failure_grace)
    rate_limiter = RateLimiter(config.entry_check_rate_limit, config.entry_check_rate_window_seconds)
    hub = ws.ConnectionHub()
    message_router = SpaceMessageRouter(
        rental_service,
        access_service,
        rate_limiter,
        send_to_player=hub.send_to_player,
        broadcast_to_all=hub.broadcast,
        get_players_in_room=hub.players_in_room,
    )
    rent_scheduler = RentScheduler(
        store,
        interval_seconds=config.rent_check_interval_seconds,
        grace_period_hours=config.grace_period_hours,
        notifier=hub.broadcast,
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        hub.bind_loop(asyncio.get_running_loop())
        if session_factory is None and config.database_url.startswith("sqlite"):
            # Local dev without migrations
            create_all()
        created = rental_service.initialize_spaces()
        if created:
            logger.info("Initialized %s spaces: %s", len(created), ", ".join(created))
        if run_scheduler:
            rent_scheduler.start()
        logger.info("Space rental backend ready")
        yield
        rent_scheduler.stop()
        if owns_verifier:
            verifier.shutdown()

    app = FastAPI(title="Space Rental", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(config),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.hub = hub
    app.state.identity_provider = identity_provider
    app.state.rental_service = rental_service
    app.state.access_service = access_service
    app.state.message_router = message_router
    app.state.rent_scheduler = rent_scheduler

    app.include_router(spaces.router, tags=["spaces"])
    app.include_router(ws.router, tags=["ws"])

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
