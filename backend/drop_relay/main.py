# drop_relay/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from drop_relay.api import health, messages
from drop_relay.core.clock import Clock, utc_now
from drop_relay.core.config import Settings, get_settings
from drop_relay.core.errors import MissingFields, RelayError
from drop_relay.core.key_cache import KeyValidationCache
from drop_relay.core.message import MessageStore
from drop_relay.core.rate_limit import build_limiter
from drop_relay.core.retention import RetentionSweeper
from drop_relay.core.security import IdentityVerifier
from drop_relay.infra.database import Database
from drop_relay.services.relay_service import RelayService
from drop_relay.utils.logger import setup_logger

logger = logging.getLogger(__name__)


async def relay_error_handler(request: Request, exc: RelayError):
    if exc.status_code >= 500:
        logger.error(
            "Error handling request",
            extra={"path": request.url.path, "error": str(exc.__cause__ or exc)},
        )
        return JSONResponse(status_code=exc.status_code, content={"error": "Internal server error"})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", exc_info=exc, extra={"path": request.url.path})
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning("Missing required fields", extra={"path": request.url.path})
    return JSONResponse(status_code=400, content={"error": MissingFields.message})


def create_app(settings: Settings = None, keyserver_session=None, clock: Clock = utc_now) -> FastAPI:
    """Build the relay application.

    ``keyserver_session`` and ``clock`` are injected so the whole stack can
    run against a fake keyserver and a controlled clock.
    """
    settings = settings or get_settings()

    database = Database(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
    keys = KeyValidationCache(
        database,
        keyserver_url=settings.KEYSERVER_URL,
        ttl_seconds=settings.CACHE_TTL_SECONDS,
        timeout=settings.KEYSERVER_TIMEOUT_SECONDS,
        session=keyserver_session,
        clock=clock,
    )
    store = MessageStore(database, clock=clock)
    verifier = IdentityVerifier(keys, skew_seconds=settings.TIMESTAMP_SKEW_SECONDS, clock=clock)
    relay = RelayService(verifier, keys, store, max_payload_bytes=settings.MAX_PAYLOAD_BYTES)
    sweeper = RetentionSweeper(
        store,
        retention_seconds=settings.RETENTION_WINDOW_SECONDS,
        interval_seconds=settings.SWEEP_INTERVAL_SECONDS,
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.create_all()
        if settings.SWEEPER_ENABLED:
            sweeper.start()
        logger.info("Relay started", extra={"keyserver": settings.KEYSERVER_URL})
        try:
            yield
        finally:
            sweeper.stop()
            database.dispose()
            logger.info("Relay stopped")

    app = FastAPI(
        title="Drop Relay",
        version="1.0.0",
        description="Zero-knowledge store-and-forward relay for PGP-signed payloads",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rate limiting applies to send/poll only
    limiter = build_limiter(settings)
    limiter.exempt(health.health_check)
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(RelayError, relay_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.state.settings = settings
    app.state.database = database
    app.state.relay = relay
    app.state.sweeper = sweeper

    # Register routers
    app.include_router(messages.router, tags=["Messages"])
    app.include_router(health.router, tags=["Health"])

    return app


def run():
    """Console entry point: serve the relay with uvicorn."""
    import uvicorn

    settings = get_settings()
    setup_logger(settings.LOG_LEVEL, settings.LOG_JSON)
    uvicorn.run(create_app(settings), host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    run()
