"""FastAPI application factory"""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from chatvibes.api.core.config import get_settings
from chatvibes.api.core.dependencies import close_clients
from chatvibes.api.core.logging import correlation_id_middleware, setup_logging
from chatvibes.api.routers import (
    auth_router,
    bot_router,
    obs_router,
    rewards_router,
    shortlink_router,
    viewer_router,
)
from chatvibes.shared.database import DatabaseManager, get_database_manager, init_database_manager
from chatvibes.shared.errors import (
    AuthorizationInsufficient,
    ChannelNotFound,
    ChatVibesError,
    ExchangeFailed,
    MissingIdentity,
    ProviderConfigError,
    ReAuthRequired,
    ReconciliationFailed,
    RefreshFailed,
    ValidationFailed,
)
from chatvibes.shared.migrations import MigrationRunner

logger = logging.getLogger(__name__)

_start_time: float = 0.0
_pool_heartbeat_task: asyncio.Task | None = None
_db_retry_task: asyncio.Task | None = None

RETRY_MESSAGE = "Something went wrong talking to Twitch. Please try again."


async def _connect_and_migrate(db_manager: DatabaseManager) -> None:
    await db_manager.connect()
    await MigrationRunner(db_manager.pool).run_pending()


async def _pool_heartbeat_loop() -> None:
    """Periodically ping the DB pool to keep idle connections alive.

    Backs off on failure: 15s, 30s, 60s, then 120s max.
    """
    interval = 15
    fail_count = 0
    while True:
        await asyncio.sleep(interval)
        try:
            db_manager = get_database_manager()
            if db_manager.is_connected:
                async with db_manager.pool.acquire(timeout=30.0) as conn:
                    await conn.fetchval("SELECT 1")
                if fail_count > 0:
                    logger.info(f"Pool heartbeat recovered after {fail_count} failures")
                fail_count = 0
                interval = 15
        except asyncio.CancelledError:
            break
        except Exception as e:
            fail_count += 1
            if fail_count <= 3:
                logger.warning(f"Pool heartbeat failed ({fail_count}): {type(e).__name__}: {e}")
            interval = min(15 * (2 ** min(fail_count - 1, 3)), 120)


async def _db_retry_loop(db_manager: DatabaseManager) -> None:
    """Retry the DB connection after a startup failure."""
    delay = 5
    max_delay = 60
    while True:
        await asyncio.sleep(delay)
        if db_manager.is_connected:
            return
        try:
            await _connect_and_migrate(db_manager)
            logger.info("Database connected (background retry)")
            return
        except asyncio.CancelledError:
            return
        except Exception as e:
            delay = min(delay * 2, max_delay)
            logger.warning(
                f"DB background retry failed: {type(e).__name__}: {e}, next retry in {delay}s"
            )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle startup and shutdown"""
    global _start_time, _pool_heartbeat_task, _db_retry_task
    _start_time = time.time()

    settings = get_settings()
    logger.info(f"Starting ChatVibes API ({settings.environment})")

    db_manager = init_database_manager(settings.database_url)
    try:
        await asyncio.wait_for(_connect_and_migrate(db_manager), timeout=30)
        logger.info("Database connected")
    except Exception as e:
        logger.error(
            f"DB startup failed: {type(e).__name__}: {e}, retrying in background"
        )
        _db_retry_task = asyncio.create_task(_db_retry_loop(db_manager))

    _pool_heartbeat_task = asyncio.create_task(_pool_heartbeat_loop())

    yield

    logger.info("Shutting down ChatVibes API")
    for task in (_db_retry_task, _pool_heartbeat_task):
        if task:
            task.cancel()
    try:
        await close_clients()
        await db_manager.disconnect()
    except Exception as e:
        logger.exception(f"Error during shutdown: {e}")


# ============================================
# Exception handlers
# ============================================


def _error_response(status_code: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, **extra})


async def _reauth_handler(request: Request, exc: ReAuthRequired) -> JSONResponse:
    return _error_response(
        401,
        "Authentication required",
        needs_reauth=True,
        message="Please re-authenticate with Twitch.",
    )


async def _insufficient_handler(request: Request, exc: AuthorizationInsufficient) -> JSONResponse:
    return _error_response(
        403,
        "Insufficient Twitch permissions",
        needs_broader_consent=True,
        message="Please reconnect with the full permission set.",
    )


async def _not_found_handler(request: Request, exc: ChannelNotFound) -> JSONResponse:
    return _error_response(404, "Channel not found")


async def _upstream_handler(request: Request, exc: ChatVibesError) -> JSONResponse:
    logger.error(f"Upstream failure on {request.url.path}: {type(exc).__name__}: {exc}")
    return _error_response(502, RETRY_MESSAGE)


async def _server_error_handler(request: Request, exc: ChatVibesError) -> JSONResponse:
    logger.error(f"Server error on {request.url.path}: {type(exc).__name__}: {exc}")
    return _error_response(500, "Server configuration error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ReAuthRequired, _reauth_handler)  # type: ignore[arg-type]
    app.add_exception_handler(AuthorizationInsufficient, _insufficient_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ChannelNotFound, _not_found_handler)  # type: ignore[arg-type]
    for exc_cls in (ReconciliationFailed, RefreshFailed, ExchangeFailed, ValidationFailed):
        app.add_exception_handler(exc_cls, _upstream_handler)  # type: ignore[arg-type]
    # Catch-all for the rest of the taxonomy (MissingIdentity, ProviderConfigError, ...)
    for exc_cls in (MissingIdentity, ProviderConfigError, ChatVibesError):
        app.add_exception_handler(exc_cls, _server_error_handler)  # type: ignore[arg-type]


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    settings = get_settings()

    setup_logging(settings)

    app = FastAPI(
        title="ChatVibes API",
        description="OAuth, channel-points and overlay backend for the ChatVibes TTS bot",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(correlation_id_middleware)

    register_exception_handlers(app)

    app.include_router(auth_router.router)
    app.include_router(bot_router.router)
    app.include_router(rewards_router.router)
    app.include_router(obs_router.router)
    app.include_router(viewer_router.router)
    app.include_router(shortlink_router.router)

    @app.get("/")
    async def root():
        return {"service": "ChatVibes API", "version": "1.0.0", "docs": "/docs"}

    @app.get("/health")
    async def health():
        """Liveness check (no DB dependency)"""
        return {"status": "healthy", "uptime_seconds": int(time.time() - _start_time)}

    @app.get("/status")
    async def status():
        """Readiness check including DB health"""
        db_ok = False
        try:
            db_ok = await get_database_manager().check_health()
        except RuntimeError:
            pass
        return {
            "service": "chatvibes-api",
            "version": "1.0.0",
            "uptime_seconds": int(time.time() - _start_time),
            "db_connected": db_ok,
            "environment": settings.environment,
        }

    @app.api_route("/ping", methods=["GET", "HEAD"], response_class=PlainTextResponse)
    async def ping():
        return "pong"

    logger.info("FastAPI application configured")

    return app
