"""
Frinder Ledger — FastAPI Application Entry Point

``create_app()`` wires:
- a lifespan that owns every process-wide collaborator (Redis client, shared
  HTTP client, rate limiter, notification dispatcher, realtime hub) on
  ``app.state``
- request tracking (request id, structured access log, graceful drain)
- a wall-clock timeout that answers with the standard error envelope
- liveness and readiness probes
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from app.api.error_handlers import register_error_handlers
from app.config import Settings, get_settings
from app.database import async_session_factory, engine
from app.services.notification_service import build_dispatcher
from app.services.rate_limiter import RateLimiter, RedisRateLimitStore
from app.services.realtime import RealtimeHub

REQUEST_TIMEOUT_SECONDS = 30.0
DRAIN_TIMEOUT_SECONDS = 15


def configure_logging(level: str) -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(get_settings().LOG_LEVEL)
logger = structlog.get_logger("frinder")


# ---------------------------------------------------------------------------
# In-flight request tracking
# ---------------------------------------------------------------------------

class RequestTracker:
    """Counts in-flight requests so shutdown can wait for them."""

    def __init__(self) -> None:
        self.active = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def started(self) -> None:
        self.active += 1
        self._idle.clear()

    def finished(self) -> None:
        self.active -= 1
        if self.active <= 0:
            self.active = 0
            self._idle.set()

    async def drain(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("drain_timeout_exceeded", remaining_requests=self.active)
            return False
        return True


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

async def _open_redis(settings: Settings):
    if not settings.REDIS_URL:
        logger.info("redis_skip", reason="REDIS_URL not configured")
        return None

    import redis.asyncio as aioredis

    client = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5,
    )
    await client.ping()
    logger.info("redis_connected")
    return client


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logger.info(
        "startup_begin",
        environment=settings.ENVIRONMENT,
        log_level=settings.LOG_LEVEL,
    )

    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("database_pool_initialised")

    redis = await _open_redis(settings)
    app.state.redis = redis
    app.state.rate_limiter = RateLimiter(
        store=RedisRateLimitStore(redis) if redis is not None else None
    )
    app.state.http_client = httpx.AsyncClient(
        timeout=settings.NOTIFICATION_TIMEOUT_SECONDS
    )
    app.state.dispatcher = build_dispatcher(app.state.http_client)
    app.state.realtime_hub = RealtimeHub()
    logger.info(
        "startup_complete",
        rate_limit_backend="redis" if redis is not None else "memory",
        dispatcher=type(app.state.dispatcher).__name__,
    )

    yield

    logger.info("shutdown_begin")
    await app.state.tracker.drain(DRAIN_TIMEOUT_SECONDS)

    if app.state.redis is not None:
        await app.state.redis.aclose()
        app.state.redis = None
        logger.info("redis_closed")

    await app.state.http_client.aclose()
    logger.info("http_client_closed")

    await engine.dispose()
    logger.info("shutdown_complete")


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

class TimeoutMiddleware(BaseHTTPMiddleware):
    """Answer 504 when a request runs past ``timeout_seconds``."""

    def __init__(self, app, timeout_seconds: float = REQUEST_TIMEOUT_SECONDS) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "request_timeout",
                method=request.method,
                path=request.url.path,
                timeout=self.timeout_seconds,
            )
            return JSONResponse(
                status_code=504,
                content={"error": {"code": "TIMEOUT", "message": "Request timed out"}},
            )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind request id and caller to the log context, count in-flight
    requests, and emit one access-log line per request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            user_id=request.headers.get("x-user-id"),
        )

        tracker: RequestTracker = request.app.state.tracker
        tracker.started()
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            raise
        finally:
            tracker.finished()

        response.headers["X-Request-Id"] = request_id
        logger.info(
            "request_handled",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return response


# ---------------------------------------------------------------------------
# Health probes
# ---------------------------------------------------------------------------

async def health_liveness() -> dict:
    return {"status": "healthy"}


async def health_deep(request: Request) -> dict:
    """Readiness: database round-trip plus Redis ping when configured."""
    result: dict = {"status": "healthy", "database": "connected"}

    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_db_failure", error=str(exc))
        result["database"] = f"error: {exc}"
        result["status"] = "degraded"

    redis = getattr(request.app.state, "redis", None)
    if redis is None:
        result["redis"] = "not_configured"
    else:
        try:
            await redis.ping()
            result["redis"] = "connected"
        except Exception as exc:
            logger.error("health_redis_failure", error=str(exc))
            result["redis"] = f"error: {exc}"
            result["status"] = "degraded"

    return result


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(settings: Settings | None = None) -> FastAPI:
    from app.api.router import router as api_router

    settings = settings or get_settings()
    application = FastAPI(
        title="Frinder Ledger",
        description="Interaction ledger and match-formation engine",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
    )
    application.state.tracker = RequestTracker()

    register_error_handlers(application)

    # Last added runs first: CORS, then request context, then timeout.
    application.add_middleware(TimeoutMiddleware)
    application.add_middleware(RequestContextMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_api_route("/health", health_liveness, methods=["GET"], tags=["health"])
    application.add_api_route("/health/deep", health_deep, methods=["GET"], tags=["health"])
    application.include_router(api_router, prefix="/api/v1")
    return application


app = create_app()
