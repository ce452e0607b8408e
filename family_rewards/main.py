"""
Family Rewards API

FastAPI application sharing member balances, carousel positions and
redemptions between every connected dashboard, with SSE change pushes.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from typing import Awaitable, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from family_rewards.config import Settings, get_settings
from family_rewards.api.routes import events, health, state
from family_rewards.core.errors import PersistenceError, RewardsError
from family_rewards.core.rewards_service import RewardsService
from family_rewards.core.state_store import JsonStateStore
from family_rewards.streaming.broadcaster import ChangeBroadcaster

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        response = await call_next(request)

        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        # The dashboard may be framed by a kiosk page on the same origin
        response.headers["X-Frame-Options"] = "SAMEORIGIN"

        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        return response


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def rewards_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render a RewardsError as ``{"error": ..., "code": ...}``."""
    assert isinstance(exc, RewardsError)
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Malformed request bodies are client errors (400), not FastAPI's default 422."""
    assert isinstance(exc, RequestValidationError)
    details = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    first = details[0] if details else {"loc": [], "msg": "invalid request"}
    field = ".".join(str(part) for part in first["loc"] if part != "body") or "body"
    return JSONResponse(
        status_code=400,
        content={
            "error": f"Invalid payload: {field}: {first['msg']}",
            "code": "invalid_payload",
            "detail": details,
        },
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application and its process-scoped services.

    The store, broadcaster and service are created here and torn down by the
    lifespan handler; request handlers reach them through ``app.state``.
    """
    settings = settings or get_settings()

    store = JsonStateStore(settings.state_file)
    broadcaster = ChangeBroadcaster(queue_size=settings.subscriber_queue_size)
    rewards = RewardsService(store, broadcaster, legacy_max_count=settings.legacy_max_count)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan handler."""
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")
        logger.info(f"State document: {settings.state_file}")

        try:
            await store.initialize()
        except PersistenceError as exc:
            logger.warning(f"State document not created yet: {exc.message}")
        document = await store.load()
        logger.info(f"Loaded {len(document.members)} member record(s)")

        yield

        logger.info("Shutting down...")
        await broadcaster.close()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Chore points, rewards and live dashboard sync.",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.rewards = rewards

    # Rate limiter is owned by this app; the slowapi handler reads it from app.state
    limiter = state.build_limiter(settings)
    app.state.limiter = limiter
    app.add_exception_handler(
        RateLimitExceeded,
        _rate_limit_exceeded_handler,  # type: ignore[arg-type]  # slowapi handler signature is (Request, RateLimitExceeded)
    )
    app.add_exception_handler(RewardsError, rewards_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Security headers middleware (added first, runs last)
    app.add_middleware(SecurityHeadersMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(
        state.build_router(limiter, settings.mutation_rate_limit), prefix="/api", tags=["state"]
    )
    app.include_router(events.router, prefix="/api", tags=["events"])

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with service info."""
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "events": "/api/events",
        }

    return app


def build_default_app() -> FastAPI:
    """Entry point for ``uvicorn family_rewards.main:build_default_app --factory``."""
    settings = get_settings()
    configure_logging(settings)
    return create_app(settings)
