"""Hookcast Backend - FastAPI Application.

- Scheduled Discord webhook messages
- In-process dispatch trigger and external runner endpoint
- Health check endpoints
- CORS, security headers and error handling
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hookcast.config import get_settings
from hookcast.logging_config import setup_logging

from .api import runner as runner_api, schedules

settings = get_settings()
logger = logging.getLogger(__name__)

# Application metadata
APP_TITLE = settings.app_name
APP_VERSION = settings.app_version


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan management."""
    # Configure logging first
    setup_logging()

    # Validate production secrets
    settings.validate_production_secrets()

    from hookcast.core.discord import DiscordWebhookSender
    from hookcast.core.runner import ScheduleRunner
    from hookcast.core.trigger import DispatchTrigger
    from hookcast.db.database import get_session_factory, init_db

    # Startup
    logger.info("Starting %s v%s", APP_TITLE, APP_VERSION)

    await init_db()
    logger.info("Database initialized")

    sender = DiscordWebhookSender(timeout=settings.discord_timeout)
    schedule_runner = ScheduleRunner(
        get_session_factory(),
        sender,
        batch_size=settings.runner_batch_size,
        claim_window=timedelta(seconds=settings.claim_window_seconds),
        retry_backoff=timedelta(seconds=settings.retry_backoff_seconds),
    )
    runner_api.set_runner(schedule_runner)

    trigger = DispatchTrigger(schedule_runner, interval_seconds=settings.runner_interval_seconds)
    app.state.trigger = trigger

    # Only one worker should sweep in-process when horizontally scaled
    if settings.scheduler_enabled:
        await trigger.start()
        logger.info("Dispatch trigger started (primary worker)")
    else:
        logger.info("Dispatch trigger not started (secondary worker)")

    yield

    # Shutdown
    logger.info("Shutting down %s", APP_TITLE)

    await trigger.shutdown()
    runner_api.set_runner(None)
    await sender.aclose()
    logger.info("Dispatch runner shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=APP_TITLE,
    description="""
## Hookcast

Schedule Discord webhook messages, once or on a cron recurrence.

- **Schedules**: One-shot (`send_at`) or recurring (`recurrence_cron` + IANA timezone)
- **Content**: A saved template/message or an inline payload
- **Lifecycle**: Pause, resume, cancel, or run immediately
- **History**: Every attempt is logged with its outcome

### Authentication

Schedule endpoints require a JWT Bearer token. The runner endpoint
(`POST /api/schedules/runner`) takes the shared `CRON_SECRET` instead.

```
Authorization: Bearer <token>
```
""",
    version=APP_VERSION,
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "schedules",
            "description": "Scheduled messages - Create and manage one-shot and recurring Discord webhook messages. View run history.",
        },
        {
            "name": "runner",
            "description": "Dispatch runner - Sweep and send all due scheduled messages. Intended for an external cron.",
        },
        {
            "name": "health",
            "description": "Health checks - Liveness and readiness probes for monitoring and orchestration.",
        },
    ],
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
    openapi_url="/openapi.json" if not settings.is_production else None,
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "Origin", "X-Requested-With"],
)


# Security headers middleware
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

    # HSTS in production
    if settings.is_production:
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )

    return response


# Error handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with standard error format."""
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        content = exc.detail
    else:
        content = {
            "error": {
                "code": f"HTTP_{exc.status_code}",
                "message": exc.detail if isinstance(exc.detail, str) else str(exc.detail),
            }
        }
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception("Unhandled exception")

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            }
        },
    )


# === Health Check Endpoints ===

@app.get("/health/live", tags=["health"])
async def health_live():
    """Liveness probe - process is running."""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def health_ready(request: Request):
    """Readiness probe - can accept work.

    The database must be reachable. The in-process trigger only counts
    when this worker is configured to run it.
    """
    from hookcast.db.database import AsyncSessionLocal
    from sqlalchemy import text

    checks = {
        "database": False,
        "trigger": None,  # None = disabled on this worker
    }

    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception:
        logger.warning("Readiness database check failed", exc_info=True)

    if settings.scheduler_enabled:
        trigger = getattr(request.app.state, "trigger", None)
        checks["trigger"] = bool(trigger and trigger.is_running)

    healthy = checks["database"] and checks["trigger"] is not False
    return {
        "status": "ready" if healthy else "not_ready",
        "checks": checks,
    }


# === Include Routers ===

# Runner route first so "/runner" is not captured by "/{schedule_id}"
app.include_router(runner_api.router)
app.include_router(schedules.router)


# === Root Endpoint ===

@app.get("/", tags=["root"])
async def root():
    """API root endpoint."""
    return {
        "name": APP_TITLE,
        "version": APP_VERSION,
        "docs": "/docs",
        "health": "/health/live",
    }
