"""Runner trigger endpoint.

Called by an external cron (or a second deployment) to sweep due schedules.
Authenticated with a shared secret: ``Authorization: Bearer <CRON_SECRET>``.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, HTTPException, Request, status

from hookcast.config import get_settings
from hookcast.core.runner import ScheduleRunner
from hookcast.dtos.schedule import RunnerResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/schedules", tags=["runner"])

# Global runner instance (set during app startup)
_runner: ScheduleRunner | None = None


def get_runner() -> ScheduleRunner:
    """Get the global runner instance.

    Raises:
        HTTPException: If runner not initialized.
    """
    if _runner is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": {
                    "code": "RUNNER_NOT_READY",
                    "message": "Runner not initialized",
                }
            },
        )
    return _runner


def set_runner(runner: ScheduleRunner | None) -> None:
    """Set the global runner instance.

    Called during app startup.
    """
    global _runner
    _runner = runner


def verify_cron_secret(authorization: str | None, cron_secret: str) -> None:
    """Check the trigger's bearer token against the configured secret.

    Raises:
        HTTPException: 500 if no secret is configured, 401 if the token is
            missing or wrong.
    """
    if not cron_secret:
        logger.error("CRON_SECRET not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": {
                    "code": "SERVER_MISCONFIGURED",
                    "message": "Server configuration error",
                }
            },
        )

    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "UNAUTHORIZED",
                    "message": "Unauthorized",
                }
            },
        )

    token = authorization[len("Bearer "):]
    if not hmac.compare_digest(token.encode(), cron_secret.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "INVALID_TOKEN",
                    "message": "Invalid token",
                }
            },
        )


@router.post("/runner", response_model=RunnerResponse)
async def run_due_schedules(request: Request):
    """Process all due scheduled messages.

    Headers:
        Authorization: Bearer <CRON_SECRET>

    Returns:
        Counts of processed and failed schedules. Per-schedule failures are
        visible on the schedules themselves (``last_error``, run history).
    """
    verify_cron_secret(
        request.headers.get("authorization"),
        get_settings().cron_secret,
    )

    runner = get_runner()
    result = await runner.process_due()
    return RunnerResponse(success=True, processed=result.processed, errors=result.errors)
