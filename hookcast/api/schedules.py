"""Scheduled message API endpoints.

- CRUD operations for schedules, scoped to the caller's workspaces
- Pause / resume / cancel lifecycle actions
- Immediate run and run history
- Cron presets for recurring schedules
"""

from __future__ import annotations

import json
import logging
from typing import Annotated, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from hookcast.api.runner import get_runner
from hookcast.auth import get_current_user
from hookcast.auth.jwt import User
from hookcast.config import get_settings
from hookcast.core.errors import ClaimConflict
from hookcast.core.runner import ScheduleRunner
from hookcast.core.schedule_time import CRON_PRESETS, describe_cron
from hookcast.db.database import get_db
from hookcast.dtos.schedule import (
    CronPreset,
    CronPresetListResponse,
    RunNowResponse,
    ScheduleCreate,
    ScheduleListResponse,
    ScheduleResponse,
    ScheduleRunListResponse,
    ScheduleRunResponse,
    ScheduleUpdate,
)
from hookcast.models.schedule import ScheduledMessage, ScheduleStatus
from hookcast.services.schedule_service import (
    ChannelNotFoundError,
    InvalidScheduleError,
    InvalidTransitionError,
    SavedMessageNotFoundError,
    ScheduleLimitError,
    ScheduleNotFoundError,
    ScheduleService,
    WorkspaceNotFoundError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/schedules", tags=["schedules"])


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={
            "error": {
                "code": code,
                "message": message,
            }
        },
    )


def _raise_service_error(e: Exception) -> NoReturn:
    """Translate a service exception into an HTTP error."""
    if isinstance(e, ScheduleNotFoundError):
        raise _error(status.HTTP_404_NOT_FOUND, "SCHEDULE_NOT_FOUND", str(e)) from e
    if isinstance(e, WorkspaceNotFoundError):
        raise _error(status.HTTP_404_NOT_FOUND, "WORKSPACE_NOT_FOUND", str(e)) from e
    if isinstance(e, ChannelNotFoundError):
        raise _error(status.HTTP_404_NOT_FOUND, "CHANNEL_NOT_FOUND", str(e)) from e
    if isinstance(e, SavedMessageNotFoundError):
        raise _error(status.HTTP_404_NOT_FOUND, "SAVED_MESSAGE_NOT_FOUND", str(e)) from e
    if isinstance(e, ScheduleLimitError):
        raise _error(status.HTTP_403_FORBIDDEN, "SCHEDULE_LIMIT_REACHED", str(e)) from e
    if isinstance(e, InvalidTransitionError):
        raise _error(status.HTTP_400_BAD_REQUEST, "INVALID_TRANSITION", str(e)) from e
    if isinstance(e, InvalidScheduleError):
        raise _error(status.HTTP_400_BAD_REQUEST, "INVALID_SCHEDULE", str(e)) from e
    raise e


def _schedule_to_response(schedule: ScheduledMessage) -> ScheduleResponse:
    """Convert schedule model to response DTO."""
    try:
        payload = json.loads(schedule.payload) if schedule.payload else None
    except json.JSONDecodeError:
        payload = None

    next_run_description = None
    if schedule.is_recurring and schedule.status == ScheduleStatus.ACTIVE.value:
        next_run_description = describe_cron(
            schedule.recurrence_cron,
            timezone=schedule.timezone,
        )

    return ScheduleResponse(
        id=schedule.id,
        workspace_id=schedule.workspace_id,
        channel_id=schedule.channel_id,
        name=schedule.name,
        saved_message_id=schedule.saved_message_id,
        payload=payload,
        send_at=schedule.send_at,
        recurrence_cron=schedule.recurrence_cron,
        timezone=schedule.timezone,
        status=schedule.status,
        last_run_at=schedule.last_run_at,
        next_run_at=schedule.next_run_at,
        max_runs=schedule.max_runs,
        run_count=schedule.run_count,
        last_error=schedule.last_error,
        next_run_description=next_run_description,
        created_at=schedule.created_at,
        updated_at=schedule.updated_at,
    )


def _service(db: AsyncSession) -> ScheduleService:
    return ScheduleService(
        db,
        max_schedules_per_workspace=get_settings().max_schedules_per_workspace,
    )


@router.get("", response_model=ScheduleListResponse)
async def list_schedules(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    workspace_id: str = Query(..., description="Workspace to list schedules for"),
):
    """List a workspace's schedules, newest first.

    Raises:
        404: Workspace not found or not owned by the caller.
    """
    try:
        schedules = await _service(db).list_for_workspace(workspace_id, user.id)
    except WorkspaceNotFoundError as e:
        _raise_service_error(e)

    return ScheduleListResponse(
        schedules=[_schedule_to_response(s) for s in schedules],
        total=len(schedules),
    )


@router.post("", response_model=ScheduleResponse, status_code=201)
async def create_schedule(
    data: ScheduleCreate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Create a scheduled message.

    Raises:
        400: Invalid timing, content, cron expression or timezone.
        403: Workspace schedule limit reached.
        404: Workspace, channel or saved message not found.
    """
    try:
        schedule = await _service(db).create(data, user.id)
    except Exception as e:
        _raise_service_error(e)

    await db.commit()
    logger.info(f"Created schedule {schedule.id} in workspace {schedule.workspace_id}")
    return _schedule_to_response(schedule)


@router.get("/presets", response_model=CronPresetListResponse)
async def list_cron_presets(
    user: Annotated[User, Depends(get_current_user)],
):
    """List named cron expressions for recurring schedules."""
    return CronPresetListResponse(
        presets=[
            CronPreset(name=name, expression=expression)
            for name, expression in CRON_PRESETS.items()
        ]
    )


@router.get("/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(
    schedule_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Get schedule by ID.

    Raises:
        404: Schedule not found or user doesn't own it.
    """
    try:
        schedule = await _service(db).get_owned(schedule_id, user.id)
    except ScheduleNotFoundError as e:
        _raise_service_error(e)

    return _schedule_to_response(schedule)


@router.patch("/{schedule_id}", response_model=ScheduleResponse)
async def update_schedule(
    schedule_id: str,
    data: ScheduleUpdate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Update a schedule.

    Raises:
        400: Invalid definition, or schedule is completed/cancelled.
        404: Schedule or saved message not found.
    """
    try:
        schedule = await _service(db).update(schedule_id, data, user.id)
    except Exception as e:
        _raise_service_error(e)

    await db.commit()
    return _schedule_to_response(schedule)


@router.delete("/{schedule_id}", status_code=204)
async def delete_schedule(
    schedule_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Delete a schedule and its run history.

    Raises:
        404: Schedule not found or user doesn't own it.
    """
    try:
        await _service(db).delete(schedule_id, user.id)
    except ScheduleNotFoundError as e:
        _raise_service_error(e)

    await db.commit()


@router.post("/{schedule_id}/pause", response_model=ScheduleResponse)
async def pause_schedule(
    schedule_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Pause an active schedule."""
    try:
        schedule = await _service(db).pause(schedule_id, user.id)
    except Exception as e:
        _raise_service_error(e)

    await db.commit()
    return _schedule_to_response(schedule)


@router.post("/{schedule_id}/resume", response_model=ScheduleResponse)
async def resume_schedule(
    schedule_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Resume a paused schedule from the current time."""
    try:
        schedule = await _service(db).resume(schedule_id, user.id)
    except Exception as e:
        _raise_service_error(e)

    await db.commit()
    return _schedule_to_response(schedule)


@router.post("/{schedule_id}/cancel", response_model=ScheduleResponse)
async def cancel_schedule(
    schedule_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Cancel a schedule permanently."""
    try:
        schedule = await _service(db).cancel(schedule_id, user.id)
    except Exception as e:
        _raise_service_error(e)

    await db.commit()
    return _schedule_to_response(schedule)


@router.post("/{schedule_id}/run-now", response_model=RunNowResponse)
async def run_schedule_now(
    schedule_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    runner: Annotated[ScheduleRunner, Depends(get_runner)],
):
    """Send a schedule's message immediately.

    Counts as a regular run: it is logged, bumps ``run_count`` on success
    and may complete the schedule.

    Raises:
        400: Schedule is completed or cancelled.
        404: Schedule not found or user doesn't own it.
        409: A runner is processing the schedule right now.
    """
    try:
        schedule = await _service(db).get_owned(schedule_id, user.id)
    except ScheduleNotFoundError as e:
        _raise_service_error(e)

    if ScheduleStatus(schedule.status).is_terminal:
        raise _error(
            status.HTTP_400_BAD_REQUEST,
            "INVALID_TRANSITION",
            "Cannot run completed or cancelled schedule",
        )

    # The runner writes through its own sessions
    await db.commit()

    try:
        succeeded = await runner.run_now(schedule)
    except ClaimConflict as e:
        raise _error(status.HTTP_409_CONFLICT, "SCHEDULE_BUSY", str(e)) from e

    await db.refresh(schedule)
    return RunNowResponse(
        success=succeeded,
        message="Schedule executed successfully" if succeeded else (schedule.last_error or "Schedule run failed"),
        schedule=_schedule_to_response(schedule),
    )


@router.get("/{schedule_id}/runs", response_model=ScheduleRunListResponse)
async def list_schedule_runs(
    schedule_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    limit: int = Query(50, ge=1, le=200),
):
    """List a schedule's run history, newest first."""
    try:
        runs = await _service(db).list_runs(schedule_id, user.id, limit=limit)
    except ScheduleNotFoundError as e:
        _raise_service_error(e)

    return ScheduleRunListResponse(
        runs=[ScheduleRunResponse.model_validate(run) for run in runs],
        total=len(runs),
    )
