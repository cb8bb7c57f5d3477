"""Scheduled message Pydantic schemas for API request/response."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ScheduleCreate(BaseModel):
    """Scheduled message creation request."""

    workspace_id: str = Field(
        ...,
        min_length=1,
        max_length=36,
        description="Workspace that owns the schedule",
    )
    channel_id: str = Field(
        ...,
        min_length=1,
        max_length=36,
        description="Channel whose webhook receives the message",
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=32,
        description="Display name",
    )
    saved_message_id: str | None = Field(
        None,
        max_length=36,
        description="Template (or legacy saved message) to send",
    )
    payload: dict[str, Any] | None = Field(
        None,
        description="Inline message snapshot ({content, embeds})",
    )
    send_at: datetime | None = Field(
        None,
        description="One-time send time (ISO-8601)",
    )
    recurrence_cron: str | None = Field(
        None,
        max_length=255,
        description="Cron expression (e.g., '0 9 * * *' for 9am daily)",
    )
    timezone: str = Field(
        default="UTC",
        max_length=50,
        description="Timezone for the cron expression (e.g., 'America/New_York')",
    )
    max_runs: int | None = Field(
        None,
        gt=0,
        description="Stop after this many successful sends",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "workspace_id": "ws-123",
                "channel_id": "ch-123",
                "name": "Daily standup",
                "payload": {"content": "Standup in 5 minutes!"},
                "recurrence_cron": "55 8 * * 1-5",
                "timezone": "Europe/Berlin",
            }
        }
    )


class ScheduleUpdate(BaseModel):
    """Scheduled message update request.

    Only fields present in the request body are applied; an explicit null
    clears the field.
    """

    name: str | None = Field(None, min_length=1, max_length=32)
    saved_message_id: str | None = Field(None, max_length=36)
    payload: dict[str, Any] | None = None
    send_at: datetime | None = None
    recurrence_cron: str | None = Field(None, max_length=255)
    timezone: str | None = Field(None, max_length=50)
    max_runs: int | None = Field(None, gt=0)


class ScheduleResponse(BaseModel):
    """Scheduled message response."""

    id: str = Field(..., description="Schedule ID")
    workspace_id: str
    channel_id: str
    name: str
    saved_message_id: str | None = None
    payload: dict[str, Any] | None = None
    send_at: datetime | None = None
    recurrence_cron: str | None = None
    timezone: str
    status: str = Field(..., description="active, paused, completed or cancelled")
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    max_runs: int | None = None
    run_count: int = 0
    last_error: str | None = None
    next_run_description: str | None = Field(
        None,
        description="Time until the next occurrence of an active recurring schedule",
    )
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ScheduleListResponse(BaseModel):
    """Scheduled message list response."""

    schedules: list[ScheduleResponse] = Field(
        ...,
        description="List of schedules",
    )
    total: int = Field(..., description="Total count")


class ScheduleRunResponse(BaseModel):
    """One dispatch attempt."""

    id: str
    scheduled_message_id: str
    started_at: datetime
    finished_at: datetime
    success: bool
    discord_message_id: str | None = None
    error: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ScheduleRunListResponse(BaseModel):
    """Run history response."""

    runs: list[ScheduleRunResponse]
    total: int


class RunNowResponse(BaseModel):
    """Result of an immediate run."""

    success: bool
    message: str
    schedule: ScheduleResponse


class RunnerResponse(BaseModel):
    """Result of a runner sweep."""

    success: bool = True
    processed: int = Field(..., description="Schedules claimed and processed")
    errors: int = Field(..., description="Schedules that failed")


class CronPreset(BaseModel):
    """Named cron expression offered when creating a recurring schedule."""

    name: str
    expression: str


class CronPresetListResponse(BaseModel):
    """Cron preset list response."""

    presets: list[CronPreset]
