"""Scheduled message service layer.

Provides business logic for schedule management:
- Create and update schedules while keeping timing and content exclusive
- Pause, resume and cancel (completed/cancelled are terminal)
- Ownership checks through the owning workspace
"""

from __future__ import annotations

import json
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from hookcast.core.schedule_time import (
    compute_next_run_at,
    is_valid_recurrence,
    is_valid_timezone,
    to_utc_naive,
)
from hookcast.dtos.schedule import ScheduleCreate, ScheduleUpdate
from hookcast.models.schedule import ScheduledMessage, ScheduledMessageRun, ScheduleStatus
from hookcast.repositories.message_repo import MessageRepository, TemplateRepository
from hookcast.repositories.schedule_repo import ScheduleRepository
from hookcast.repositories.workspace_repo import ChannelRepository, WorkspaceRepository

DEFAULT_MAX_SCHEDULES_PER_WORKSPACE = 5


class ScheduleNotFoundError(Exception):
    """Schedule not found or not owned by the caller."""

    def __init__(self, schedule_id: str) -> None:
        super().__init__(f"Schedule '{schedule_id}' not found")
        self.schedule_id = schedule_id


class WorkspaceNotFoundError(Exception):
    """Workspace not found or not owned by the caller."""

    def __init__(self, workspace_id: str) -> None:
        super().__init__(f"Workspace '{workspace_id}' not found")
        self.workspace_id = workspace_id


class ChannelNotFoundError(Exception):
    """Channel not found in the workspace."""

    def __init__(self, channel_id: str) -> None:
        super().__init__(f"Channel '{channel_id}' not found")
        self.channel_id = channel_id


class SavedMessageNotFoundError(Exception):
    """Neither a template nor a legacy saved message has the ID."""

    def __init__(self, saved_message_id: str) -> None:
        super().__init__("Saved message or template not found")
        self.saved_message_id = saved_message_id


class InvalidScheduleError(Exception):
    """Schedule definition is invalid."""


class InvalidTransitionError(Exception):
    """Lifecycle transition is not allowed from the current status."""

    def __init__(self, schedule_id: str, status: str, action: str) -> None:
        super().__init__(f"Cannot {action} {status} schedule")
        self.schedule_id = schedule_id
        self.status = status
        self.action = action


class ScheduleLimitError(Exception):
    """Workspace already has the maximum number of live schedules."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"Maximum {limit} scheduled messages per workspace")
        self.limit = limit


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def _check_timing(send_at: datetime | None, recurrence_cron: str | None) -> None:
    if send_at is None and not recurrence_cron:
        raise InvalidScheduleError("Either send_at or recurrence_cron is required")
    if send_at is not None and recurrence_cron:
        raise InvalidScheduleError("Cannot provide both send_at and recurrence_cron")
    if recurrence_cron and not is_valid_recurrence(recurrence_cron):
        raise InvalidScheduleError("Invalid cron expression")


def _check_timezone(timezone: str) -> None:
    if not is_valid_timezone(timezone):
        raise InvalidScheduleError(f"Invalid timezone: {timezone}")


class ScheduleService:
    """Scheduled message management.

    Example:
        service = ScheduleService(session)
        schedule = await service.create(data, user_id="user-1")
        await service.pause(schedule.id, user_id="user-1")
    """

    def __init__(
        self,
        session: AsyncSession,
        max_schedules_per_workspace: int = DEFAULT_MAX_SCHEDULES_PER_WORKSPACE,
    ) -> None:
        self.session = session
        self.schedules = ScheduleRepository(session)
        self.workspaces = WorkspaceRepository(session)
        self.channels = ChannelRepository(session)
        self.templates = TemplateRepository(session)
        self.messages = MessageRepository(session)
        self.max_schedules_per_workspace = max_schedules_per_workspace

    async def _require_workspace(self, workspace_id: str, user_id: str) -> None:
        if await self.workspaces.get_owned(workspace_id, user_id) is None:
            raise WorkspaceNotFoundError(workspace_id)

    async def _require_saved_message(self, saved_message_id: str, user_id: str) -> None:
        # Templates first, then legacy saved messages
        if await self.templates.get_owned(saved_message_id, user_id) is not None:
            return
        if await self.messages.get_by_id(saved_message_id) is not None:
            return
        raise SavedMessageNotFoundError(saved_message_id)

    async def get_owned(self, schedule_id: str, user_id: str) -> ScheduledMessage:
        """Get a schedule whose workspace belongs to ``user_id``.

        Raises:
            ScheduleNotFoundError: If missing or owned by someone else.
        """
        schedule = await self.schedules.get_by_id(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_id)
        if await self.workspaces.get_owned(schedule.workspace_id, user_id) is None:
            # Same error as missing to prevent enumeration
            raise ScheduleNotFoundError(schedule_id)
        return schedule

    async def list_for_workspace(self, workspace_id: str, user_id: str) -> list[ScheduledMessage]:
        """List a workspace's schedules, newest first."""
        await self._require_workspace(workspace_id, user_id)
        return await self.schedules.list_by_workspace(workspace_id)

    async def list_runs(
        self,
        schedule_id: str,
        user_id: str,
        limit: int = 50,
    ) -> list[ScheduledMessageRun]:
        """List a schedule's run history, newest first."""
        await self.get_owned(schedule_id, user_id)
        return await self.schedules.list_runs(schedule_id, limit=limit)

    async def create(self, data: ScheduleCreate, user_id: str) -> ScheduledMessage:
        """Create an active schedule.

        Args:
            data: Creation request.
            user_id: Requesting user.

        Returns:
            Created schedule with its first ``next_run_at``.

        Raises:
            InvalidScheduleError: Timing, content or timezone is invalid.
            WorkspaceNotFoundError: Workspace missing or not owned.
            ScheduleLimitError: Workspace quota reached.
            ChannelNotFoundError: Channel not in the workspace.
            SavedMessageNotFoundError: Content reference is dangling.
        """
        send_at = to_utc_naive(data.send_at) if data.send_at else None
        _check_timing(send_at, data.recurrence_cron)
        if not data.saved_message_id and not data.payload:
            raise InvalidScheduleError("Either saved_message_id or payload is required")
        if data.saved_message_id and data.payload:
            raise InvalidScheduleError("Cannot provide both saved_message_id and payload")
        _check_timezone(data.timezone)

        await self._require_workspace(data.workspace_id, user_id)

        live = await self.schedules.count_live_by_workspace(data.workspace_id)
        if live >= self.max_schedules_per_workspace:
            raise ScheduleLimitError(self.max_schedules_per_workspace)

        if await self.channels.get_in_workspace(data.channel_id, data.workspace_id) is None:
            raise ChannelNotFoundError(data.channel_id)

        if data.saved_message_id:
            await self._require_saved_message(data.saved_message_id, user_id)

        next_run_at = compute_next_run_at(send_at, data.recurrence_cron, data.timezone)
        if next_run_at is None:
            raise InvalidScheduleError("Failed to compute next run time")

        return await self.schedules.create(
            workspace_id=data.workspace_id,
            channel_id=data.channel_id,
            name=data.name,
            next_run_at=next_run_at,
            saved_message_id=data.saved_message_id or None,
            payload=data.payload,
            send_at=send_at,
            recurrence_cron=data.recurrence_cron or None,
            timezone=data.timezone,
            max_runs=data.max_runs,
            created_by=user_id,
        )

    async def update(
        self,
        schedule_id: str,
        data: ScheduleUpdate,
        user_id: str,
    ) -> ScheduledMessage:
        """Apply a partial update.

        Setting ``send_at`` clears ``recurrence_cron`` and vice versa; setting
        ``saved_message_id`` clears ``payload`` and vice versa. ``next_run_at``
        is recomputed from now when timing or timezone change on an active
        schedule. Lowering ``max_runs`` to ``run_count`` or below completes it.

        Raises:
            ScheduleNotFoundError: Schedule missing or not owned.
            InvalidTransitionError: Schedule is completed or cancelled.
            InvalidScheduleError: Resulting definition is invalid.
            SavedMessageNotFoundError: New content reference is dangling.
        """
        schedule = await self.get_owned(schedule_id, user_id)
        if ScheduleStatus(schedule.status).is_terminal:
            raise InvalidTransitionError(schedule_id, schedule.status, "update")

        fields = data.model_fields_set

        # Content source
        if "saved_message_id" in fields or "payload" in fields:
            if "saved_message_id" in fields:
                new_saved = data.saved_message_id or None
            else:
                new_saved = schedule.saved_message_id
            if "payload" in fields:
                new_payload = json.dumps(data.payload) if data.payload else None
            else:
                new_payload = schedule.payload

            # Setting one source clears the other
            if new_saved and "saved_message_id" in fields and "payload" not in fields:
                new_payload = None
            if new_payload and "payload" in fields and "saved_message_id" not in fields:
                new_saved = None

            if new_saved and new_payload:
                raise InvalidScheduleError("Cannot provide both saved_message_id and payload")
            if not new_saved and not new_payload:
                raise InvalidScheduleError("Either saved_message_id or payload is required")
            if new_saved and "saved_message_id" in fields:
                await self._require_saved_message(new_saved, user_id)

            schedule.saved_message_id = new_saved
            schedule.payload = new_payload

        # Timing
        timing_changed = "send_at" in fields or "recurrence_cron" in fields
        if timing_changed:
            if "send_at" in fields:
                new_send_at = to_utc_naive(data.send_at) if data.send_at else None
            else:
                new_send_at = schedule.send_at
            if "recurrence_cron" in fields:
                new_cron = data.recurrence_cron or None
            else:
                new_cron = schedule.recurrence_cron

            # Setting one timing mode clears the other
            if new_send_at is not None and "send_at" in fields and "recurrence_cron" not in fields:
                new_cron = None
            if new_cron and "recurrence_cron" in fields and "send_at" not in fields:
                new_send_at = None

            _check_timing(new_send_at, new_cron)
            schedule.send_at = new_send_at
            schedule.recurrence_cron = new_cron

        if "timezone" in fields and data.timezone is not None:
            _check_timezone(data.timezone)
            schedule.timezone = data.timezone

        if "name" in fields and data.name is not None:
            schedule.name = data.name

        if "max_runs" in fields:
            schedule.max_runs = data.max_runs

        if (timing_changed or "timezone" in fields) and schedule.status == ScheduleStatus.ACTIVE.value:
            next_run_at = compute_next_run_at(
                schedule.send_at,
                schedule.recurrence_cron,
                schedule.timezone,
            )
            if next_run_at is None:
                raise InvalidScheduleError("Failed to compute next run time")
            schedule.next_run_at = next_run_at

        # A budget already spent ends the schedule
        if schedule.max_runs is not None and schedule.run_count >= schedule.max_runs:
            schedule.status = ScheduleStatus.COMPLETED.value
            schedule.next_run_at = None

        schedule.updated_at = _utcnow()
        await self.session.flush()
        return schedule

    async def pause(self, schedule_id: str, user_id: str) -> ScheduledMessage:
        """Pause an active schedule; pausing a paused one is a no-op."""
        schedule = await self.get_owned(schedule_id, user_id)
        if schedule.status == ScheduleStatus.PAUSED.value:
            return schedule
        if schedule.status != ScheduleStatus.ACTIVE.value:
            raise InvalidTransitionError(schedule_id, schedule.status, "pause")

        schedule.status = ScheduleStatus.PAUSED.value
        schedule.next_run_at = None
        schedule.updated_at = _utcnow()
        await self.session.flush()
        return schedule

    async def resume(self, schedule_id: str, user_id: str) -> ScheduledMessage:
        """Resume a paused schedule, recomputing ``next_run_at`` from now."""
        schedule = await self.get_owned(schedule_id, user_id)
        if schedule.status == ScheduleStatus.ACTIVE.value:
            return schedule
        if schedule.status != ScheduleStatus.PAUSED.value:
            raise InvalidTransitionError(schedule_id, schedule.status, "resume")

        next_run_at = compute_next_run_at(
            schedule.send_at,
            schedule.recurrence_cron,
            schedule.timezone,
        )
        if next_run_at is None:
            raise InvalidScheduleError("Failed to compute next run time")

        schedule.status = ScheduleStatus.ACTIVE.value
        schedule.next_run_at = next_run_at
        schedule.last_error = None
        schedule.updated_at = _utcnow()
        await self.session.flush()
        return schedule

    async def cancel(self, schedule_id: str, user_id: str) -> ScheduledMessage:
        """Cancel a schedule permanently."""
        schedule = await self.get_owned(schedule_id, user_id)
        if ScheduleStatus(schedule.status).is_terminal:
            raise InvalidTransitionError(schedule_id, schedule.status, "cancel")

        schedule.status = ScheduleStatus.CANCELLED.value
        schedule.next_run_at = None
        schedule.updated_at = _utcnow()
        await self.session.flush()
        return schedule

    async def delete(self, schedule_id: str, user_id: str) -> None:
        """Delete a schedule and its run history."""
        await self.get_owned(schedule_id, user_id)
        if not await self.schedules.delete(schedule_id):
            raise ScheduleNotFoundError(schedule_id)
