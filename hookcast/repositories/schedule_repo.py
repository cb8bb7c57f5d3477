"""Scheduled message repository implementation."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select, delete, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from hookcast.models.schedule import ScheduledMessage, ScheduledMessageRun, ScheduleStatus


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class ScheduleRepository:
    """Repository for scheduled messages and their run records."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository.

        Args:
            session: Database session.
        """
        self.session = session

    async def create(
        self,
        workspace_id: str,
        channel_id: str,
        name: str,
        next_run_at: datetime,
        saved_message_id: str | None = None,
        payload: dict[str, Any] | None = None,
        send_at: datetime | None = None,
        recurrence_cron: str | None = None,
        timezone: str = "UTC",
        max_runs: int | None = None,
        created_by: str | None = None,
    ) -> ScheduledMessage:
        """Create a new active schedule.

        Args:
            workspace_id: Owning workspace.
            channel_id: Target channel.
            name: Display name.
            next_run_at: First due time (naive UTC).
            saved_message_id: Template or legacy message reference.
            payload: Inlined content snapshot.
            send_at: One-shot fire time.
            recurrence_cron: Cron expression for recurring schedules.
            timezone: Timezone the cron expression is evaluated in.
            max_runs: Optional run budget.
            created_by: Creating user ID.

        Returns:
            Created schedule entity.
        """
        now = _utcnow()
        schedule = ScheduledMessage(
            id=str(uuid.uuid4()),
            workspace_id=workspace_id,
            channel_id=channel_id,
            saved_message_id=saved_message_id,
            name=name,
            payload=json.dumps(payload) if payload is not None else None,
            send_at=send_at,
            recurrence_cron=recurrence_cron,
            timezone=timezone,
            status=ScheduleStatus.ACTIVE.value,
            next_run_at=next_run_at,
            max_runs=max_runs,
            run_count=0,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        self.session.add(schedule)
        await self.session.flush()
        return schedule

    async def get_by_id(self, schedule_id: str) -> ScheduledMessage | None:
        """Get schedule by ID.

        Args:
            schedule_id: Schedule ID.

        Returns:
            Schedule entity or None if not found.
        """
        stmt = select(ScheduledMessage).where(ScheduledMessage.id == schedule_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_workspace(self, workspace_id: str) -> list[ScheduledMessage]:
        """List all schedules for a workspace, newest first."""
        stmt = (
            select(ScheduledMessage)
            .where(ScheduledMessage.workspace_id == workspace_id)
            .order_by(ScheduledMessage.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_live_by_workspace(self, workspace_id: str) -> int:
        """Count active or paused schedules in a workspace."""
        stmt = (
            select(func.count())
            .select_from(ScheduledMessage)
            .where(
                ScheduledMessage.workspace_id == workspace_id,
                ScheduledMessage.status.in_(
                    [ScheduleStatus.ACTIVE.value, ScheduleStatus.PAUSED.value]
                ),
            )
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def list_due(
        self,
        now: datetime,
        limit: int = 50,
    ) -> list[ScheduledMessage]:
        """List active schedules whose next run time has passed.

        Args:
            now: Reference time (naive UTC).
            limit: Maximum number of rows.

        Returns:
            Due schedules, earliest first.
        """
        stmt = (
            select(ScheduledMessage)
            .where(
                ScheduledMessage.status == ScheduleStatus.ACTIVE.value,
                ScheduledMessage.next_run_at.is_not(None),
                ScheduledMessage.next_run_at <= now,
            )
            .order_by(ScheduledMessage.next_run_at.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def claim(
        self,
        schedule_id: str,
        expected_next_run_at: datetime,
        claimed_until: datetime,
        now: datetime,
    ) -> bool:
        """Claim a due schedule with a compare-and-swap on ``next_run_at``.

        Only the caller whose read of ``next_run_at`` still matches the stored
        value moves it to ``claimed_until``, and only while no other claim on
        the row is live.

        Args:
            schedule_id: Schedule ID.
            expected_next_run_at: Value read by the caller.
            claimed_until: Placeholder due time while the claim is held.
            now: Reference time; claims ending at or before it have expired.

        Returns:
            True if this caller won the claim.
        """
        stmt = (
            update(ScheduledMessage)
            .where(
                ScheduledMessage.id == schedule_id,
                ScheduledMessage.status == ScheduleStatus.ACTIVE.value,
                ScheduledMessage.next_run_at == expected_next_run_at,
                self._claim_free(now),
            )
            .values(next_run_at=claimed_until, claimed_until=claimed_until)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def lock_for_run(
        self,
        schedule_id: str,
        claimed_until: datetime,
        now: datetime,
    ) -> bool:
        """Hold an active or paused schedule for an out-of-band run.

        Unlike ``claim`` this does not depend on ``next_run_at``, so it also
        serializes runs of paused schedules.

        Returns:
            True if no live claim existed and the lock was taken.
        """
        stmt = (
            update(ScheduledMessage)
            .where(
                ScheduledMessage.id == schedule_id,
                ScheduledMessage.status.in_(
                    [ScheduleStatus.ACTIVE.value, ScheduleStatus.PAUSED.value]
                ),
                self._claim_free(now),
            )
            .values(claimed_until=claimed_until)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    def _claim_free(now: datetime):
        return or_(
            ScheduledMessage.claimed_until.is_(None),
            ScheduledMessage.claimed_until <= now,
        )

    async def increment_run_count(
        self,
        schedule_id: str,
        **values: Any,
    ) -> ScheduledMessage | None:
        """Add one to ``run_count`` in the database and return the stored row.

        Args:
            schedule_id: Schedule ID.
            **values: Other column values written in the same statement.

        Returns:
            The schedule as stored after the increment, or None if it is gone.
        """
        values.setdefault("updated_at", _utcnow())
        stmt = (
            update(ScheduledMessage)
            .where(ScheduledMessage.id == schedule_id)
            .values(run_count=ScheduledMessage.run_count + 1, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            return None

        stmt = (
            select(ScheduledMessage)
            .where(ScheduledMessage.id == schedule_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_fields(
        self,
        schedule_id: str,
        expected_status: str | None = None,
        **values: Any,
    ) -> bool:
        """Write column values to a schedule and bump ``updated_at``.

        Args:
            schedule_id: Schedule ID.
            expected_status: Only write if the stored status still equals this.
            **values: Column values to set.

        Returns:
            True if a row was updated.
        """
        values.setdefault("updated_at", _utcnow())
        conditions = [ScheduledMessage.id == schedule_id]
        if expected_status is not None:
            conditions.append(ScheduledMessage.status == expected_status)
        stmt = (
            update(ScheduledMessage)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def delete(self, schedule_id: str) -> bool:
        """Delete a schedule together with its run records.

        Args:
            schedule_id: Schedule ID.

        Returns:
            True if deleted, False if not found.
        """
        await self.session.execute(
            delete(ScheduledMessageRun).where(
                ScheduledMessageRun.scheduled_message_id == schedule_id
            )
        )
        stmt = delete(ScheduledMessage).where(ScheduledMessage.id == schedule_id)
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def add_run(
        self,
        schedule_id: str,
        started_at: datetime,
        finished_at: datetime,
        success: bool,
        discord_message_id: str | None = None,
        error: str | None = None,
    ) -> ScheduledMessageRun:
        """Append a run record.

        Args:
            schedule_id: Schedule ID.
            started_at: Attempt start (naive UTC).
            finished_at: Attempt end (naive UTC).
            success: Whether the send succeeded.
            discord_message_id: Message ID returned by Discord.
            error: Failure message.

        Returns:
            Created run record.
        """
        run = ScheduledMessageRun(
            id=str(uuid.uuid4()),
            scheduled_message_id=schedule_id,
            started_at=started_at,
            finished_at=finished_at,
            success=success,
            discord_message_id=discord_message_id if success else None,
            error=None if success else error,
        )
        self.session.add(run)
        await self.session.flush()
        return run

    async def list_runs(
        self,
        schedule_id: str,
        limit: int = 50,
    ) -> list[ScheduledMessageRun]:
        """List run records for a schedule, newest first."""
        stmt = (
            select(ScheduledMessageRun)
            .where(ScheduledMessageRun.scheduled_message_id == schedule_id)
            .order_by(ScheduledMessageRun.started_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
