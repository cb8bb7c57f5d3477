"""Scheduled message and run record models."""
from datetime import UTC, datetime
from enum import Enum
from sqlalchemy import String, Text, Boolean, Integer, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column
from hookcast.db.database import Base


def _utcnow():
    """Return current UTC time without timezone info (for SQLite compat)."""
    return datetime.now(UTC).replace(tzinfo=None)


class ScheduleStatus(str, Enum):
    """Lifecycle status of a scheduled message.

    COMPLETED and CANCELLED are terminal.
    """
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ScheduleStatus.COMPLETED, ScheduleStatus.CANCELLED)


class ScheduledMessage(Base):
    """Scheduled message entity.

    Exactly one of ``send_at`` / ``recurrence_cron`` is set, and exactly one
    of ``saved_message_id`` / ``payload`` supplies the content.
    """

    __tablename__ = "scheduled_messages"
    __table_args__ = (
        Index("ix_scheduled_messages_status_next_run", "status", "next_run_at"),
        Index("ix_scheduled_messages_workspace_created", "workspace_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
    )
    workspace_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    channel_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("channels.id", ondelete="CASCADE"),
        nullable=False,
    )
    saved_message_id: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
    )
    name: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
    )
    payload: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    send_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )
    recurrence_cron: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    timezone: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="UTC",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ScheduleStatus.ACTIVE.value,
    )
    last_run_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )
    next_run_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )
    # Set while a runner holds the schedule; a past value is an expired claim
    claimed_until: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )
    max_runs: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    run_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    created_by: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    @property
    def is_recurring(self) -> bool:
        return bool(self.recurrence_cron)


class ScheduledMessageRun(Base):
    """Append-only record of one dispatch attempt."""

    __tablename__ = "scheduled_message_runs"
    __table_args__ = (
        Index("ix_scheduled_message_runs_schedule_started", "scheduled_message_id", "started_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
    )
    scheduled_message_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("scheduled_messages.id", ondelete="CASCADE"),
        nullable=False,
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )
    finished_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )
    success: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
    )
    discord_message_id: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
    )
    error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
