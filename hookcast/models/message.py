"""Message model."""
from datetime import UTC, datetime
from sqlalchemy import String, Text, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column
from hookcast.db.database import Base


def _utcnow():
    """Return current UTC time without timezone info (for SQLite compat)."""
    return datetime.now(UTC).replace(tzinfo=None)


class Message(Base):
    """Sent message history, also the legacy saved-message store."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_channel_sent", "channel_id", "sent_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
    )
    channel_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("channels.id", ondelete="CASCADE"),
        nullable=False,
    )
    content: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    embed_data: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    discord_message_id: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
    )
    sent_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=_utcnow,
    )
