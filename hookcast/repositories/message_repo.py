"""Template and message repositories."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hookcast.models.message import Message
from hookcast.models.template import Template


class TemplateRepository:
    """Read access to saved templates."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, template_id: str) -> Template | None:
        stmt = select(Template).where(Template.id == template_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_owned(self, template_id: str, user_id: str) -> Template | None:
        """Get a template only if it belongs to ``user_id``."""
        stmt = select(Template).where(
            Template.id == template_id,
            Template.user_id == user_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


class MessageRepository:
    """Legacy saved messages and sent-message history."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, message_id: str) -> Message | None:
        stmt = select(Message).where(Message.id == message_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def record_sent(
        self,
        channel_id: str,
        content: str | None,
        embeds: list[dict[str, Any]],
        discord_message_id: str | None,
        sent_at: datetime,
    ) -> Message:
        """Store a sent message in the channel history.

        A single embed is stored bare, several are wrapped as ``{"embeds": [...]}``.

        Args:
            channel_id: Channel the message went to.
            content: Message text.
            embeds: Embeds that were sent.
            discord_message_id: ID returned by Discord.
            sent_at: Send time (naive UTC).

        Returns:
            Created message entity.
        """
        if not embeds:
            embed_data = None
        elif len(embeds) == 1:
            embed_data = json.dumps(embeds[0])
        else:
            embed_data = json.dumps({"embeds": embeds})

        message = Message(
            id=str(uuid.uuid4()),
            channel_id=channel_id,
            content=content or None,
            embed_data=embed_data,
            discord_message_id=discord_message_id,
            sent_at=sent_at,
        )
        self.session.add(message)
        await self.session.flush()
        return message
