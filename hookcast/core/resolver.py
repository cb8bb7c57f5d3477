"""Resolve a schedule's content reference into a send-ready message.

A schedule names its content either through ``saved_message_id`` or through
an inlined ``payload`` snapshot. ``saved_message_id`` predates templates and
may point at a template or at a legacy saved message, so lookups go to the
template store first and then to the legacy message store, and the store that
answered is recorded on the result.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from hookcast.core.errors import ResolutionError
from hookcast.models.message import Message
from hookcast.models.schedule import ScheduledMessage
from hookcast.models.template import Template
from hookcast.repositories.message_repo import MessageRepository, TemplateRepository

logger = logging.getLogger(__name__)


class ContentSource(str, Enum):
    """Store that supplied a resolved message."""
    TEMPLATE = "template"
    LEGACY_MESSAGE = "legacy_message"
    PAYLOAD = "payload"


@dataclass
class ResolvedMessage:
    """Send-ready message content."""
    content: str | None = None
    embeds: list[dict[str, Any]] = field(default_factory=list)
    source: ContentSource = ContentSource.PAYLOAD

    @property
    def is_empty(self) -> bool:
        return not self.content and not self.embeds


def _load_json(raw: str | dict | list | None) -> Any:
    """Decode a JSON text column, tolerating already-decoded values."""
    if raw is None or isinstance(raw, (dict, list)):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        logger.warning("Ignoring malformed JSON document")
        return None


def normalize_embeds(value: Any) -> list[dict[str, Any]]:
    """Turn the stored embed shapes into a list of embeds.

    Accepts a list of embeds, an ``{"embeds": [...]}`` wrapper, or a single
    bare embed object.
    """
    if not value:
        return []
    if isinstance(value, list):
        return [e for e in value if e]
    if isinstance(value, dict):
        wrapped = value.get("embeds")
        if isinstance(wrapped, list):
            return [e for e in wrapped if e]
        return [value]
    return []


class MessageResolver:
    """Builds the message a schedule should send."""

    def __init__(self, session: AsyncSession) -> None:
        self._templates = TemplateRepository(session)
        self._messages = MessageRepository(session)

    async def resolve(self, schedule: ScheduledMessage) -> ResolvedMessage:
        """Resolve schedule content.

        Args:
            schedule: Schedule to resolve.

        Returns:
            ResolvedMessage with content and/or embeds.

        Raises:
            ResolutionError: If the reference is dangling or nothing usable
                was found.
        """
        if schedule.saved_message_id:
            resolved = await self._resolve_saved(schedule.saved_message_id)
        else:
            resolved = self._from_payload(_load_json(schedule.payload))

        if resolved.is_empty:
            raise ResolutionError("Message has no content or embeds")

        logger.debug(
            f"Resolved schedule {schedule.id} from {resolved.source.value} "
            f"({len(resolved.embeds)} embeds)"
        )
        return resolved

    async def _lookup_saved(
        self,
        saved_message_id: str,
    ) -> tuple[ContentSource, Template | Message] | None:
        template = await self._templates.get_by_id(saved_message_id)
        if template is not None:
            return ContentSource.TEMPLATE, template

        message = await self._messages.get_by_id(saved_message_id)
        if message is not None:
            return ContentSource.LEGACY_MESSAGE, message

        return None

    async def _resolve_saved(self, saved_message_id: str) -> ResolvedMessage:
        found = await self._lookup_saved(saved_message_id)
        if found is None:
            raise ResolutionError(
                f"Saved message or template not found: {saved_message_id}"
            )

        source, record = found
        if source is ContentSource.TEMPLATE:
            return self._from_template(record)

        return ResolvedMessage(
            content=record.content or None,
            embeds=normalize_embeds(_load_json(record.embed_data)),
            source=ContentSource.LEGACY_MESSAGE,
        )

    @staticmethod
    def _from_template(template: Template) -> ResolvedMessage:
        message_data = _load_json(template.message_data)
        if isinstance(message_data, dict) and message_data:
            return ResolvedMessage(
                content=message_data.get("content") or None,
                embeds=normalize_embeds(message_data.get("embeds")),
                source=ContentSource.TEMPLATE,
            )

        # Templates saved before message_data existed
        return ResolvedMessage(
            content=template.content or None,
            embeds=normalize_embeds(_load_json(template.embed_data)),
            source=ContentSource.TEMPLATE,
        )

    @staticmethod
    def _from_payload(payload: Any) -> ResolvedMessage:
        if not isinstance(payload, dict):
            return ResolvedMessage(source=ContentSource.PAYLOAD)

        embeds = payload.get("embeds")
        if not embeds:
            embeds = payload.get("embed_data")

        return ResolvedMessage(
            content=payload.get("content") or None,
            embeds=normalize_embeds(embeds),
            source=ContentSource.PAYLOAD,
        )
