"""Send a resolved message to its channel's webhook."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from hookcast.core.discord import MessageSender, SendResult, WebhookConfig
from hookcast.core.errors import ChannelConfigError
from hookcast.core.resolver import ResolvedMessage
from hookcast.repositories.message_repo import MessageRepository
from hookcast.repositories.workspace_repo import ChannelRepository

logger = logging.getLogger(__name__)


class Dispatcher:
    """Delivers resolved messages and keeps the sent-message history.

    Example:
        dispatcher = Dispatcher(session_factory, DiscordWebhookSender())
        result = await dispatcher.dispatch(channel_id, resolved)
    """

    def __init__(self, session_factory: Any, sender: MessageSender) -> None:
        """Initialize dispatcher.

        Args:
            session_factory: Async session factory for DB access.
            sender: Capability that performs the network send.
        """
        self._session_factory = session_factory
        self._sender = sender

    async def get_webhook_config(self, channel_id: str) -> WebhookConfig:
        """Load a channel's webhook configuration.

        Raises:
            ChannelConfigError: If the channel is missing or has no webhook URL.
        """
        async with self._session_factory() as session:
            channel = await ChannelRepository(session).get_by_id(channel_id)

        if channel is None:
            raise ChannelConfigError(channel_id, "does not exist")
        if not channel.webhook_url:
            raise ChannelConfigError(channel_id)

        return WebhookConfig(
            url=channel.webhook_url,
            username=channel.webhook_username or None,
            avatar_url=channel.webhook_avatar_url or None,
        )

    async def dispatch(self, channel_id: str, message: ResolvedMessage) -> SendResult:
        """Send a message to a channel.

        Args:
            channel_id: Target channel.
            message: Resolved message content.

        Returns:
            The sender's result, unchanged.

        Raises:
            ChannelConfigError: If the channel has no webhook configured.
        """
        webhook = await self.get_webhook_config(channel_id)
        result = await self._sender.send(
            webhook,
            content=message.content,
            embeds=message.embeds or None,
        )

        if result.success:
            await self._record_history(channel_id, message, result)

        return result

    async def _record_history(
        self,
        channel_id: str,
        message: ResolvedMessage,
        result: SendResult,
    ) -> None:
        # The message is already in Discord; history is best effort
        try:
            async with self._session_factory() as session:
                await MessageRepository(session).record_sent(
                    channel_id=channel_id,
                    content=message.content,
                    embeds=message.embeds,
                    discord_message_id=result.message_id,
                    sent_at=datetime.now(UTC).replace(tzinfo=None),
                )
                await session.commit()
        except Exception as e:
            logger.error(f"Failed to save message to history for channel {channel_id}: {e}")
