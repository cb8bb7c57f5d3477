"""Discord webhook client.

Sends messages through channel webhooks and reports the outcome as a
``SendResult`` instead of raising, so callers decide how to record failures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

DISCORD_HOSTS = ("discord.com", "discordapp.com")


@dataclass(frozen=True)
class WebhookConfig:
    """Where and as whom a channel's messages are posted."""
    url: str
    username: str | None = None
    avatar_url: str | None = None


@dataclass(frozen=True)
class SendResult:
    """Outcome of one send."""
    success: bool
    message_id: str | None = None
    error: str | None = None


class MessageSender(Protocol):
    """Capability that delivers a message to a webhook."""

    async def send(
        self,
        webhook: WebhookConfig,
        content: str | None = None,
        embeds: list[dict[str, Any]] | None = None,
    ) -> SendResult:
        """Send a message."""
        ...


def validate_webhook_url(url: str) -> bool:
    """Check that a URL is an https Discord webhook endpoint.

    Args:
        url: Webhook URL.

    Returns:
        True if the URL points at Discord's webhook API.
    """
    try:
        parsed = urlparse(url)
    except (TypeError, ValueError, AttributeError):
        return False

    hostname = (parsed.hostname or "").lower()
    is_discord_host = any(
        hostname == host or hostname.endswith("." + host) for host in DISCORD_HOSTS
    )
    return (
        parsed.scheme == "https"
        and is_discord_host
        and parsed.path.startswith("/api/webhooks/")
    )


def build_payload(
    webhook: WebhookConfig,
    content: str | None,
    embeds: list[dict[str, Any]] | None,
) -> dict[str, Any]:
    """Build the JSON body for an execute-webhook call."""
    payload: dict[str, Any] = {}
    if content:
        payload["content"] = content
    if webhook.username:
        payload["username"] = webhook.username
    if webhook.avatar_url:
        payload["avatar_url"] = webhook.avatar_url
    if embeds:
        payload["embeds"] = embeds
    return payload


class DiscordWebhookSender:
    """Sends messages via Discord's execute-webhook endpoint.

    Example:
        sender = DiscordWebhookSender(timeout=15.0)
        result = await sender.send(WebhookConfig(url=...), content="hi")
        await sender.aclose()
    """

    def __init__(
        self,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize sender.

        Args:
            timeout: Request timeout in seconds.
            client: Shared HTTP client (created lazily when omitted).
        """
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this sender created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def send(
        self,
        webhook: WebhookConfig,
        content: str | None = None,
        embeds: list[dict[str, Any]] | None = None,
    ) -> SendResult:
        """Send a message to a webhook.

        Args:
            webhook: Target webhook.
            content: Message text.
            embeds: Embed objects.

        Returns:
            SendResult with the created message ID on success.
        """
        if not validate_webhook_url(webhook.url):
            return SendResult(success=False, error="Invalid webhook URL format")

        payload = build_payload(webhook, content, embeds)
        if not payload.get("content") and not payload.get("embeds"):
            return SendResult(
                success=False,
                error="Message must have either content or at least one embed",
            )

        try:
            response = await self._get_client().post(
                webhook.url,
                params={"wait": "true"},
                json=payload,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Discord webhook request failed: {e}")
            return SendResult(success=False, error=str(e) or type(e).__name__)

        if not response.is_success:
            return SendResult(
                success=False,
                error=f"Discord API error: {response.status_code} {response.text}",
            )

        # With wait=true Discord answers with the created message
        message_id = None
        if "application/json" in response.headers.get("content-type", "") and response.content.strip():
            try:
                data = response.json()
            except ValueError:
                data = None
            if isinstance(data, dict) and data.get("id"):
                message_id = str(data["id"])

        return SendResult(success=True, message_id=message_id)
