"""Errors raised while dispatching scheduled messages."""

from __future__ import annotations


class DispatchEngineError(Exception):
    """Base class for dispatch engine errors."""


class ResolutionError(DispatchEngineError):
    """No usable content could be resolved for a schedule."""


class ChannelConfigError(DispatchEngineError):
    """Target channel is missing or has no webhook configured."""

    def __init__(self, channel_id: str, reason: str = "webhook URL not configured") -> None:
        super().__init__(f"Channel '{channel_id}' not found or {reason}")
        self.channel_id = channel_id


class DispatchError(DispatchEngineError):
    """The message sender reported a failed send."""


class ClaimConflict(DispatchEngineError):
    """Another runner claimed the schedule first."""

    def __init__(self, schedule_id: str) -> None:
        super().__init__(f"Schedule '{schedule_id}' already claimed")
        self.schedule_id = schedule_id
