"""Service layer."""
from hookcast.services.schedule_service import (
    ChannelNotFoundError,
    InvalidScheduleError,
    InvalidTransitionError,
    SavedMessageNotFoundError,
    ScheduleLimitError,
    ScheduleNotFoundError,
    ScheduleService,
    WorkspaceNotFoundError,
)

__all__ = [
    "ChannelNotFoundError",
    "InvalidScheduleError",
    "InvalidTransitionError",
    "SavedMessageNotFoundError",
    "ScheduleLimitError",
    "ScheduleNotFoundError",
    "ScheduleService",
    "WorkspaceNotFoundError",
]
