"""Scheduled message dispatch engine."""
from hookcast.core.errors import (
    ChannelConfigError,
    ClaimConflict,
    DispatchEngineError,
    DispatchError,
    ResolutionError,
)
from hookcast.core.runner import RunnerResult, ScheduleRunner
from hookcast.core.schedule_time import compute_next_run_at, is_valid_recurrence

__all__ = [
    "ChannelConfigError",
    "ClaimConflict",
    "DispatchEngineError",
    "DispatchError",
    "ResolutionError",
    "RunnerResult",
    "ScheduleRunner",
    "compute_next_run_at",
    "is_valid_recurrence",
]
