"""API request/response schemas."""
from hookcast.dtos.schedule import (
    RunNowResponse,
    RunnerResponse,
    ScheduleCreate,
    ScheduleListResponse,
    ScheduleResponse,
    ScheduleRunListResponse,
    ScheduleRunResponse,
    ScheduleUpdate,
)

__all__ = [
    "RunNowResponse",
    "RunnerResponse",
    "ScheduleCreate",
    "ScheduleListResponse",
    "ScheduleResponse",
    "ScheduleRunListResponse",
    "ScheduleRunResponse",
    "ScheduleUpdate",
]
