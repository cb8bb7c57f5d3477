"""Repository layer."""
from hookcast.repositories.schedule_repo import ScheduleRepository
from hookcast.repositories.workspace_repo import ChannelRepository, WorkspaceRepository
from hookcast.repositories.message_repo import MessageRepository, TemplateRepository

__all__ = [
    "ScheduleRepository",
    "WorkspaceRepository",
    "ChannelRepository",
    "TemplateRepository",
    "MessageRepository",
]
