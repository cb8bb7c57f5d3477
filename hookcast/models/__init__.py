"""SQLAlchemy models."""
from hookcast.models.workspace import Workspace, Channel
from hookcast.models.template import Template
from hookcast.models.message import Message
from hookcast.models.schedule import ScheduledMessage, ScheduledMessageRun, ScheduleStatus

__all__ = [
    "Workspace",
    "Channel",
    "Template",
    "Message",
    "ScheduledMessage",
    "ScheduledMessageRun",
    "ScheduleStatus",
]
