"""Workspace and channel lookups."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hookcast.models.workspace import Channel, Workspace


class WorkspaceRepository:
    """Read access to workspaces."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, workspace_id: str) -> Workspace | None:
        stmt = select(Workspace).where(Workspace.id == workspace_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_owned(self, workspace_id: str, user_id: str) -> Workspace | None:
        """Get a workspace only if it belongs to ``user_id``."""
        stmt = select(Workspace).where(
            Workspace.id == workspace_id,
            Workspace.user_id == user_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


class ChannelRepository:
    """Read access to channels."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, channel_id: str) -> Channel | None:
        stmt = select(Channel).where(Channel.id == channel_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_in_workspace(self, channel_id: str, workspace_id: str) -> Channel | None:
        """Get a channel only if it belongs to ``workspace_id``."""
        stmt = select(Channel).where(
            Channel.id == channel_id,
            Channel.workspace_id == workspace_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
