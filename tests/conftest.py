"""Shared test fixtures."""
import os

# Set test environment variables BEFORE any hookcast imports
# This ensures JWT_SECRET is set when jwt.py module is loaded
if not os.environ.get("JWT_SECRET"):
    os.environ["JWT_SECRET"] = "test-jwt-secret-key-for-testing-only"
if not os.environ.get("CRON_SECRET"):
    os.environ["CRON_SECRET"] = "test-cron-secret"

import json
import uuid
from datetime import UTC, datetime
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from hookcast.core.discord import SendResult, WebhookConfig
from hookcast.db.database import Base
from hookcast.models import Channel, Message, Template, Workspace
from hookcast.repositories.schedule_repo import ScheduleRepository

# Test database URL
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_USER_ID = "test-user-123"
WEBHOOK_URL = "https://discord.com/api/webhooks/123/abc"


def utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class FakeSender:
    """In-memory MessageSender that records every call."""

    def __init__(self, fail_with: str | None = None, message_id: str = "999"):
        self.fail_with = fail_with
        self.message_id = message_id
        self.calls: list[dict[str, Any]] = []

    async def send(
        self,
        webhook: WebhookConfig,
        content: str | None = None,
        embeds: list[dict[str, Any]] | None = None,
    ) -> SendResult:
        self.calls.append({"webhook": webhook, "content": content, "embeds": embeds})
        if self.fail_with:
            return SendResult(success=False, error=self.fail_with)
        return SendResult(success=True, message_id=self.message_id)


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine shared by every session in a test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    """Session factory handed to runners and dispatchers."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@pytest.fixture
def fake_sender() -> FakeSender:
    return FakeSender()


@pytest_asyncio.fixture
async def workspace(db_session) -> Workspace:
    """Workspace owned by the test user."""
    ws = Workspace(id=str(uuid.uuid4()), name="Test Server", user_id=TEST_USER_ID)
    db_session.add(ws)
    await db_session.commit()
    return ws


@pytest_asyncio.fixture
async def channel(db_session, workspace) -> Channel:
    """Channel with a configured webhook."""
    ch = Channel(
        id=str(uuid.uuid4()),
        workspace_id=workspace.id,
        name="announcements",
        webhook_url=WEBHOOK_URL,
        webhook_username="Hookcast",
    )
    db_session.add(ch)
    await db_session.commit()
    return ch


@pytest_asyncio.fixture
async def make_template(db_session):
    """Factory for templates."""

    async def _make(
        message_data: dict | None = None,
        content: str | None = None,
        embed_data: Any = None,
        user_id: str = TEST_USER_ID,
    ) -> Template:
        template = Template(
            id=str(uuid.uuid4()),
            user_id=user_id,
            name="Template",
            message_data=json.dumps(message_data) if message_data is not None else None,
            content=content,
            embed_data=json.dumps(embed_data) if embed_data is not None else None,
        )
        db_session.add(template)
        await db_session.commit()
        return template

    return _make


@pytest_asyncio.fixture
async def make_legacy_message(db_session, channel):
    """Factory for legacy saved messages."""

    async def _make(content: str | None = None, embed_data: Any = None) -> Message:
        message = Message(
            id=str(uuid.uuid4()),
            channel_id=channel.id,
            content=content,
            embed_data=json.dumps(embed_data) if embed_data is not None else None,
        )
        db_session.add(message)
        await db_session.commit()
        return message

    return _make


@pytest_asyncio.fixture
async def make_schedule(db_session, workspace, channel):
    """Factory for schedules stored directly through the repository."""

    async def _make(
        next_run_at: datetime | None = None,
        payload: dict | None = None,
        saved_message_id: str | None = None,
        send_at: datetime | None = None,
        recurrence_cron: str | None = None,
        timezone: str = "UTC",
        max_runs: int | None = None,
        channel_id: str | None = None,
    ):
        if saved_message_id is None and payload is None:
            payload = {"content": "Hello from a schedule"}
        if send_at is None and recurrence_cron is None:
            send_at = next_run_at or utcnow()

        schedule = await ScheduleRepository(db_session).create(
            workspace_id=workspace.id,
            channel_id=channel_id or channel.id,
            name="Test schedule",
            next_run_at=next_run_at or utcnow(),
            saved_message_id=saved_message_id,
            payload=payload,
            send_at=send_at,
            recurrence_cron=recurrence_cron,
            timezone=timezone,
            max_runs=max_runs,
            created_by=TEST_USER_ID,
        )
        await db_session.commit()
        return schedule

    return _make


@pytest_asyncio.fixture
async def load_schedule(session_factory):
    """Read a schedule's current row through a fresh session."""

    async def _load(schedule_id: str):
        async with session_factory() as session:
            return await ScheduleRepository(session).get_by_id(schedule_id)

    return _load


@pytest.fixture
def failing_sender() -> FakeSender:
    return FakeSender(fail_with="Discord API error: 500 Internal Server Error")
