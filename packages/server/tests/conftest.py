"""
Shared fixtures: a fresh SQLite database per test and an in-process fan-out queue.
"""

from __future__ import annotations

import os

os.environ.setdefault("BF_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BF_LOG_FORMAT", "text")

import uuid
from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

import boardfeed.models  # noqa: F401
from boardfeed.core.auth import Identity, create_identity_token
from boardfeed.core.database import get_session
from boardfeed.core.jobs import FanOutQueue, commit_and_dispatch, set_dispatcher
from boardfeed.tasks.fanout import JOB_HANDLERS

T0 = datetime(2025, 1, 6, 9, 0, 0)


def at(minutes: float) -> datetime:
    """Test clock: ``at(n)`` is n minutes after T0."""
    return T0 + timedelta(minutes=minutes)


def make_identity(org_id: uuid.UUID | None = None) -> Identity:
    return Identity(user_id=uuid.uuid4(), org_id=org_id or uuid.uuid4())


def auth_headers(identity: Identity) -> dict[str, str]:
    token = create_identity_token(identity.user_id, identity.org_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'boardfeed.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def queue(session_factory):
    queue = FanOutQueue(
        JOB_HANDLERS,
        session_factory,
        workers=2,
        max_attempts=3,
        retry_base_seconds=0,
    )
    await queue.start()
    set_dispatcher(queue)
    yield queue
    await queue.stop()
    set_dispatcher(None)


@pytest.fixture
def settle(session, queue):
    """Commit the test session, dispatch its jobs, and wait for the workers."""

    async def _settle():
        await commit_and_dispatch(session)
        await queue.join()

    return _settle


@pytest.fixture
def org_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def owner(org_id) -> Identity:
    return make_identity(org_id)


@pytest.fixture
async def client(session_factory, queue):
    from boardfeed.main import app

    async def _session_override():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = _session_override
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
