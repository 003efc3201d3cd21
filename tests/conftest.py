# tests/conftest.py
from __future__ import annotations

from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.app.config import Settings
from db.engine import build_engine
from jobs.orchestrator import JobContext
from jobs.store import JobRecordStore
from models import Base


class RecordingScheduler:
    """Runs steps inline, records sleeps and events instead of performing them."""

    def __init__(self) -> None:
        self.steps: list[str] = []
        self.sleeps: list[tuple[str, float]] = []
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def run_step(self, name, fn):
        self.steps.append(name)
        return await fn()

    async def sleep(self, name: str, seconds: float) -> None:
        self.sleeps.append((name, seconds))

    async def send_event(self, name: str, data: dict[str, Any]) -> None:
        self.events.append((name, data))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}",
        api_secret_key="test-secret",
        artifact_storage_path=str(tmp_path / "artifacts"),
    )


@pytest_asyncio.fixture
async def session_factory(settings):
    engine = build_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory) -> JobRecordStore:
    return JobRecordStore(session_factory)


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def ctx(session_factory, store, scheduler, settings) -> JobContext:
    return JobContext(
        session_factory=session_factory,
        store=store,
        scheduler=scheduler,
        settings=settings,
    )
