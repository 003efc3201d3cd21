# jobs/scheduler.py
"""
Execution capabilities handed to job functions.

Job code never sleeps, runs steps, or emits events directly; it goes
through a Scheduler so it can be driven by a durable queue in production
and by a recording fake in tests.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.observability import log_event

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEAD_LETTER_EVENT = "jobs.dead_letter"


class Scheduler(Protocol):
    async def run_step(self, name: str, fn: Callable[[], Awaitable[T]]) -> T: ...

    async def sleep(self, name: str, seconds: float) -> None: ...

    async def send_event(self, name: str, data: dict[str, Any]) -> None: ...


class InProcessScheduler:
    """Runs steps inline and records emitted events in the events table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def run_step(self, name: str, fn: Callable[[], Awaitable[T]]) -> T:
        logger.debug("step %s start", name)
        result = await fn()
        logger.debug("step %s done", name)
        return result

    async def sleep(self, name: str, seconds: float) -> None:
        logger.debug("sleep %s for %.3fs", name, seconds)
        await asyncio.sleep(seconds)

    async def send_event(self, name: str, data: dict[str, Any]) -> None:
        level = "error" if name == DEAD_LETTER_EVENT else "info"
        async with self._session_factory() as db:
            await log_event(
                db,
                name,
                level,
                source="jobs",
                message=data.get("error"),
                metadata=data,
            )
            await db.commit()
