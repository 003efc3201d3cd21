# jobs/orchestrator.py
"""
Reserve → run with backoff → finalize.

Every job kind goes through run_idempotent_job so a redelivered trigger
for a finished job is reported as a duplicate and does no work.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.app.config import Settings
from jobs.errors import InvalidTriggerError, describe_error
from jobs.retry import process_with_backoff
from jobs.scheduler import DEAD_LETTER_EVENT, InProcessScheduler, Scheduler
from jobs.store import JobRecordStore
from models.job_execution import COMPLETED

logger = logging.getLogger(__name__)

Step = tuple[str, Callable[[], Awaitable[Any]]]


@dataclass
class JobContext:
    session_factory: async_sessionmaker[AsyncSession]
    store: JobRecordStore
    scheduler: Scheduler
    settings: Settings


def build_context(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> JobContext:
    return JobContext(
        session_factory=session_factory,
        store=JobRecordStore(session_factory),
        scheduler=InProcessScheduler(session_factory),
        settings=settings,
    )


def build_job_key(kind: str, identifier: Any) -> str:
    ident = "" if identifier is None else str(identifier).strip()
    if not ident:
        raise InvalidTriggerError(f"Missing identifier for {kind} job")
    return f"{kind}:{ident}"


async def run_idempotent_job(
    ctx: JobContext,
    *,
    job_type: str,
    job_key: str,
    payload: dict,
    steps: Sequence[Step],
    max_attempts: int | None = None,
) -> dict:
    reservation = await ctx.scheduler.run_step(
        "reserve-job",
        lambda: ctx.store.reserve(job_key, job_type, payload),
    )

    if reservation == COMPLETED:
        logger.info("Duplicate trigger for %s, nothing to do", job_key)
        return {"status": "duplicate", "job_key": job_key}

    attempts = max_attempts if max_attempts is not None else ctx.settings.job_max_attempts

    async def handler() -> dict:
        results: dict[str, Any] = {}
        for name, fn in steps:
            results[name] = await ctx.scheduler.run_step(name, fn)
        return results

    try:
        result = await process_with_backoff(
            ctx.scheduler,
            job_key,
            attempts,
            handler,
            base_ms=ctx.settings.job_backoff_base_ms,
            cap_ms=ctx.settings.job_backoff_cap_ms,
        )
    except Exception as exc:
        await ctx.scheduler.run_step(
            "mark-failed",
            lambda: ctx.store.mark_failed(job_key, exc),
        )
        await ctx.scheduler.send_event(
            DEAD_LETTER_EVENT,
            {
                "job_key": job_key,
                "job_type": job_type,
                "error": describe_error(exc),
            },
        )
        raise

    await ctx.scheduler.run_step("mark-completed", lambda: ctx.store.mark_completed(job_key))
    return {"status": "completed", "job_key": job_key, "result": result}
