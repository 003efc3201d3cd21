# worker/main.py
"""
Background worker: fires the nightly trigger, polls the event inbox and
dispatches each event to its job function.
"""
from __future__ import annotations

import asyncio
import logging
import os
import platform
import sys
import uuid
from datetime import date, datetime

# Ensure project root is on path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from api.app.config import get_settings
from db.session import get_session_factory
from jobs.errors import InvalidTriggerError, describe_error
from jobs.functions import FUNCTIONS, NIGHTLY_TRIGGER
from jobs.inbox import claim_next_event, enqueue_event, mark_delivered, mark_errored
from jobs.orchestrator import JobContext, build_context
from models.base import utcnow
from services.observability import log_event

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("worker")


WORKER_ID = f"worker-{platform.node()}-{uuid.uuid4().hex[:8]}"


def nightly_due(now: datetime, last_fired: date | None, hour_utc: int) -> bool:
    return now.hour >= hour_utc and last_fired != now.date()


async def dispatch_event(ctx: JobContext, name: str, data: dict) -> dict:
    fn = FUNCTIONS.get(name)
    if fn is None:
        raise InvalidTriggerError(f"Unknown event: {name}")
    return await fn(ctx, data)


async def fire_nightly(ctx: JobContext, last_fired: date | None) -> date | None:
    now = utcnow()
    if not nightly_due(now, last_fired, ctx.settings.nightly_hour_utc):
        return last_fired

    async with ctx.session_factory() as db:
        await enqueue_event(db, NIGHTLY_TRIGGER, {"date": now.date().isoformat()})
        await db.commit()
    return now.date()


async def process_next_event(ctx: JobContext, worker_id: str = WORKER_ID) -> bool:
    """Claims and runs one event. Returns False when the inbox is empty."""
    async with ctx.session_factory() as db:
        event = await claim_next_event(
            db,
            worker_id,
            lock_timeout_seconds=ctx.settings.event_lock_timeout_seconds,
        )
        if event is None:
            return False

        event_id = event.id
        name = event.name
        data = dict(event.data or {})
        await db.commit()

    # Job functions manage their own short transactions
    try:
        result = await dispatch_event(ctx, name, data)
    except Exception as exc:
        async with ctx.session_factory() as db:
            await mark_errored(db, event_id, describe_error(exc))
            await log_event(
                db,
                "job_failed",
                "error",
                source="worker",
                metadata={
                    "event_id": str(event_id),
                    "event": name,
                    "error": describe_error(exc),
                },
            )
            await db.commit()
        return True

    async with ctx.session_factory() as db:
        await mark_delivered(db, event_id, result)
        await db.commit()
    return True


async def run_loop() -> None:
    settings = get_settings()
    ctx = build_context(get_session_factory(), settings)
    logger.info(
        "Worker %s starting (poll=%.1fs)",
        WORKER_ID,
        settings.worker_poll_interval,
    )

    last_nightly: date | None = None

    while True:
        try:
            last_nightly = await fire_nightly(ctx, last_nightly)
            while await process_next_event(ctx):
                pass
        except Exception as exc:
            logger.exception("Worker loop error: %s", exc)

        await asyncio.sleep(settings.worker_poll_interval)


def main() -> None:
    asyncio.run(run_loop())


if __name__ == "__main__":
    main()
