# jobs/inbox.py
from __future__ import annotations

import logging
import uuid
from datetime import timedelta

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.base import utcnow
from models.inbound_event import InboundEvent

logger = logging.getLogger(__name__)

LOCK_TIMEOUT_SECONDS = 900


async def enqueue_event(
    db: AsyncSession,
    name: str,
    data: dict,
) -> InboundEvent:
    event = InboundEvent(name=name, data=data)
    db.add(event)
    await db.flush()
    logger.info("Enqueued event %s [%s]", event.id, event.name)
    return event


async def claim_next_event(
    db: AsyncSession,
    worker_id: str,
    names: list[str] | None = None,
    lock_timeout_seconds: int = LOCK_TIMEOUT_SECONDS,
) -> InboundEvent | None:
    """
    Claims the oldest deliverable event.
    Also recovers events whose worker went away mid-delivery.
    """

    now = utcnow()
    stale_cutoff = now - timedelta(seconds=lock_timeout_seconds)

    stmt = (
        select(InboundEvent)
        .where(
            or_(
                and_(
                    InboundEvent.status == "pending",
                    InboundEvent.run_after <= now,
                ),
                # Stale locked events
                and_(
                    InboundEvent.status == "processing",
                    InboundEvent.locked_at <= stale_cutoff,
                ),
            )
        )
        .order_by(InboundEvent.created_at.asc())
        .limit(1)
        .with_for_update(skip_locked=True)
    )

    if names:
        stmt = stmt.where(InboundEvent.name.in_(names))

    event = (await db.execute(stmt)).scalar_one_or_none()

    if event is None:
        return None

    event.status = "processing"
    event.locked_by = worker_id
    event.locked_at = now
    event.attempts += 1

    await db.flush()

    logger.info("Worker %s claimed event %s [%s]", worker_id, event.id, event.name)

    return event


async def mark_delivered(
    db: AsyncSession,
    event_id: uuid.UUID,
    result: dict | None = None,
) -> None:
    stmt = (
        update(InboundEvent)
        .where(InboundEvent.id == event_id)
        .values(
            status="delivered",
            result=result or {},
            locked_by=None,
            locked_at=None,
        )
    )
    await db.execute(stmt)

    logger.info("Event %s delivered", event_id)


async def mark_errored(
    db: AsyncSession,
    event_id: uuid.UUID,
    error: str,
) -> None:
    """
    Marks the delivery failed. Retries already happened inside the job;
    a fresh trigger is needed to run it again.
    """
    stmt = (
        update(InboundEvent)
        .where(InboundEvent.id == event_id)
        .values(
            status="failed",
            error=error,
            locked_by=None,
            locked_at=None,
        )
    )
    await db.execute(stmt)

    logger.error("Event %s failed: %s", event_id, error)
