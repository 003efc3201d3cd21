# jobs/store.py
"""
Durable job-execution records.

Each operation runs in its own short transaction. Reserve, execute and
finalize are three separate writes, so two workers racing on the same
job key before it completes may both be told to proceed.
"""
from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobs.errors import describe_error
from models.base import utcnow
from models.job_execution import COMPLETED, FAILED, PROCESSING, JobExecution

logger = logging.getLogger(__name__)


def _insert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"Upsert not supported for dialect: {dialect}")


class JobRecordStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def reserve(self, job_key: str, job_type: str, payload: dict) -> str:
        """
        Claims a job for execution.

        Returns "completed" without writing anything when the job already
        finished. Otherwise inserts the row (attempts=1) or bumps attempts on
        the existing one, and returns "processing".
        """
        if not job_key:
            raise ValueError("job_key cannot be empty")
        if not job_type:
            raise ValueError("job_type cannot be empty")

        async with self._session_factory() as db:
            if await self._current_status(db, job_key) == COMPLETED:
                logger.info("Job %s already completed, skipping", job_key)
                return COMPLETED

            now = utcnow()
            insert = _insert_for(db)
            stmt = insert(JobExecution).values(
                job_key=job_key,
                job_type=job_type,
                status=PROCESSING,
                attempts=1,
                payload=payload,
                run_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["job_key"],
                set_={
                    "status": PROCESSING,
                    "attempts": JobExecution.attempts + 1,
                    "payload": stmt.excluded.payload,
                    "run_at": now,
                    "updated_at": now,
                    "last_error": None,
                },
                # completion is terminal even if it lands between read and upsert
                where=JobExecution.status != COMPLETED,
            ).returning(JobExecution.attempts)

            attempts = (await db.execute(stmt)).scalar_one_or_none()
            await db.commit()

        if attempts is None:
            logger.info("Job %s completed concurrently, skipping", job_key)
            return COMPLETED

        logger.info("Reserved job %s [%s] attempt=%d", job_key, job_type, attempts)
        return PROCESSING

    async def _current_status(self, db: AsyncSession, job_key: str) -> str | None:
        stmt = select(JobExecution.status).where(JobExecution.job_key == job_key)
        return (await db.execute(stmt)).scalar_one_or_none()

    async def mark_completed(self, job_key: str) -> None:
        now = utcnow()
        async with self._session_factory() as db:
            await db.execute(
                update(JobExecution)
                .where(JobExecution.job_key == job_key)
                .values(status=COMPLETED, completed_at=now, updated_at=now)
            )
            await db.commit()

        logger.info("Job %s completed", job_key)

    async def mark_failed(self, job_key: str, error: BaseException | None) -> None:
        message = describe_error(error)
        async with self._session_factory() as db:
            await db.execute(
                update(JobExecution)
                .where(
                    JobExecution.job_key == job_key,
                    JobExecution.status != COMPLETED,
                )
                .values(status=FAILED, last_error=message, updated_at=utcnow())
            )
            await db.commit()

        logger.error("Job %s failed: %s", job_key, message)

    async def get(self, job_key: str) -> JobExecution | None:
        async with self._session_factory() as db:
            stmt = select(JobExecution).where(JobExecution.job_key == job_key)
            return (await db.execute(stmt)).scalar_one_or_none()

    async def list_executions(
        self,
        status: str | None = None,
        job_type: str | None = None,
        limit: int = 100,
    ) -> list[JobExecution]:
        stmt = select(JobExecution).order_by(JobExecution.updated_at.desc()).limit(limit)
        if status:
            stmt = stmt.where(JobExecution.status == status)
        if job_type:
            stmt = stmt.where(JobExecution.job_type == job_type)

        async with self._session_factory() as db:
            return list((await db.execute(stmt)).scalars().all())
