# tests/test_job_store.py
"""
Tests for job-execution records: reservation, completion and failure.
"""
from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.engine import build_engine
from jobs.errors import describe_error
from jobs.store import JobRecordStore
from models.job_execution import COMPLETED, FAILED, PROCESSING


@pytest.mark.asyncio
async def test_reserve_new_key_creates_processing_row(store):
    status = await store.reserve("report:abc", "report", {"x": 1})

    assert status == PROCESSING
    row = await store.get("report:abc")
    assert row.status == PROCESSING
    assert row.attempts == 1
    assert row.job_type == "report"
    assert row.payload == {"x": 1}
    assert row.completed_at is None
    assert row.last_error is None


@pytest.mark.asyncio
async def test_reserve_again_before_completion_increments_attempts(store):
    await store.reserve("report:abc", "report", {"x": 1})
    status = await store.reserve("report:abc", "report", {"x": 1})

    assert status == PROCESSING
    assert (await store.get("report:abc")).attempts == 2


@pytest.mark.asyncio
async def test_attempts_match_number_of_reservations(store):
    for _ in range(5):
        await store.reserve("export:e1", "export", {})
    assert (await store.get("export:e1")).attempts == 5


@pytest.mark.asyncio
async def test_reserve_after_completion_is_a_no_op(store):
    await store.reserve("report:abc", "report", {"x": 1})
    await store.reserve("report:abc", "report", {"x": 1})
    await store.mark_completed("report:abc")
    before = await store.get("report:abc")

    for _ in range(3):
        assert await store.reserve("report:abc", "report", {"x": 2}) == COMPLETED

    after = await store.get("report:abc")
    assert after.status == COMPLETED
    assert after.attempts == before.attempts == 2
    assert after.run_at == before.run_at
    assert after.payload == {"x": 1}
    assert after.last_error is None
    assert after.completed_at is not None


@pytest.mark.asyncio
async def test_completion_between_read_and_upsert_is_kept(store):
    await store.reserve("export:race", "export", {"x": 1})
    await store.mark_completed("export:race")
    before = await store.get("export:race")

    # the status read still sees the job as in flight
    with patch.object(JobRecordStore, "_current_status", AsyncMock(return_value=None)):
        assert await store.reserve("export:race", "export", {"x": 2}) == COMPLETED

    after = await store.get("export:race")
    assert after.status == COMPLETED
    assert after.attempts == before.attempts == 1
    assert after.run_at == before.run_at
    assert after.payload == {"x": 1}
    assert after.last_error is None


@pytest.mark.asyncio
async def test_mark_failed_records_message(store):
    await store.reserve("nightly:2026-10-19", "nightly", {})
    await store.mark_failed("nightly:2026-10-19", RuntimeError("db timeout"))

    row = await store.get("nightly:2026-10-19")
    assert row.status == FAILED
    assert row.last_error == "db timeout"


@pytest.mark.asyncio
async def test_failed_job_reenters_processing_without_resetting_attempts(store):
    await store.reserve("report:r1", "report", {})
    await store.reserve("report:r1", "report", {})
    await store.mark_failed("report:r1", RuntimeError("boom"))

    status = await store.reserve("report:r1", "report", {})

    row = await store.get("report:r1")
    assert status == PROCESSING
    assert row.status == PROCESSING
    assert row.attempts == 3
    assert row.last_error is None


@pytest.mark.asyncio
async def test_mark_failed_never_overrides_completion(store):
    await store.reserve("report:r2", "report", {})
    await store.mark_completed("report:r2")
    await store.mark_failed("report:r2", RuntimeError("late failure"))

    row = await store.get("report:r2")
    assert row.status == COMPLETED
    assert row.last_error is None


@pytest.mark.asyncio
async def test_mark_completed_twice_is_safe(store):
    await store.reserve("report:r3", "report", {})
    await store.mark_completed("report:r3")
    await store.mark_completed("report:r3")
    assert (await store.get("report:r3")).status == COMPLETED


@pytest.mark.asyncio
@pytest.mark.parametrize("job_key,job_type", [("", "report"), ("report:x", "")])
async def test_reserve_rejects_empty_arguments(store, job_key, job_type):
    with pytest.raises(ValueError):
        await store.reserve(job_key, job_type, {})


@pytest.mark.asyncio
async def test_reserve_propagates_storage_errors(tmp_path):
    # no tables created
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    broken = JobRecordStore(async_sessionmaker(bind=engine, class_=AsyncSession))
    try:
        with pytest.raises(OperationalError):
            await broken.reserve("report:abc", "report", {})
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_list_executions_filters(store):
    await store.reserve("report:a", "report", {})
    await store.reserve("export:b", "export", {})
    await store.mark_completed("export:b")

    completed = await store.list_executions(status=COMPLETED)
    reports = await store.list_executions(job_type="report")

    assert [e.job_key for e in completed] == ["export:b"]
    assert [e.job_key for e in reports] == ["report:a"]
    assert len(await store.list_executions()) == 2


def test_describe_error_fallbacks():
    assert describe_error(ValueError("bad input")) == "bad input"
    assert describe_error(TimeoutError()) == "TimeoutError"
    assert describe_error(None) == "Unknown error"
