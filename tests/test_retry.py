# tests/test_retry.py
"""Tests for the retry-with-backoff executor."""
from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from jobs.errors import RetryableJobError, TerminalJobError
from jobs.retry import (
    MAX_DELAY_MS,
    backoff_delay_ms,
    process_with_backoff,
    total_backoff_ms,
)
from jobs.scheduler import DEAD_LETTER_EVENT, InProcessScheduler
from models.event import Event


def _flaky(failures: int, result="ok"):
    calls = {"n": 0}

    async def handler():
        calls["n"] += 1
        if calls["n"] <= failures:
            raise RuntimeError(f"failure {calls['n']}")
        return result

    return handler, calls


def test_backoff_doubles_until_cap():
    assert backoff_delay_ms(1) == 1000
    assert backoff_delay_ms(2) == 2000
    assert backoff_delay_ms(3) == 4000
    assert backoff_delay_ms(9) == 256000
    assert backoff_delay_ms(10) == MAX_DELAY_MS
    assert backoff_delay_ms(30) == MAX_DELAY_MS


def test_backoff_custom_base_and_cap():
    assert backoff_delay_ms(1, base_ms=50, cap_ms=120) == 50
    assert backoff_delay_ms(2, base_ms=50, cap_ms=120) == 100
    assert backoff_delay_ms(3, base_ms=50, cap_ms=120) == 120


def test_total_backoff_sums_capped_delays():
    assert total_backoff_ms(1) == 0
    assert total_backoff_ms(3) == 3000
    # 511s doubling up to the cap, then two capped 300s sleeps
    assert total_backoff_ms(12) == 1111000


@pytest.mark.asyncio
async def test_first_success_returns_without_sleeping(scheduler):
    handler, calls = _flaky(0, result={"rows": 3})
    result = await process_with_backoff(scheduler, "export:1", 3, handler)

    assert result == {"rows": 3}
    assert calls["n"] == 1
    assert scheduler.sleeps == []


@pytest.mark.asyncio
async def test_succeeds_on_third_attempt(scheduler):
    handler, calls = _flaky(2)
    result = await process_with_backoff(scheduler, "report:abc", 3, handler)

    assert result == "ok"
    assert calls["n"] == 3
    assert scheduler.sleeps == [
        ("backoff-report:abc-1", 1.0),
        ("backoff-report:abc-2", 2.0),
    ]


@pytest.mark.asyncio
async def test_exhausted_attempts_reraise_last_error(scheduler):
    handler, calls = _flaky(10)

    with pytest.raises(RuntimeError, match="failure 3"):
        await process_with_backoff(scheduler, "report:abc", 3, handler)

    assert calls["n"] == 3
    (_, first), (_, second) = scheduler.sleeps
    assert second == 2 * first


@pytest.mark.asyncio
async def test_retryable_error_is_retried(scheduler):
    attempts = {"n": 0}

    async def handler():
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise RetryableJobError("rate limited")
        return "done"

    assert await process_with_backoff(scheduler, "export:2", 3, handler) == "done"
    assert len(scheduler.sleeps) == 1


@pytest.mark.asyncio
async def test_terminal_error_stops_immediately(scheduler):
    handler = AsyncMock(side_effect=TerminalJobError("bad report id"))

    with pytest.raises(TerminalJobError):
        await process_with_backoff(scheduler, "report:bad", 5, handler)

    assert handler.await_count == 1
    assert scheduler.sleeps == []


@pytest.mark.asyncio
async def test_single_attempt_never_sleeps(scheduler):
    handler, calls = _flaky(1)
    with pytest.raises(RuntimeError):
        await process_with_backoff(scheduler, "nightly:x", 1, handler)
    assert calls["n"] == 1
    assert scheduler.sleeps == []


@pytest.mark.asyncio
async def test_rejects_non_positive_max_attempts(scheduler):
    with pytest.raises(ValueError):
        await process_with_backoff(scheduler, "report:abc", 0, AsyncMock())


@pytest.mark.asyncio
async def test_in_process_scheduler_sleeps_with_asyncio(session_factory):
    sched = InProcessScheduler(session_factory)
    handler, _ = _flaky(1)

    with patch("jobs.scheduler.asyncio.sleep", new_callable=AsyncMock) as sleep:
        await process_with_backoff(sched, "report:abc", 2, handler, base_ms=250)

    sleep.assert_awaited_once_with(0.25)


@pytest.mark.asyncio
async def test_in_process_scheduler_records_dead_letter(session_factory):
    sched = InProcessScheduler(session_factory)
    await sched.send_event(
        DEAD_LETTER_EVENT,
        {"job_key": "report:abc", "job_type": "report", "error": "boom"},
    )

    async with session_factory() as db:
        events = (await db.execute(select(Event))).scalars().all()

    assert len(events) == 1
    assert events[0].event_type == DEAD_LETTER_EVENT
    assert events[0].level == "error"
    assert events[0].message == "boom"
    assert events[0].metadata_["job_key"] == "report:abc"
