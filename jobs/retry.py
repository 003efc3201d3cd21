# jobs/retry.py
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from jobs.errors import TerminalJobError
from jobs.scheduler import Scheduler

logger = logging.getLogger(__name__)

T = TypeVar("T")

BASE_DELAY_MS = 1000
MAX_DELAY_MS = 5 * 60 * 1000


def backoff_delay_ms(
    attempt: int,
    base_ms: int = BASE_DELAY_MS,
    cap_ms: int = MAX_DELAY_MS,
) -> int:
    """Delay to wait after failed attempt number `attempt` (1-based)."""
    return min(cap_ms, base_ms * 2 ** (attempt - 1))


def total_backoff_ms(
    max_attempts: int,
    base_ms: int = BASE_DELAY_MS,
    cap_ms: int = MAX_DELAY_MS,
) -> int:
    """Sum of all sleeps a job with max_attempts failing attempts goes through."""
    return sum(backoff_delay_ms(a, base_ms, cap_ms) for a in range(1, max_attempts))


async def process_with_backoff(
    scheduler: Scheduler,
    job_key: str,
    max_attempts: int,
    handler: Callable[[], Awaitable[T]],
    *,
    base_ms: int = BASE_DELAY_MS,
    cap_ms: int = MAX_DELAY_MS,
) -> T:
    """
    Runs handler up to max_attempts times, sleeping between failures.
    The error from the last attempt is re-raised. TerminalJobError is
    re-raised straight away.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    for attempt in range(1, max_attempts + 1):
        try:
            return await handler()
        except TerminalJobError:
            logger.error("Job %s hit a terminal error on attempt %d", job_key, attempt)
            raise
        except Exception as exc:
            if attempt == max_attempts:
                logger.error(
                    "Job %s exhausted %d attempts: %s",
                    job_key,
                    max_attempts,
                    exc,
                )
                raise

            delay_ms = backoff_delay_ms(attempt, base_ms, cap_ms)
            logger.warning(
                "Job %s attempt %d/%d failed, retrying in %dms: %s",
                job_key,
                attempt,
                max_attempts,
                delay_ms,
                exc,
            )
            await scheduler.sleep(f"backoff-{job_key}-{attempt}", delay_ms / 1000)

    raise AssertionError("unreachable")
