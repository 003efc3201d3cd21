# jobs/errors.py
"""
Error types raised by job functions.

Plain exceptions raised inside a job are retried until attempts run out.
Raise TerminalJobError to stop retrying immediately.
"""
from __future__ import annotations


class JobError(Exception):
    """Base class for job execution errors."""


class RetryableJobError(JobError):
    """A failure that may succeed on a later attempt."""


class TerminalJobError(JobError):
    """A failure that no further attempt can fix."""


class InvalidTriggerError(ValueError):
    """Trigger data is missing the fields needed to derive a job key."""


def describe_error(error: BaseException | None) -> str:
    if error is None:
        return "Unknown error"
    return str(error) or error.__class__.__name__
