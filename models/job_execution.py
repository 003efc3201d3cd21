# models/job_execution.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, JSONType, TimestampMixin, UUIDPrimaryKey, utcnow

# Execution states
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

EXECUTION_STATES = (PROCESSING, COMPLETED, FAILED)


class JobExecution(Base, UUIDPrimaryKey, TimestampMixin):
    """One row per logical job, keyed by its idempotency key."""

    __tablename__ = "job_executions"

    job_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    job_type: Mapped[str] = mapped_column(String(64), nullable=False)

    # processing | completed | failed
    status: Mapped[str] = mapped_column(String(32), default=PROCESSING, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict)
    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
