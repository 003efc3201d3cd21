# api/app/schemas/jobs.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class EventRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    data: dict[str, Any] = Field(default_factory=dict)


class EventAccepted(BaseModel):
    event_id: uuid.UUID
    name: str
    status: str


class JobExecutionDetail(BaseModel):
    job_key: str
    job_type: str
    status: str
    attempts: int
    payload: dict[str, Any] | None = None
    run_at: datetime
    completed_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class DeadLetter(BaseModel):
    job_key: str | None = None
    job_type: str | None = None
    error: str | None = None
    created_at: datetime
