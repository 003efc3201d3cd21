# models/inbound_event.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, JSONType, TimestampMixin, UUIDPrimaryKey, utcnow


class InboundEvent(Base, UUIDPrimaryKey, TimestampMixin):
    """A trigger waiting to be dispatched to a job function."""

    __tablename__ = "inbound_events"

    name: Mapped[str] = mapped_column(String(128), nullable=False)

    # pending | processing | delivered | failed
    status: Mapped[str] = mapped_column(String(32), default="pending")
    data: Mapped[dict] = mapped_column(JSONType, default=dict)
    result: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    locked_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    run_after: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
