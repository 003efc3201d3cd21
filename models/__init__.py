# models/__init__.py
from models.base import Base
from models.event import Event
from models.inbound_event import InboundEvent
from models.job_execution import JobExecution

__all__ = [
    "Base",
    "Event",
    "InboundEvent",
    "JobExecution",
]
