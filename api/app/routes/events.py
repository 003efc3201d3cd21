# api/app/routes/events.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.app.dependencies import get_session, require_api_key
from api.app.schemas.jobs import EventAccepted, EventRequest
from jobs.functions import FUNCTIONS
from jobs.inbox import enqueue_event

router = APIRouter(tags=["events"], dependencies=[Depends(require_api_key)])


@router.post(
    "/events",
    response_model=EventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def send_event(
    body: EventRequest,
    db: AsyncSession = Depends(get_session),
):
    """Queue a trigger for the worker."""
    if body.name not in FUNCTIONS:
        raise HTTPException(
            status_code=422,
            detail=f"Unknown event: {body.name}",
        )

    event = await enqueue_event(db, body.name, body.data)
    return EventAccepted(event_id=event.id, name=event.name, status=event.status)
