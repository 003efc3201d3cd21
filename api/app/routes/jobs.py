# api/app/routes/jobs.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.app.dependencies import get_session, get_store, require_api_key
from api.app.schemas.jobs import DeadLetter, JobExecutionDetail
from jobs.scheduler import DEAD_LETTER_EVENT
from jobs.store import JobRecordStore
from models.job_execution import EXECUTION_STATES
from services.observability import recent_events

router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[Depends(require_api_key)])


@router.get("", response_model=list[JobExecutionDetail])
async def list_jobs(
    status: str | None = Query(None),
    job_type: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    store: JobRecordStore = Depends(get_store),
):
    if status is not None and status not in EXECUTION_STATES:
        raise HTTPException(status_code=422, detail=f"Unknown status: {status}")
    return await store.list_executions(status=status, job_type=job_type, limit=limit)


@router.get("/dead-letters", response_model=list[DeadLetter])
async def list_dead_letters(
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_session),
):
    events = await recent_events(db, DEAD_LETTER_EVENT, limit=limit)
    return [
        DeadLetter(
            job_key=(e.metadata_ or {}).get("job_key"),
            job_type=(e.metadata_ or {}).get("job_type"),
            error=(e.metadata_ or {}).get("error"),
            created_at=e.created_at,
        )
        for e in events
    ]


@router.get("/{job_key}", response_model=JobExecutionDetail)
async def get_job(
    job_key: str,
    store: JobRecordStore = Depends(get_store),
):
    execution = await store.get(job_key)
    if execution is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return execution
