# api/app/dependencies.py
from __future__ import annotations

import hmac
from collections.abc import AsyncGenerator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.app.config import Settings, get_settings
from db.session import get_db, get_session_factory
from jobs.store import JobRecordStore


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_db():
        yield session


def get_store() -> JobRecordStore:
    return JobRecordStore(get_session_factory())


async def require_api_key(
    x_api_key: str = Header(..., alias="X-Api-Key"),
    settings: Settings = Depends(get_settings),
) -> None:
    """Authenticate operator calls by the shared API key header."""
    if not hmac.compare_digest(x_api_key, settings.api_secret_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
