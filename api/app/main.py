# api/app/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI

from api.app.middleware.request_logging import RequestContextMiddleware
from api.app.routes import events, health, jobs

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Ops Jobs API",
    description="Idempotent background jobs: triggers, execution records and dead letters",
    version="0.1.0",
)

app.add_middleware(RequestContextMiddleware)

app.include_router(health.router)
app.include_router(events.router, prefix="/v1")
app.include_router(jobs.router, prefix="/v1")
