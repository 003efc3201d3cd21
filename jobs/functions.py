# jobs/functions.py
"""
Job functions, one per trigger name.

Each function derives a stable job key from its trigger data and hands its
business steps to run_idempotent_job.
"""
from __future__ import annotations

import csv
import hashlib
import json
import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import func, select

from jobs.errors import InvalidTriggerError
from jobs.orchestrator import JobContext, build_job_key, run_idempotent_job
from jobs.retry import total_backoff_ms
from models.base import utcnow
from models.job_execution import JobExecution
from services.observability import log_event

logger = logging.getLogger(__name__)

REPORT_TRIGGER = "reports.generate"
EXPORT_INVENTORY_TRIGGER = "exports.inventory"
EXPORT_TRIGGER = "exports.csv"
NIGHTLY_TRIGGER = "ops/nightly.tick"

LEDGER_COLUMNS = [
    "job_key",
    "job_type",
    "status",
    "attempts",
    "run_at",
    "completed_at",
    "last_error",
]


# ─────────────────────────────────────────────
# helpers
# ─────────────────────────────────────────────

def _max_attempts(ctx: JobContext, data: dict) -> int:
    raw = data.get("maxAttempts")
    if raw is None:
        value = ctx.settings.job_max_attempts
    elif isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise InvalidTriggerError(f"maxAttempts must be an integer, got {raw!r}")
    else:
        try:
            value = int(raw)
        except (TypeError, ValueError):
            raise InvalidTriggerError(f"maxAttempts must be an integer, got {raw!r}")
    if value < 1:
        raise InvalidTriggerError("maxAttempts must be >= 1")

    # the inbox hands an event to another worker once its lock goes stale
    backoff_s = total_backoff_ms(
        value,
        ctx.settings.job_backoff_base_ms,
        ctx.settings.job_backoff_cap_ms,
    ) / 1000
    if backoff_s >= ctx.settings.event_lock_timeout_seconds:
        raise InvalidTriggerError(
            f"maxAttempts={value} backs off for {backoff_s:.0f}s, "
            f"over the {ctx.settings.event_lock_timeout_seconds}s event lock"
        )
    return value


def _artifact_name(prefix: str, ident: str, suffix: str) -> str:
    """File name for an artifact; ids with path separators stay in the directory."""
    safe = re.sub(r"[^A-Za-z0-9._-]", "_", ident).lstrip(".")
    if safe != ident:
        # "a/b" and "a_b" must not share a file
        digest = hashlib.sha1(ident.encode("utf-8")).hexdigest()[:8]
        safe = f"{safe or '_'}-{digest}"
    return f"{prefix}-{safe}{suffix}"


def _write_json(path: Path, obj: Any) -> None:
    path.write_text(json.dumps(obj, indent=2), encoding="utf-8")


def _nightly_date(data: dict) -> date:
    raw = data.get("date")
    if not raw:
        return utcnow().date()
    try:
        return date.fromisoformat(str(raw))
    except ValueError:
        raise InvalidTriggerError(f"Invalid nightly date: {raw!r}")


def _iso(value: Any) -> Any:
    return value.isoformat() if isinstance(value, (datetime, date)) else value


async def execution_counts(
    ctx: JobContext,
    since: datetime | None = None,
    until: datetime | None = None,
) -> dict[str, dict[str, int]]:
    """Job executions grouped as {job_type: {status: count}}."""
    stmt = (
        select(JobExecution.job_type, JobExecution.status, func.count())
        .group_by(JobExecution.job_type, JobExecution.status)
    )
    if since is not None:
        stmt = stmt.where(JobExecution.updated_at >= since)
    if until is not None:
        stmt = stmt.where(JobExecution.updated_at < until)

    async with ctx.session_factory() as db:
        rows = (await db.execute(stmt)).all()

    counts: dict[str, dict[str, int]] = {}
    for job_type, status, n in rows:
        counts.setdefault(job_type, {})[status] = n
    return counts


async def ledger_rows(ctx: JobContext) -> list[dict]:
    stmt = select(JobExecution).order_by(JobExecution.created_at.asc())
    async with ctx.session_factory() as db:
        executions = (await db.execute(stmt)).scalars().all()
    return [
        {col: _iso(getattr(execution, col)) for col in LEDGER_COLUMNS}
        for execution in executions
    ]


# ─────────────────────────────────────────────
# reports.generate
# ─────────────────────────────────────────────

async def generate_operations_report(ctx: JobContext, data: dict) -> dict:
    job_key = build_job_key("report", data.get("reportId"))
    report_id = job_key.split(":", 1)[1]
    max_attempts = _max_attempts(ctx, data)
    state: dict[str, Any] = {}

    async def gather_metrics() -> dict:
        state["metrics"] = await execution_counts(ctx)
        return state["metrics"]

    async def render_artifacts() -> str:
        out = ctx.settings.artifact_dir / _artifact_name("report", report_id, ".json")
        _write_json(
            out,
            {
                "report_id": report_id,
                "generated_at": utcnow().isoformat(),
                "executions": state["metrics"],
            },
        )
        return str(out)

    return await run_idempotent_job(
        ctx,
        job_type="report",
        job_key=job_key,
        payload=data,
        steps=[
            ("gather-metrics", gather_metrics),
            ("render-artifacts", render_artifacts),
        ],
        max_attempts=max_attempts,
    )


# ─────────────────────────────────────────────
# exports.inventory / exports.csv
# ─────────────────────────────────────────────

async def export_csv(ctx: JobContext, data: dict) -> dict:
    job_key = build_job_key("export", data.get("exportId"))
    export_id = job_key.split(":", 1)[1]
    max_attempts = _max_attempts(ctx, data)

    given = data.get("rows")
    if given is not None and not (
        isinstance(given, list) and all(isinstance(r, dict) for r in given)
    ):
        raise InvalidTriggerError("rows must be a list of objects")

    state: dict[str, Any] = {}

    async def prepare_rows() -> int:
        state["rows"] = list(given) if given is not None else await ledger_rows(ctx)
        return len(state["rows"])

    async def stream_to_storage() -> str:
        rows = state["rows"]
        columns: list[str] = []
        for row in rows:
            for key in row:
                if key not in columns:
                    columns.append(key)
        if not columns:
            columns = list(LEDGER_COLUMNS)

        out = ctx.settings.artifact_dir / _artifact_name("export", export_id, ".csv")
        with out.open("w", newline="", encoding="utf-8") as fh:
            writer = csv.DictWriter(fh, fieldnames=columns)
            writer.writeheader()
            writer.writerows(rows)
        return str(out)

    return await run_idempotent_job(
        ctx,
        job_type="export",
        job_key=job_key,
        payload=data,
        steps=[
            ("prepare-rows", prepare_rows),
            ("stream-to-storage", stream_to_storage),
        ],
        max_attempts=max_attempts,
    )


# ─────────────────────────────────────────────
# ops/nightly.tick
# ─────────────────────────────────────────────

async def nightly_operations_summary(ctx: JobContext, data: dict) -> dict:
    day = _nightly_date(data)
    job_key = build_job_key("nightly", day.isoformat())
    max_attempts = _max_attempts(ctx, data)
    state: dict[str, Any] = {}

    async def compile_snapshot() -> dict:
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        counts = await execution_counts(ctx, since=start, until=start + timedelta(days=1))
        state["snapshot"] = {"date": day.isoformat(), "executions": counts}
        return state["snapshot"]

    async def write_artifact() -> str:
        out = ctx.settings.artifact_dir / f"nightly-{day.isoformat()}.json"
        _write_json(out, state["snapshot"])
        return str(out)

    # last step, so a retry never sees a summary event already written
    async def record_summary() -> None:
        async with ctx.session_factory() as db:
            await log_event(
                db,
                "ops.nightly_summary",
                "info",
                source="jobs",
                message=f"Nightly summary for {day.isoformat()}",
                metadata=state["snapshot"],
            )
            await db.commit()

    return await run_idempotent_job(
        ctx,
        job_type="nightly",
        job_key=job_key,
        payload={"date": day.isoformat()},
        steps=[
            ("compile-snapshot", compile_snapshot),
            ("write-artifact", write_artifact),
            ("record-summary", record_summary),
        ],
        max_attempts=max_attempts,
    )


FUNCTIONS = {
    REPORT_TRIGGER: generate_operations_report,
    EXPORT_INVENTORY_TRIGGER: export_csv,
    EXPORT_TRIGGER: export_csv,
    NIGHTLY_TRIGGER: nightly_operations_summary,
}
