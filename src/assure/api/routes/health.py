"""Health check endpoints."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import func, select

from assure.db.models.job import JobRow
from assure.events.bus import InMemoryEventBus
from assure.models.enums import JobStatus

router = APIRouter()

SERVICE_NAME = "assure-spec-patcher"
SERVICE_VERSION = "0.1.0"


@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": SERVICE_NAME, "version": SERVICE_VERSION}


@router.get("/health/live")
async def liveness():
    """Liveness probe: 200 while the process is running."""
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness(request: Request):
    """Readiness probe: database, Redis and the event bus.

    Also reports the queued job backlog per job type, which is informational
    and never fails the probe.
    """
    checks: dict[str, str] = {}
    backlog: dict[str, int] = {}
    overall_ok = True

    try:
        async with request.app.state.db_session_factory() as session:
            stmt = (
                select(JobRow.job_type, func.count())
                .where(JobRow.status == JobStatus.QUEUED.value)
                .group_by(JobRow.job_type)
            )
            backlog = {job_type: count for job_type, count in (await session.execute(stmt)).all()}
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"
        overall_ok = False

    # Redis is None in local mode
    redis = getattr(request.app.state, "redis", None)
    if redis is not None:
        try:
            await redis.ping()
            checks["redis"] = "ok"
        except Exception as exc:
            checks["redis"] = f"error: {exc}"
            overall_ok = False
    else:
        checks["redis"] = "disabled"

    bus = getattr(request.app.state, "bus", None)
    if bus is None:
        checks["bus"] = "missing"
        overall_ok = False
    else:
        checks["bus"] = "in-memory" if isinstance(bus, InMemoryEventBus) else "redis-streams"

    return JSONResponse(
        status_code=200 if overall_ok else 503,
        content={
            "status": "ready" if overall_ok else "not_ready",
            "checks": checks,
            "queuedJobs": backlog,
        },
    )
