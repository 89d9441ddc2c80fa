"""Job status polling endpoint."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from assure.api.dependencies import get_db
from assure.errors.exceptions import NotFoundError
from assure.models.enums import JobStatus, JobType
from assure.models.job import JobStatusModel
from assure.repositories.job_repo import JobRepository

router = APIRouter(tags=["Jobs"])


@router.get("/jobs/{job_id}")
async def get_job_status(job_id: str, db: AsyncSession = Depends(get_db)) -> dict:
    row = await JobRepository(db).get(job_id)
    if not row:
        raise NotFoundError("Job", job_id)
    return JobStatusModel.from_row(row).model_dump(mode="json", by_alias=True, exclude_none=True)


@router.get("/jobs")
async def list_jobs(
    status: JobStatus = Query(...),
    job_type: JobType | None = Query(None),
    db: AsyncSession = Depends(get_db),
) -> list[dict]:
    """Jobs in one status, oldest first (e.g. everything still ``queued``)."""
    rows = await JobRepository(db).list_by_status(status, job_type.value if job_type else None)
    return [JobStatusModel.from_row(r).model_dump(mode="json", by_alias=True, exclude_none=True) for r in rows]
