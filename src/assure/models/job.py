"""Pydantic model for the job outcome record read by status pollers."""

from datetime import datetime
from typing import Any

from assure.models.common import CamelModel
from assure.models.enums import JobStatus, JobType


class JobStatusModel(CamelModel):
    """``{jobId, status, errorMessage?}`` plus the patch stage and result when known."""

    job_id: str
    job_type: JobType
    status: JobStatus
    attempts: int = 0
    error_message: str | None = None
    stage: str | None = None
    impact_log_id: str | None = None
    result: dict[str, Any] | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_row(cls, row) -> "JobStatusModel":
        return cls(
            job_id=row.job_id,
            job_type=row.job_type,
            status=row.status,
            attempts=row.attempts,
            error_message=row.error_message,
            stage=(row.checkpoint or {}).get("state"),
            impact_log_id=row.impact_log_id,
            result=row.result,
            completed_at=row.completed_at,
        )
