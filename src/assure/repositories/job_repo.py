"""Job repository."""

from datetime import datetime, timezone

from sqlalchemy import select, update

from assure.db.models.job import JobRow
from assure.models.enums import JobStatus
from assure.repositories.base import BaseRepository


class JobRepository(BaseRepository[JobRow]):
    model_class = JobRow
    pk_field = "job_id"

    async def find_live_by_dedupe_key(self, dedupe_key: str) -> JobRow | None:
        """A job with this key that has not failed (queued, processing or completed)."""
        stmt = (
            select(JobRow)
            .where(
                JobRow.dedupe_key == dedupe_key,
                JobRow.status != JobStatus.FAILED.value,
            )
            .order_by(JobRow.created_at.desc())
            .limit(1)
        )
        return await self._first(stmt)

    async def list_by_status(self, status: JobStatus, job_type: str | None = None) -> list[JobRow]:
        conditions = [JobRow.status == status.value]
        if job_type:
            conditions.append(JobRow.job_type == job_type)
        stmt = select(JobRow).where(*conditions).order_by(JobRow.created_at.asc())
        return await self._all(stmt)

    async def claim(self, job_id: str) -> bool:
        """Atomically move a queued job to processing and count the attempt.

        Returns False when another worker already claimed it or it is finished.
        """
        stmt = (
            update(JobRow)
            .where(JobRow.job_id == job_id, JobRow.status == JobStatus.QUEUED.value)
            .values(
                status=JobStatus.PROCESSING.value,
                attempts=JobRow.attempts + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def requeue_interrupted(self, job_type: str) -> int:
        """Return jobs left in processing by a crashed process to the queue."""
        stmt = (
            update(JobRow)
            .where(JobRow.job_type == job_type, JobRow.status == JobStatus.PROCESSING.value)
            .values(status=JobStatus.QUEUED.value, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount
