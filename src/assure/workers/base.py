"""Base worker interface for async job processing."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from assure.config import settings
from assure.db.models.job import JobRow
from assure.errors.exceptions import AssureError, is_retryable
from assure.logging_config import bind_job_context, clear_context
from assure.models.enums import JobStatus, JobType
from assure.repositories.job_repo import JobRepository

logger = logging.getLogger(__name__)


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, AssureError):
        return f"{exc.code}: {exc.message}"
    return f"{type(exc).__name__}: {exc}"


class BaseWorker(ABC):
    """Abstract base class for job workers.

    ``execute`` owns the job lifecycle (queued -> processing -> completed or
    failed); subclasses implement ``process`` and may react to terminal
    failure in ``on_failed``.
    """

    job_type: JobType

    def __init__(self, max_attempts: int | None = None, retry_base_delay: float | None = None):
        self.max_attempts = max_attempts or settings.job_max_attempts
        self.retry_base_delay = (
            settings.retry_base_delay_seconds if retry_base_delay is None else retry_base_delay
        )

    @abstractmethod
    async def process(self, job: JobRow, session: AsyncSession) -> dict:
        """Do the work and return the JSON result stored on the job."""
        ...

    async def on_failed(self, job: JobRow, exc: BaseException, session: AsyncSession) -> None:
        """Called once when a job fails for good, inside the failing transaction."""

    def backoff_delay(self, attempts: int) -> float:
        return self.retry_base_delay * (2 ** max(attempts - 1, 0))

    async def execute(self, job_id: str, session: AsyncSession) -> float | None:
        """Run one attempt of a job.

        Returns the delay in seconds before the job should be retried, or None
        when the job reached a terminal state (or was not claimable).
        """
        repo = JobRepository(session)
        if not await repo.claim(job_id):
            await session.rollback()
            logger.debug("Job %s not claimable; skipped", job_id)
            return None
        await session.commit()

        job = await repo.get(job_id)
        if job is None:
            return None

        payload = job.payload or {}
        bind_job_context(job.job_id, payload.get("regulation_ref"), payload.get("spec_version_id"))
        try:
            try:
                result = await self.process(job, session)
            except Exception as exc:
                return await self._handle_failure(job, exc, session)

            job.status = JobStatus.COMPLETED.value
            job.result = result
            job.error_message = None
            job.completed_at = datetime.now(timezone.utc)
            await session.commit()
            logger.info("Job %s completed (type=%s, attempt=%d)", job.job_id, job.job_type, job.attempts)
            return None
        finally:
            clear_context()

    async def _handle_failure(self, job: JobRow, exc: Exception, session: AsyncSession) -> float | None:
        await session.rollback()
        await session.refresh(job)
        job.error_message = describe_error(exc)

        if is_retryable(exc) and job.attempts < self.max_attempts:
            delay = self.backoff_delay(job.attempts)
            job.status = JobStatus.QUEUED.value
            await session.commit()
            logger.warning(
                "Job %s attempt %d/%d failed, retrying in %.1fs: %s",
                job.job_id,
                job.attempts,
                self.max_attempts,
                delay,
                job.error_message,
            )
            return delay

        job.status = JobStatus.FAILED.value
        job.completed_at = datetime.now(timezone.utc)
        await self.on_failed(job, exc, session)
        await session.commit()
        if is_retryable(exc):
            logger.error("Job %s failed after %d attempt(s): %s", job.job_id, job.attempts, job.error_message)
        else:
            logger.error("Job %s failed permanently: %s", job.job_id, job.error_message)
        return None
