"""Spec patch worker: runs the patch orchestrator for one (regulation, spec) job."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from assure.db.models.job import JobRow
from assure.models.enums import ImpactStatus, JobType, PatchState
from assure.repositories.impact_log_repo import ImpactLogRepository
from assure.services.patch_orchestrator import PatchOrchestrator
from assure.workers.base import BaseWorker

logger = logging.getLogger(__name__)

# Impact states that already describe a committed version and must not be overwritten.
_SETTLED = {ImpactStatus.PATCHED.value, ImpactStatus.PR_CREATED.value}


class SpecPatchWorker(BaseWorker):
    job_type = JobType.SPEC_PATCH

    def __init__(self, orchestrator: PatchOrchestrator, **kwargs):
        super().__init__(**kwargs)
        self.orchestrator = orchestrator

    async def process(self, job: JobRow, session: AsyncSession) -> dict:
        result = await self.orchestrator.run(job, session)
        return result.model_dump(mode="json", by_alias=True)

    async def on_failed(self, job: JobRow, exc: BaseException, session: AsyncSession) -> None:
        checkpoint = dict(job.checkpoint or {})
        checkpoint["failed_at"] = checkpoint.get("state")
        checkpoint["state"] = PatchState.FAILED.value
        job.checkpoint = checkpoint

        if not job.impact_log_id:
            return
        entry = await ImpactLogRepository(session).get(job.impact_log_id)
        if entry is None or entry.status in _SETTLED:
            return
        entry.status = ImpactStatus.FAILED.value
        entry.error_message = job.error_message
