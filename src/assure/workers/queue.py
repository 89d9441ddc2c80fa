"""Job queue management using Redis or in-process fallback.

The ``jobs`` table is the durable record; the transport (a Redis list or an
``asyncio.Queue``) only carries job ids. Jobs still queued when the process
restarts are resubmitted by ``JobQueue.recover``.
"""

import asyncio
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assure.db.models.job import JobRow
from assure.models.enums import JobStatus, JobType
from assure.repositories.job_repo import JobRepository
from assure.services.id_generator import generate_id
from assure.workers.base import BaseWorker

logger = logging.getLogger(__name__)


async def enqueue_job(
    session: AsyncSession,
    job_type: JobType,
    payload: dict,
    trace_id: str,
    dedupe_key: str | None = None,
    impact_log_id: str | None = None,
) -> tuple[JobRow, bool]:
    """Create a queued job record.

    Returns ``(job, created)``. When a live (not failed) job with the same
    dedupe key exists, that job is returned with ``created=False``. A unique
    violation on flush means a concurrent writer won the race; the caller
    must roll back its transaction in that case, so IntegrityError propagates.
    The caller commits, then hands the job id to ``JobQueue.submit``.
    """
    repo = JobRepository(session)
    if dedupe_key:
        existing = await repo.find_live_by_dedupe_key(dedupe_key)
        if existing is not None:
            return existing, False

    job = await repo.create(
        job_id=generate_id("job_"),
        job_type=job_type.value,
        status=JobStatus.QUEUED.value,
        dedupe_key=dedupe_key,
        payload=payload,
        attempts=0,
        impact_log_id=impact_log_id,
        trace_id=trace_id,
    )
    return job, True


class JobQueue:
    """A bounded pool of worker tasks for one job type."""

    def __init__(
        self,
        worker: BaseWorker,
        session_factory: async_sessionmaker[AsyncSession],
        redis=None,
        concurrency: int = 1,
    ):
        self.worker = worker
        self.job_type = worker.job_type
        self.session_factory = session_factory
        self.redis = redis
        self.concurrency = max(1, concurrency)
        self.key = f"assure:jobs:{self.job_type.value}"
        self._local: asyncio.Queue[str] | None = None if redis is not None else asyncio.Queue()
        self._tasks: list[asyncio.Task] = []
        self._delayed: set[asyncio.Task] = set()

    async def submit(self, job_id: str, delay: float = 0.0) -> None:
        """Hand a committed job to the transport, optionally after a delay."""
        if delay > 0:
            task = asyncio.create_task(self._submit_later(job_id, delay))
            self._delayed.add(task)
            task.add_done_callback(self._delayed.discard)
            return
        if self.redis is not None:
            await self.redis.rpush(self.key, job_id)
        else:
            self._local.put_nowait(job_id)

    async def _submit_later(self, job_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.submit(job_id)

    async def recover(self) -> int:
        """Resubmit jobs interrupted by a restart."""
        async with self.session_factory() as session:
            repo = JobRepository(session)
            requeued = await repo.requeue_interrupted(self.job_type.value)
            await session.commit()
            pending = await repo.list_by_status(JobStatus.QUEUED, self.job_type.value)
        for job in pending:
            await self.submit(job.job_id)
        if pending:
            logger.info(
                "Recovered %d %s job(s) (%d interrupted)", len(pending), self.job_type.value, requeued
            )
        return len(pending)

    async def start(self, recover: bool = True) -> None:
        if recover:
            await self.recover()
        for index in range(self.concurrency):
            self._tasks.append(asyncio.create_task(self._worker_loop(index)))
        logger.info("Started %d %s worker(s)", self.concurrency, self.job_type.value)

    async def _next(self) -> str | None:
        if self.redis is not None:
            item = await self.redis.blpop([self.key], timeout=1)
            if item is None:
                return None
            _, job_id = item
            return job_id.decode() if isinstance(job_id, bytes) else job_id
        return await self._local.get()

    async def _worker_loop(self, index: int) -> None:
        while True:
            job_id = None
            try:
                job_id = await self._next()
                if job_id:
                    await self.run_job(job_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s worker %d crashed on job %s", self.job_type.value, index, job_id)
            finally:
                if job_id and self._local is not None:
                    self._local.task_done()

    async def run_job(self, job_id: str) -> None:
        async with self.session_factory() as session:
            delay = await self.worker.execute(job_id, session)
        if delay is not None:
            await self.submit(job_id, delay)

    async def join(self) -> None:
        """Wait until the local transport is empty and no retry is pending."""
        if self._local is None:
            raise RuntimeError("join() is only available on the in-process transport")
        while True:
            await self._local.join()
            if not self._delayed:
                return
            await asyncio.gather(*list(self._delayed), return_exceptions=True)

    async def stop(self) -> None:
        for task in [*self._tasks, *self._delayed]:
            task.cancel()
        for task in [*self._tasks, *self._delayed]:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        self._delayed.clear()


async def enqueue_and_submit(
    queue: JobQueue,
    session: AsyncSession,
    payload: dict,
    trace_id: str,
    dedupe_key: str | None = None,
    impact_log_id: str | None = None,
) -> tuple[str, bool]:
    """Create, commit and submit one job in its own transaction."""
    try:
        job, created = await enqueue_job(
            session, queue.job_type, payload, trace_id, dedupe_key=dedupe_key, impact_log_id=impact_log_id
        )
        job_id = job.job_id
        await session.commit()
    except IntegrityError:
        await session.rollback()
        existing = await JobRepository(session).find_live_by_dedupe_key(dedupe_key) if dedupe_key else None
        if existing is None:
            raise
        return existing.job_id, False
    if created:
        await queue.submit(job_id)
    return job_id, created
