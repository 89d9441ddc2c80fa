"""Bus handlers: regulation arrivals, PR requests and webhook notifications."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assure.config import settings
from assure.errors.exceptions import TransientError
from assure.events import topics
from assure.events.bus import EventBus
from assure.events.webhook_config import WebhookRegistry, webhook_registry
from assure.events.webhook_emitter import emit_event
from assure.llm.base import EmbeddingProvider
from assure.models.enums import ImpactStatus
from assure.models.events import PrRequestedEvent
from assure.models.regulation import Regulation, RegulationEvent
from assure.models.spec import AffectedSpec
from assure.repositories.impact_log_repo import ImpactLogRepository
from assure.repositories.job_repo import JobRepository
from assure.services.id_generator import generate_id
from assure.services.impact_analyzer import find_affected_specs
from assure.workers.queue import JobQueue, enqueue_and_submit

logger = logging.getLogger(__name__)

REGULATION_GROUP = settings.bus_consumer_group
PR_GROUP = "assure-pr-request-group"
NOTIFY_GROUP = "assure-webhook-notify-group"


def patch_dedupe_key(regulation: Regulation, lineage_id: str) -> str:
    """One live patch job per (regulation content, spec lineage)."""
    return f"{regulation.ref}:{regulation.content_hash()[:16]}:{lineage_id}"


class RegulationConsumer:
    """Fans a regulation event out into one ``spec_patch`` job per affected spec."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedder: EmbeddingProvider | None,
        patch_queue: JobQueue,
    ):
        self.session_factory = session_factory
        self.embedder = embedder
        self.patch_queue = patch_queue

    async def handle(self, event: RegulationEvent) -> list[str]:
        regulation = event.regulation
        trace_id = event.event_id or generate_id("trc_")
        logger.info("Regulation event: %s (%s)", regulation.ref, regulation.jurisdiction)

        async with self.session_factory() as session:
            affected = await find_affected_specs(
                session,
                self.embedder,
                regulation.framework,
                regulation.jurisdiction,
                regulation.content or None,
            )

        job_ids: list[str] = []
        failed: list[str] = []
        for spec in affected:
            # One transaction per spec: a failure here never blocks the others.
            try:
                job_id = await self._schedule(regulation, spec, trace_id)
            except Exception:
                logger.exception("Failed to schedule patch for spec %s", spec.spec_id)
                failed.append(spec.spec_id)
                continue
            if job_id:
                job_ids.append(job_id)

        logger.info("%s: %d spec(s) affected, %d job(s) scheduled", regulation.ref, len(affected), len(job_ids))
        if failed:
            # Redelivery is safe: scheduled specs are skipped by their dedupe key.
            raise TransientError(
                f"Could not schedule patches for {len(failed)} spec(s)", details={"spec_ids": failed}
            )
        return job_ids

    async def _schedule(self, regulation: Regulation, spec: AffectedSpec, trace_id: str) -> str | None:
        dedupe_key = patch_dedupe_key(regulation, spec.lineage_id)
        async with self.session_factory() as session:
            existing = await JobRepository(session).find_live_by_dedupe_key(dedupe_key)
            if existing is not None:
                logger.info("Patch job %s already exists for %s; not re-enqueued", existing.job_id, dedupe_key)
                return None

            entry = await ImpactLogRepository(session).create(
                id=generate_id("impact_"),
                regulation_id=regulation.id,
                regulation_ref=regulation.ref,
                workspace_id=spec.workspace_id,
                spec_version_id=spec.spec_id,
                affected_modules=[],
                diff_count=0,
                status=ImpactStatus.PENDING.value,
                semantic_score=spec.semantic_score,
            )
            payload = {
                "spec_version_id": spec.spec_id,
                "workspace_id": spec.workspace_id,
                "regulation_ref": regulation.ref,
                "regulation": regulation.model_dump(mode="json", by_alias=True),
                "semantic_score": spec.semantic_score,
            }
            job_id, created = await enqueue_and_submit(
                self.patch_queue,
                session,
                payload,
                trace_id,
                dedupe_key=dedupe_key,
                impact_log_id=entry.id,
            )
        return job_id if created else None


class PrRequestConsumer:
    """Moves ``spec.pr_requested`` onto the separate PR job pool."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], pr_queue: JobQueue):
        self.session_factory = session_factory
        self.pr_queue = pr_queue

    async def handle(self, event: PrRequestedEvent) -> str:
        payload = {
            "spec_version_id": event.spec_version_id,
            "regulation_ref": event.regulation_trigger,
            "event": event.model_dump(mode="json", by_alias=True),
        }
        async with self.session_factory() as session:
            job_id, created = await enqueue_and_submit(
                self.pr_queue,
                session,
                payload,
                event.event_id,
                dedupe_key=f"pr:{event.spec_version_id}",
            )
        if not created:
            logger.info("PR job %s already exists for spec version %s", job_id, event.spec_version_id)
        return job_id


def make_notifier(topic: str, registry: WebhookRegistry | None = None):
    """Handler forwarding one bus topic to registered webhook subscribers."""

    async def notify_subscribers(payload: dict) -> None:
        body = {k: v for k, v in payload.items() if k != "_meta"}
        results = await emit_event(topic, body, registry=registry or webhook_registry)
        for result in results:
            if not result.ok:
                logger.warning("Notification %s to %s failed: %s", topic, result.url, result.error)

    notify_subscribers.__name__ = f"notify_{topic.replace('.', '_')}"
    return notify_subscribers


def wire_consumers(
    bus: EventBus,
    regulation_consumer: RegulationConsumer,
    pr_consumer: PrRequestConsumer,
    registry: WebhookRegistry | None = None,
) -> None:
    """Register every handler on the bus. Call before ``bus.start()``."""
    bus.subscribe(
        REGULATION_GROUP,
        [topics.REGULATION_NEW, topics.REGULATION_UPDATED],
        regulation_consumer.handle,
        model=RegulationEvent,
    )
    bus.subscribe(PR_GROUP, [topics.SPEC_PR_REQUESTED], pr_consumer.handle, model=PrRequestedEvent)
    for topic in (topics.SPEC_UPDATED, topics.SPEC_PR_REQUESTED):
        bus.subscribe(NOTIFY_GROUP, [topic], make_notifier(topic, registry))
