"""Pull request worker: hands a patched version to the source-control collaborator."""

import logging

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from assure.config import settings
from assure.db.models.job import JobRow
from assure.errors.exceptions import TransientError, ValidationError
from assure.events import topics
from assure.events.bus import EventBus
from assure.events.webhook_config import WebhookSubscription
from assure.events.webhook_emitter import build_envelope, deliver
from assure.models.enums import ImpactStatus, JobType
from assure.models.events import PrCreatedEvent, PrRequestedEvent
from assure.repositories.impact_log_repo import ImpactLogRepository
from assure.services.id_generator import generate_id
from assure.workers.base import BaseWorker

logger = logging.getLogger(__name__)


class PullRequestWorker(BaseWorker):
    """Delivers ``spec.pr_requested`` as a signed webhook.

    On acceptance the impact log entry moves to ``pr_created`` and
    ``spec.pr_created`` is published. Delivery is at-least-once; the
    collaborator is expected to key on ``specVersionId``.
    """

    job_type = JobType.PR_REQUEST

    def __init__(
        self,
        bus: EventBus,
        webhook_url: str | None = None,
        webhook_secret: str | None = None,
        client: httpx.AsyncClient | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.bus = bus
        self.webhook_url = webhook_url if webhook_url is not None else settings.source_control_webhook_url
        self.webhook_secret = webhook_secret or settings.source_control_webhook_secret
        self.client = client

    async def process(self, job: JobRow, session: AsyncSession) -> dict:
        event = PrRequestedEvent.model_validate(job.payload["event"])

        if not self.webhook_url:
            logger.info("No source-control collaborator configured; PR for %s not requested", event.spec_version_id)
            return {"delivered": False}

        envelope = build_envelope(topics.SPEC_PR_REQUESTED, event.model_dump(mode="json", by_alias=True))
        result = await deliver(
            envelope,
            WebhookSubscription(url=self.webhook_url, secret=self.webhook_secret),
            client=self.client,
        )
        if not result.ok:
            if result.status is not None and 400 <= result.status < 500:
                raise ValidationError(
                    f"Source-control collaborator rejected PR request: HTTP {result.status}",
                    details={"spec_version_id": event.spec_version_id},
                )
            raise TransientError(f"PR request delivery failed: {result.error}")

        if event.impact_log_id:
            entry = await ImpactLogRepository(session).get(event.impact_log_id)
            if entry is not None:
                entry.status = ImpactStatus.PR_CREATED.value
        await session.commit()

        created = PrCreatedEvent(
            event_id=generate_id("evt_"),
            workspace_id=event.workspace_id,
            spec_version_id=event.spec_version_id,
            regulation_trigger=event.regulation_trigger,
            delivery_status=result.status,
        )
        await self.bus.publish(
            topics.SPEC_PR_CREATED, created.model_dump(mode="json", by_alias=True), key=event.workspace_id
        )
        logger.info("PR requested for spec version %s (%s)", event.spec_version_id, event.version_label)
        return {"delivered": True, "status": result.status}
