"""Patch orchestrator: one regulation applied to one spec.

State machine, checkpointed on the job row:

    LOADED -> MODULES_DETECTED -> DIFFS_GENERATED -> VERSION_CREATED
           -> AUDIT_WRITTEN -> EVENTS_PUBLISHED -> DONE

The new version, its clause-diff audit rows, the impact log update and the
AUDIT_WRITTEN checkpoint commit in a single transaction. Events are published
after that commit, so a retry whose checkpoint is at or past VERSION_CREATED
only republishes and never creates a second version.

VERSION_CREATED is never written on its own: the version row commits together
with its audit rows, so the checkpoint moves straight to AUDIT_WRITTEN. A
no-change evaluation checkpoints DONE without a ``new_version_id`` and a
redelivery returns the recorded outcome. FAILED is written by the spec patch
worker when the job fails terminally.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from assure.db.models.impact_log import RegulationImpactLogRow
from assure.db.models.job import JobRow
from assure.db.models.spec_version import SpecVersionRow
from assure.errors.exceptions import NotFoundError
from assure.events import topics
from assure.events.bus import EventBus
from assure.llm.base import TextGenerator
from assure.models.enums import PATCH_STATE_ORDER, ImpactStatus, ModuleKey, PatchState, SpecStatus, TriggeredBy
from assure.models.events import PrRequestedEvent, SpecUpdatedEvent
from assure.models.regulation import Regulation
from assure.models.spec import ClauseDiff, PatchResult
from assure.repositories.impact_log_repo import ImpactLogRepository
from assure.repositories.spec_diff_repo import SpecDiffRepository
from assure.repositories.spec_version_repo import SpecVersionRepository
from assure.services.diff_engine import ModuleApplier, apply_diffs_to_spec, generate_module_diffs, validate_diffs
from assure.services.id_generator import generate_id
from assure.services.module_classifier import detect_affected_modules
from assure.services.versioning import bump_minor_version

logger = logging.getLogger(__name__)


def _reached(checkpoint: dict | None, state: PatchState) -> bool:
    if not checkpoint or checkpoint.get("state") not in PATCH_STATE_ORDER:
        return False
    return PATCH_STATE_ORDER.index(PatchState(checkpoint["state"])) >= PATCH_STATE_ORDER.index(state)


def build_change_reason(regulation_ref: str, diff_count: int) -> str:
    return f"Compliance update: {regulation_ref}: {diff_count} clause(s) patched"


class PatchOrchestrator:
    """Runs the patch pipeline for ``spec_patch`` jobs.

    Job payload: ``{"spec_version_id", "regulation", "semantic_score"?}``.
    """

    def __init__(self, generator: TextGenerator, applier: ModuleApplier, bus: EventBus):
        self.generator = generator
        self.applier = applier
        self.bus = bus

    async def run(self, job: JobRow, session: AsyncSession) -> PatchResult:
        payload = job.payload or {}
        regulation = Regulation.model_validate(payload["regulation"])

        checkpoint = job.checkpoint or {}
        if _reached(checkpoint, PatchState.VERSION_CREATED):
            if checkpoint.get("new_version_id"):
                logger.info("Resuming job %s at event publication", job.job_id)
                return await self._resume(job, session, regulation)
            logger.info("Job %s already evaluated with no change", job.job_id)
            return self._recorded_no_change(checkpoint, regulation)

        spec = await self._load_target(session, payload["spec_version_id"])
        impact = await self._impact_entry(session, job, spec, regulation, payload.get("semantic_score"))
        impact.spec_version_id = spec.id
        await self._checkpoint(session, job, PatchState.LOADED, evaluated_version_id=spec.id)

        modules = spec.module_payloads()
        affected = await detect_affected_modules(self.generator, regulation, modules)
        logger.info("Affected modules: %s", sorted(m.value for m in affected) or "none")
        if not affected:
            return await self._no_change(session, job, impact, spec, regulation, [])
        await self._checkpoint(session, job, PatchState.MODULES_DETECTED, evaluated_version_id=spec.id)

        diffs: list[ClauseDiff] = []
        for module_key in sorted(affected):
            module_payload = modules.get(module_key.value)
            if not module_payload:
                logger.info("Module %s not present in spec %s; skipped", module_key.value, spec.id)
                continue
            proposed = await generate_module_diffs(self.generator, regulation, module_key, module_payload)
            accepted = validate_diffs(module_payload, proposed)
            logger.info("%s: %d diff(s) proposed, %d accepted", module_key.value, len(proposed), len(accepted))
            diffs.extend(accepted)

        if not diffs:
            return await self._no_change(session, job, impact, spec, regulation, sorted(affected))
        await self._checkpoint(session, job, PatchState.DIFFS_GENERATED, evaluated_version_id=spec.id)

        outcome = await apply_diffs_to_spec(modules, diffs, self.applier)
        if outcome.failed_modules:
            failed = set(outcome.failed_modules)
            diffs = [d for d in diffs if d.module not in failed]
            logger.warning(
                "Modules left unpatched after apply failure: %s",
                sorted(m.value for m in failed),
            )
        if not diffs:
            return await self._no_change(
                session, job, impact, spec, regulation, sorted(affected), apply_failures=outcome.failed_modules
            )

        patched_modules = sorted({d.module for d in diffs})
        version_label = bump_minor_version(spec.version_label)

        # Single unit of work: version, audit, impact log, checkpoint.
        versions = SpecVersionRepository(session)
        child = await versions.create_child_version(
            spec,
            outcome.modules,
            version_label=version_label,
            change_reason=build_change_reason(regulation.ref, len(diffs)),
            triggered_by=TriggeredBy.REGULATION_UPDATE,
            regulation_trigger=regulation.ref,
        )
        await SpecDiffRepository(session).add_many(spec.id, child.id, diffs)
        impact.new_spec_version_id = child.id
        impact.affected_modules = [m.value for m in patched_modules]
        impact.diff_count = len(diffs)
        impact.status = ImpactStatus.PATCHED.value
        impact.error_message = None
        job.checkpoint = {
            "state": PatchState.AUDIT_WRITTEN.value,
            "evaluated_version_id": spec.id,
            "new_version_id": child.id,
            "apply_failures": [m.value for m in outcome.failed_modules],
        }
        await session.commit()

        logger.info(
            "Spec %s patched: version %d (%s), %d diff(s)",
            spec.id,
            child.version_number,
            version_label,
            len(diffs),
        )

        await self._publish(spec, child, regulation, patched_modules, diffs, impact.id)
        await self._checkpoint(
            session,
            job,
            PatchState.EVENTS_PUBLISHED,
            **{k: v for k, v in job.checkpoint.items() if k != "state"},
        )

        return PatchResult(
            spec_version_id=spec.id,
            new_version_id=child.id,
            new_version_number=child.version_number,
            version_label=version_label,
            diffs=diffs,
            affected_modules=patched_modules,
            regulation_trigger=regulation.ref,
            status=ImpactStatus.PATCHED.value,
            apply_failures=outcome.failed_modules,
            patched_at=datetime.now(timezone.utc),
        )

    # ------------------------------------------------------------------

    async def _load_target(self, session: AsyncSession, spec_version_id: str) -> SpecVersionRow:
        """Load the version to patch; a superseded version resolves to its lineage head."""
        repo = SpecVersionRepository(session)
        row = await repo.get(spec_version_id)
        if row is None:
            raise NotFoundError("SpecVersion", spec_version_id)
        if row.status == SpecStatus.ACTIVE.value:
            return row

        head = await repo.get_active_for_lineage(row.lineage_id)
        if head is None:
            raise NotFoundError("Active spec version for lineage", row.lineage_id)
        logger.info("Spec %s is %s; patching lineage head %s instead", row.id, row.status, head.id)
        return head

    async def _impact_entry(
        self,
        session: AsyncSession,
        job: JobRow,
        spec: SpecVersionRow,
        regulation: Regulation,
        semantic_score: float | None,
    ) -> RegulationImpactLogRow:
        repo = ImpactLogRepository(session)
        if job.impact_log_id:
            entry = await repo.get(job.impact_log_id)
            if entry is not None:
                return entry

        entry = await repo.create(
            id=generate_id("impact_"),
            regulation_id=regulation.id,
            regulation_ref=regulation.ref,
            workspace_id=spec.workspace_id,
            spec_version_id=spec.id,
            affected_modules=[],
            diff_count=0,
            status=ImpactStatus.PENDING.value,
            semantic_score=semantic_score,
        )
        job.impact_log_id = entry.id
        return entry

    async def _checkpoint(self, session: AsyncSession, job: JobRow, state: PatchState, **extra) -> None:
        job.checkpoint = {"state": state.value, **extra}
        # Commit also ends the read transaction before the next capability call.
        await session.commit()
        logger.debug("Job %s reached %s", job.job_id, state.value)

    async def _no_change(
        self,
        session: AsyncSession,
        job: JobRow,
        impact: RegulationImpactLogRow,
        spec: SpecVersionRow,
        regulation: Regulation,
        affected: list[ModuleKey],
        apply_failures: list[ModuleKey] | None = None,
    ) -> PatchResult:
        impact.status = ImpactStatus.NO_CHANGE.value
        impact.affected_modules = [m.value for m in affected]
        impact.diff_count = 0
        impact.new_spec_version_id = None
        if apply_failures:
            impact.error_message = "Apply failed for modules: " + ", ".join(m.value for m in apply_failures)
        await self._checkpoint(
            session,
            job,
            PatchState.DONE,
            evaluated_version_id=spec.id,
            affected_modules=[m.value for m in affected],
            apply_failures=[m.value for m in apply_failures or []],
        )
        logger.info("No changes required for spec %s by %s", spec.id, regulation.ref)

        return PatchResult(
            spec_version_id=spec.id,
            affected_modules=affected,
            regulation_trigger=regulation.ref,
            status=ImpactStatus.NO_CHANGE.value,
            apply_failures=apply_failures or [],
            patched_at=datetime.now(timezone.utc),
        )

    @staticmethod
    def _recorded_no_change(checkpoint: dict, regulation: Regulation) -> PatchResult:
        """Rebuild a no-change result from its DONE checkpoint; the impact log is left as recorded."""
        return PatchResult(
            spec_version_id=checkpoint["evaluated_version_id"],
            affected_modules=[ModuleKey(m) for m in checkpoint.get("affected_modules", [])],
            regulation_trigger=regulation.ref,
            status=ImpactStatus.NO_CHANGE.value,
            apply_failures=[ModuleKey(m) for m in checkpoint.get("apply_failures", [])],
            patched_at=datetime.now(timezone.utc),
        )

    async def _resume(self, job: JobRow, session: AsyncSession, regulation: Regulation) -> PatchResult:
        checkpoint = dict(job.checkpoint or {})
        versions = SpecVersionRepository(session)
        child = await versions.get(checkpoint["new_version_id"])
        parent = await versions.get(checkpoint["evaluated_version_id"])
        if child is None or parent is None:
            raise NotFoundError("SpecVersion", checkpoint.get("new_version_id", ""))

        rows = await SpecDiffRepository(session).list_for_version(child.id)
        diffs = [SpecDiffRepository.to_clause_diff(r) for r in rows]
        patched_modules = sorted({d.module for d in diffs})
        apply_failures = [ModuleKey(m) for m in checkpoint.get("apply_failures", [])]

        if not _reached(checkpoint, PatchState.EVENTS_PUBLISHED):
            await self._publish(parent, child, regulation, patched_modules, diffs, job.impact_log_id)
            checkpoint.pop("state", None)
            await self._checkpoint(session, job, PatchState.EVENTS_PUBLISHED, **checkpoint)

        return PatchResult(
            spec_version_id=parent.id,
            new_version_id=child.id,
            new_version_number=child.version_number,
            version_label=child.version_label,
            diffs=diffs,
            affected_modules=patched_modules,
            regulation_trigger=regulation.ref,
            status=ImpactStatus.PATCHED.value,
            apply_failures=apply_failures,
            patched_at=child.created_at or datetime.now(timezone.utc),
        )

    async def _publish(
        self,
        parent: SpecVersionRow,
        child: SpecVersionRow,
        regulation: Regulation,
        affected: list[ModuleKey],
        diffs: list[ClauseDiff],
        impact_log_id: str | None,
    ) -> None:
        updated = SpecUpdatedEvent(
            event_id=generate_id("evt_"),
            workspace_id=child.workspace_id,
            spec_version_id=parent.id,
            new_version_id=child.id,
            regulation_trigger=regulation.ref,
            affected_modules=affected,
            diffs=diffs,
        )
        pr_requested = PrRequestedEvent(
            event_id=generate_id("evt_"),
            workspace_id=child.workspace_id,
            spec_version_id=child.id,
            previous_version_id=parent.id,
            regulation_trigger=regulation.ref,
            affected_modules=affected,
            diffs=diffs,
            version_label=child.version_label,
            impact_log_id=impact_log_id,
        )
        await self.bus.publish(
            topics.SPEC_UPDATED, updated.model_dump(mode="json", by_alias=True), key=child.workspace_id
        )
        await self.bus.publish(
            topics.SPEC_PR_REQUESTED, pr_requested.model_dump(mode="json", by_alias=True), key=child.workspace_id
        )
