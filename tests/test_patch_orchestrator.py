"""Patch orchestrator scenarios, run through the spec patch worker."""

import json

import pytest
from sqlalchemy import func, select

from assure.db.models.impact_log import RegulationImpactLogRow
from assure.db.models.job import JobRow
from assure.db.models.spec_diff import SpecDiffRow
from assure.errors.exceptions import TransientError
from assure.events import topics
from assure.events.bus import InMemoryEventBus
from assure.models.enums import ModuleKey, SpecStatus
from assure.repositories.spec_diff_repo import SpecDiffRepository
from assure.repositories.spec_version_repo import SpecVersionRepository
from assure.services.clause_path import changed_paths
from assure.services.diff_engine import ApplyVerificationError, ClausePathApplier, ModuleApplier
from assure.services.patch_orchestrator import PatchOrchestrator
from assure.workers.spec_patch_worker import SpecPatchWorker

from fakes import (
    CLASSIFY_MARKER,
    FakeTextGenerator,
    create_patch_job,
    diff_marker,
    gdpr_article_32,
    gdpr_generator,
)

RETENTION_DIFF = json.dumps([
    {
        "clausePath": "auditLogging.retentionDays",
        "fieldLabel": "Audit Log Retention",
        "before": 90,
        "after": 365,
        "reason": "GDPR Article 30 requires records of processing to be retained",
        "severity": "medium",
    }
])


def make_worker(generator, bus, applier=None) -> SpecPatchWorker:
    orchestrator = PatchOrchestrator(generator, applier or ClausePathApplier(), bus)
    return SpecPatchWorker(orchestrator, max_attempts=3, retry_base_delay=0)


async def run(worker, session_factory, job_id):
    async with session_factory() as session:
        return await worker.execute(job_id, session)


async def load(session_factory, model, pk):
    async with session_factory() as session:
        return await session.get(model, pk)


async def lineage(session_factory, lineage_id):
    async with session_factory() as session:
        return await SpecVersionRepository(session).list_lineage(lineage_id)


async def test_gdpr_article_32_patch(make_spec, session_factory, bus):
    spec = await make_spec()
    job_id = await create_patch_job(session_factory, spec.id, gdpr_article_32())

    assert await run(make_worker(gdpr_generator(), bus), session_factory, job_id) is None

    job = await load(session_factory, JobRow, job_id)
    assert job.status == "completed"
    assert job.attempts == 1
    assert job.result["status"] == "patched"
    assert job.checkpoint["state"] == "EVENTS_PUBLISHED"

    v1, v2 = await lineage(session_factory, spec.lineage_id)
    assert v1.status == SpecStatus.SUPERSEDED.value
    assert v2.status == SpecStatus.ACTIVE.value
    assert v2.parent_id == v1.id
    assert v2.version_number == 2
    assert v2.version_label == "v1.1.0"
    assert v2.triggered_by == "regulation_update"
    assert v2.regulation_trigger == "GDPR Article 32"
    assert v2.change_reason == "Compliance update: GDPR Article 32: 2 clause(s) patched"

    controls = v2.security_blueprint["encryptionControls"][0]
    assert controls["algorithm"] == "AES-256"
    assert controls["keyRotationDays"] == 90
    assert changed_paths(v1.security_blueprint, v2.security_blueprint) == {
        "encryptionControls[0].algorithm",
        "encryptionControls[0].keyRotationDays",
    }
    for module in ("master_specification", "cost_analysis", "tech_stack_justification", "code_scaffolding"):
        assert getattr(v2, module) == getattr(v1, module)

    async with session_factory() as session:
        rows = await SpecDiffRepository(session).list_for_version(v2.id)
    assert len(rows) == 2
    assert all(r.from_version_id == v1.id and r.regulation_trigger == "GDPR Article 32" for r in rows)
    assert {(r.clause_path, r.before_value, r.after_value) for r in rows} == {
        ("encryptionControls[0].algorithm", "AES-128", "AES-256"),
        ("encryptionControls[0].keyRotationDays", "365", "90"),
    }

    impact = await load(session_factory, RegulationImpactLogRow, job.impact_log_id)
    assert impact.status == "patched"
    assert impact.new_spec_version_id == v2.id
    assert impact.diff_count == 2
    assert impact.affected_modules == ["security_blueprint"]

    assert [t for t, _ in bus.published] == [topics.SPEC_UPDATED, topics.SPEC_PR_REQUESTED]
    updated = bus.published[0][1]
    assert updated["specVersionId"] == v1.id
    assert updated["newVersionId"] == v2.id
    assert updated["affectedModules"] == ["security_blueprint"]
    assert updated["prRequested"] is True
    assert len(updated["diffs"]) == 2
    assert updated["_meta"]["topic"] == topics.SPEC_UPDATED
    pr = bus.published[1][1]
    assert pr["specVersionId"] == v2.id
    assert pr["previousVersionId"] == v1.id
    assert pr["versionLabel"] == "v1.1.0"
    assert pr["impactLogId"] == job.impact_log_id


async def test_empty_classifier_result_is_no_change(make_spec, session_factory, bus):
    spec = await make_spec()
    generator = FakeTextGenerator({CLASSIFY_MARKER: "[]"})
    job_id = await create_patch_job(session_factory, spec.id, gdpr_article_32())

    await run(make_worker(generator, bus), session_factory, job_id)

    job = await load(session_factory, JobRow, job_id)
    assert job.status == "completed"
    assert job.result["status"] == "no_change"
    assert [v.id for v in await lineage(session_factory, spec.lineage_id)] == [spec.id]
    impact = await load(session_factory, RegulationImpactLogRow, job.impact_log_id)
    assert impact.status == "no_change"
    assert impact.new_spec_version_id is None
    assert bus.published == []
    # No diff prompt was ever issued
    assert len(generator.prompts) == 1


async def test_no_accepted_diffs_is_no_change(make_spec, session_factory, bus):
    spec = await make_spec()
    stale = json.dumps([{
        "clausePath": "encryptionControls[0].algorithm",
        "before": "DES",
        "after": "AES-256",
        "severity": "high",
    }])
    generator = FakeTextGenerator({CLASSIFY_MARKER: '["security_blueprint"]', diff_marker("security_blueprint"): stale})
    job_id = await create_patch_job(session_factory, spec.id, gdpr_article_32())

    await run(make_worker(generator, bus), session_factory, job_id)

    job = await load(session_factory, JobRow, job_id)
    assert job.result["status"] == "no_change"
    assert job.result["affectedModules"] == ["security_blueprint"]
    assert len(await lineage(session_factory, spec.lineage_id)) == 1


async def test_patched_spec_is_not_patched_again(make_spec, session_factory, bus):
    spec = await make_spec()
    generator = gdpr_generator()
    worker = make_worker(generator, bus)
    first = await create_patch_job(session_factory, spec.id, gdpr_article_32())
    await run(worker, session_factory, first)
    v1, v2 = await lineage(session_factory, spec.lineage_id)

    # Same regulation delivered again under a new id: v2 already satisfies it
    second = await create_patch_job(session_factory, v2.id, gdpr_article_32(id="reg_gdpr_32_rev"))
    await run(worker, session_factory, second)

    job = await load(session_factory, JobRow, second)
    assert job.status == "completed"
    assert job.result["status"] == "no_change"
    assert job.result["specVersionId"] == v2.id
    assert [v.id for v in await lineage(session_factory, spec.lineage_id)] == [v1.id, v2.id]
    async with session_factory() as session:
        assert await session.scalar(select(func.count()).select_from(SpecDiffRow)) == 2
    impact = await load(session_factory, RegulationImpactLogRow, job.impact_log_id)
    assert impact.status == "no_change"
    assert impact.diff_count == 0
    assert len(bus.published) == 2


async def test_redelivered_no_change_job_keeps_its_outcome(make_spec, session_factory, bus):
    spec = await make_spec()
    generator = FakeTextGenerator({CLASSIFY_MARKER: "[]"})
    worker = make_worker(generator, bus)
    job_id = await create_patch_job(session_factory, spec.id, gdpr_article_32())
    await run(worker, session_factory, job_id)

    # Crash after the DONE checkpoint but before completion: recovery requeues the job
    async with session_factory() as session:
        job = await session.get(JobRow, job_id)
        assert job.checkpoint["state"] == "DONE"
        job.status = "queued"
        await session.commit()

    assert await run(worker, session_factory, job_id) is None

    job = await load(session_factory, JobRow, job_id)
    assert job.status == "completed"
    assert job.attempts == 2
    assert job.result["status"] == "no_change"
    assert job.result["specVersionId"] == spec.id
    impact = await load(session_factory, RegulationImpactLogRow, job.impact_log_id)
    assert impact.status == "no_change"
    assert impact.error_message is None
    assert len(generator.prompts) == 1
    assert bus.published == []


async def test_unparsable_classifier_output_uses_fallback_modules(make_spec, session_factory, bus):
    spec = await make_spec()
    generator = FakeTextGenerator({CLASSIFY_MARKER: "The security blueprint, probably."})
    job_id = await create_patch_job(session_factory, spec.id, gdpr_article_32())

    await run(make_worker(generator, bus), session_factory, job_id)

    assert any(diff_marker("security_blueprint") in p for p in generator.prompts)
    assert any(diff_marker("master_specification") in p for p in generator.prompts)
    assert not any(diff_marker("cost_analysis") in p for p in generator.prompts)


async def test_module_missing_from_spec_is_skipped(make_spec, session_factory, bus):
    from fakes import spec_modules

    modules = spec_modules()
    modules["cost_analysis"] = None
    spec = await make_spec(modules=modules)
    generator = FakeTextGenerator({CLASSIFY_MARKER: '["cost_analysis"]'})
    job_id = await create_patch_job(session_factory, spec.id, gdpr_article_32())

    await run(make_worker(generator, bus), session_factory, job_id)

    job = await load(session_factory, JobRow, job_id)
    assert job.result["status"] == "no_change"
    assert not any(diff_marker("cost_analysis") in p for p in generator.prompts)


async def test_partial_apply_failure_patches_remaining_modules(make_spec, session_factory, bus):
    class ScaffoldingFails(ModuleApplier):
        name = "scaffolding-fails"

        async def apply(self, module_key, payload, diffs):
            if module_key == ModuleKey.CODE_SCAFFOLDING:
                raise ApplyVerificationError("drift")
            return await ClausePathApplier().apply(module_key, payload, diffs)

    scaffold_diff = json.dumps([{
        "clausePath": "dockerfile",
        "before": "FROM python:3.12-slim",
        "after": "FROM python:3.12-slim-hardened",
        "severity": "low",
    }])
    generator = gdpr_generator(**{diff_marker("code_scaffolding"): scaffold_diff})
    generator.rules[0] = (CLASSIFY_MARKER, '["security_blueprint", "code_scaffolding"]')
    spec = await make_spec()
    job_id = await create_patch_job(session_factory, spec.id, gdpr_article_32())

    await run(make_worker(generator, bus, applier=ScaffoldingFails()), session_factory, job_id)

    job = await load(session_factory, JobRow, job_id)
    assert job.status == "completed"
    assert job.result["status"] == "patched"
    assert job.result["applyFailures"] == ["code_scaffolding"]
    assert job.result["affectedModules"] == ["security_blueprint"]

    v1, v2 = await lineage(session_factory, spec.lineage_id)
    assert v2.code_scaffolding == v1.code_scaffolding
    async with session_factory() as session:
        rows = await SpecDiffRepository(session).list_for_version(v2.id)
    assert {r.module for r in rows} == {"security_blueprint"}


async def test_missing_spec_is_fatal(session_factory, bus):
    generator = gdpr_generator()
    job_id = await create_patch_job(session_factory, "does-not-exist", gdpr_article_32())

    assert await run(make_worker(generator, bus), session_factory, job_id) is None

    job = await load(session_factory, JobRow, job_id)
    assert job.status == "failed"
    assert job.attempts == 1
    assert job.error_message.startswith("NOT_FOUND")
    assert generator.prompts == []


async def test_superseded_target_patches_lineage_head(make_spec, session_factory, bus):
    spec = await make_spec()
    first = await create_patch_job(session_factory, spec.id, gdpr_article_32())
    await run(make_worker(gdpr_generator(), bus), session_factory, first)

    generator = FakeTextGenerator(
        {CLASSIFY_MARKER: '["security_blueprint"]', diff_marker("security_blueprint"): RETENTION_DIFF}
    )
    second = await create_patch_job(session_factory, spec.id, gdpr_article_32(article="Article 30"))
    await run(make_worker(generator, bus), session_factory, second)

    v1, v2, v3 = await lineage(session_factory, spec.lineage_id)
    assert v3.parent_id == v2.id
    assert v3.version_label == "v1.2.0"
    assert v3.security_blueprint["encryptionControls"][0]["algorithm"] == "AES-256"
    assert v3.security_blueprint["auditLogging"]["retentionDays"] == 365


async def test_lineage_without_active_version_is_fatal(make_spec, session_factory, bus):
    spec = await make_spec()
    async with session_factory() as session:
        repo = SpecVersionRepository(session)
        await repo.archive(await repo.get(spec.id))
        await session.commit()
    job_id = await create_patch_job(session_factory, spec.id, gdpr_article_32())

    await run(make_worker(gdpr_generator(), bus), session_factory, job_id)

    job = await load(session_factory, JobRow, job_id)
    assert job.status == "failed"
    assert "NOT_FOUND" in job.error_message


async def test_concurrent_commit_conflict_is_retried_onto_new_head(make_spec, session_factory, bus):
    spec = await make_spec()
    job_a = await create_patch_job(session_factory, spec.id, gdpr_article_32())
    job_b = await create_patch_job(session_factory, spec.id, gdpr_article_32(article="Article 30"))
    worker_a = make_worker(gdpr_generator(), bus)
    a_ran = []

    async def classify_b(prompt):
        # Job A commits while job B is between loading and committing.
        if not a_ran:
            a_ran.append(True)
            await run(worker_a, session_factory, job_a)
        return '["security_blueprint"]'

    generator_b = FakeTextGenerator({CLASSIFY_MARKER: classify_b, diff_marker("security_blueprint"): RETENTION_DIFF})
    worker_b = make_worker(generator_b, bus)

    delay = await run(worker_b, session_factory, job_b)
    assert delay == 0

    job = await load(session_factory, JobRow, job_b)
    assert job.status == "queued"
    assert job.error_message.startswith("VERSION_CONFLICT")
    assert [v.version_number for v in await lineage(session_factory, spec.lineage_id)] == [1, 2]

    assert await run(worker_b, session_factory, job_b) is None

    job = await load(session_factory, JobRow, job_b)
    assert job.status == "completed"
    assert job.attempts == 2
    chain = await lineage(session_factory, spec.lineage_id)
    assert [v.version_number for v in chain] == [1, 2, 3]
    assert [v.status for v in chain].count("active") == 1
    assert chain[2].parent_id == chain[1].id
    assert chain[2].security_blueprint["encryptionControls"][0]["algorithm"] == "AES-256"
    assert chain[2].security_blueprint["auditLogging"]["retentionDays"] == 365

    impact = await load(session_factory, RegulationImpactLogRow, job.impact_log_id)
    assert impact.spec_version_id == chain[1].id
    assert impact.new_spec_version_id == chain[2].id


class FlakyBus(InMemoryEventBus):
    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    async def publish(self, topic, payload, key=None):
        if self.failures:
            self.failures -= 1
            raise TransientError("bus unavailable")
        return await super().publish(topic, payload, key)


async def test_retry_after_commit_resumes_at_publication(make_spec, session_factory):
    spec = await make_spec()
    bus = FlakyBus(failures=1)
    generator = gdpr_generator()
    worker = make_worker(generator, bus)
    job_id = await create_patch_job(session_factory, spec.id, gdpr_article_32())

    assert await run(worker, session_factory, job_id) == 0
    job = await load(session_factory, JobRow, job_id)
    assert job.status == "queued"
    assert job.checkpoint["state"] == "AUDIT_WRITTEN"
    assert bus.published == []

    assert await run(worker, session_factory, job_id) is None

    job = await load(session_factory, JobRow, job_id)
    assert job.status == "completed"
    assert job.result["newVersionId"] == job.checkpoint["new_version_id"]
    assert len(job.result["diffs"]) == 2
    assert len(await lineage(session_factory, spec.lineage_id)) == 2
    assert [t for t, _ in bus.published] == [topics.SPEC_UPDATED, topics.SPEC_PR_REQUESTED]
    assert sum(CLASSIFY_MARKER in p for p in generator.prompts) == 1


async def test_transient_failures_exhaust_attempts(make_spec, session_factory, bus):
    spec = await make_spec()
    generator = FakeTextGenerator({CLASSIFY_MARKER: TransientError("text generation timed out")})
    worker = make_worker(generator, bus)
    job_id = await create_patch_job(session_factory, spec.id, gdpr_article_32())

    assert await run(worker, session_factory, job_id) == 0
    assert await run(worker, session_factory, job_id) == 0
    assert await run(worker, session_factory, job_id) is None

    job = await load(session_factory, JobRow, job_id)
    assert job.status == "failed"
    assert job.attempts == 3
    assert "timed out" in job.error_message
    impact = await load(session_factory, RegulationImpactLogRow, job.impact_log_id)
    assert job.checkpoint["state"] == "FAILED"
    assert job.checkpoint["failed_at"] == "LOADED"
    assert impact.status == "failed"
    assert "timed out" in impact.error_message
    assert len(await lineage(session_factory, spec.lineage_id)) == 1


async def test_completed_job_is_not_rerun(make_spec, session_factory, bus):
    spec = await make_spec()
    generator = gdpr_generator()
    worker = make_worker(generator, bus)
    job_id = await create_patch_job(session_factory, spec.id, gdpr_article_32())

    await run(worker, session_factory, job_id)
    prompts = len(generator.prompts)
    await run(worker, session_factory, job_id)

    assert len(generator.prompts) == prompts
    assert len(await lineage(session_factory, spec.lineage_id)) == 2


@pytest.mark.parametrize("attempts,expected", [(1, 15.0), (2, 30.0), (3, 60.0)])
def test_backoff_is_exponential(attempts, expected):
    worker = SpecPatchWorker(PatchOrchestrator(FakeTextGenerator(), ClausePathApplier(), InMemoryEventBus()),
                             retry_base_delay=15.0)
    assert worker.backoff_delay(attempts) == expected
