"""Tests for the two-stage impact analyzer."""

import pytest

from assure.errors.exceptions import TransientError
from assure.services.impact_analyzer import find_affected_specs, matches_structurally

from fakes import FakeEmbeddingProvider, spec_modules, unit_vector

REG_TEXT = "Controllers shall implement state of the art encryption of personal data."


def _modules(project_name: str) -> dict:
    modules = spec_modules()
    modules["master_specification"]["projectName"] = project_name
    return modules


async def test_structural_filter(make_spec, db_session):
    eu = await make_spec(frameworks=["GDPR"], jurisdictions=["EU"])
    global_spec = await make_spec(frameworks=["gdpr", "SOC2"], jurisdictions=["GLOBAL"])
    await make_spec(frameworks=["HIPAA"], jurisdictions=["US"])
    await make_spec(frameworks=["GDPR"], jurisdictions=["US"])

    affected = await find_affected_specs(db_session, None, "GDPR", "EU")

    assert {a.spec_id for a in affected} == {eu.id, global_spec.id}
    assert all(a.semantic_score == 1.0 for a in affected)


async def test_global_regulation_matches_every_jurisdiction(make_spec, db_session):
    us = await make_spec(frameworks=["ISO27001"], jurisdictions=["US"])
    affected = await find_affected_specs(db_session, None, "ISO27001", "GLOBAL")
    assert [a.spec_id for a in affected] == [us.id]


async def test_no_candidates(make_spec, db_session):
    await make_spec(frameworks=["HIPAA"], jurisdictions=["US"])
    assert await find_affected_specs(db_session, None, "GDPR", "EU", REG_TEXT) == []


async def test_semantic_threshold(make_spec, db_session):
    close = await make_spec(modules=_modules("Alpha Clinic"))
    await make_spec(modules=_modules("Beta Billing"))
    embedder = FakeEmbeddingProvider({
        "encryption of personal data": [1.0, 0.0],
        "Alpha Clinic": unit_vector(0.81),
        "Beta Billing": unit_vector(0.40),
    })

    affected = await find_affected_specs(db_session, embedder, "GDPR", "EU", REG_TEXT)

    assert [a.spec_id for a in affected] == [close.id]
    assert affected[0].semantic_score == pytest.approx(0.81, abs=1e-6)


async def test_results_sorted_by_score(make_spec, db_session):
    mid = await make_spec(modules=_modules("Mid Service"))
    top = await make_spec(modules=_modules("Top Service"))
    embedder = FakeEmbeddingProvider({
        "encryption of personal data": [1.0, 0.0],
        "Mid Service": unit_vector(0.70),
        "Top Service": unit_vector(0.95),
    })

    affected = await find_affected_specs(db_session, embedder, "GDPR", "EU", REG_TEXT)

    assert [a.spec_id for a in affected] == [top.id, mid.id]


async def test_missing_text_skips_semantic_filter(make_spec, db_session):
    spec = await make_spec(modules=_modules("Beta Billing"))
    embedder = FakeEmbeddingProvider({"Beta Billing": unit_vector(0.1)})

    affected = await find_affected_specs(db_session, embedder, "GDPR", "EU", regulation_text="   ")

    assert [(a.spec_id, a.semantic_score) for a in affected] == [(spec.id, 1.0)]
    assert embedder.texts == []


async def test_candidate_embedding_failure_excludes_only_that_spec(make_spec, db_session):
    good = await make_spec(modules=_modules("Alpha Clinic"))
    await make_spec(modules=_modules("Broken Service"))
    embedder = FakeEmbeddingProvider({
        "encryption of personal data": [1.0, 0.0],
        "Alpha Clinic": unit_vector(0.9),
        "Broken Service": TransientError("embedding timeout"),
    })

    affected = await find_affected_specs(db_session, embedder, "GDPR", "EU", REG_TEXT)

    assert [a.spec_id for a in affected] == [good.id]


async def test_malformed_master_spec_excludes_only_that_spec(make_spec, db_session):
    good = await make_spec(modules=_modules("Alpha Clinic"))
    broken = spec_modules()
    broken["master_specification"]["projectName"] = 42
    broken["master_specification"]["coreFeatures"] = 7
    await make_spec(modules=broken)
    embedder = FakeEmbeddingProvider({
        "encryption of personal data": [1.0, 0.0],
        "Alpha Clinic": unit_vector(0.9),
        "Patient records portal": ValueError("unexpected embedding body"),
    })

    affected = await find_affected_specs(db_session, embedder, "GDPR", "EU", REG_TEXT)

    assert [a.spec_id for a in affected] == [good.id]
    assert any(text.startswith("42\n") for text in embedder.texts)


async def test_regulation_embedding_failure_propagates(make_spec, db_session):
    await make_spec()
    embedder = FakeEmbeddingProvider({"encryption of personal data": TransientError("embedding timeout")})
    with pytest.raises(TransientError):
        await find_affected_specs(db_session, embedder, "GDPR", "EU", REG_TEXT)


async def test_spec_without_master_text_is_kept_with_full_score(make_spec, db_session):
    modules = spec_modules()
    modules["master_specification"] = None
    spec = await make_spec(modules=modules)
    embedder = FakeEmbeddingProvider({"encryption of personal data": [1.0, 0.0]})

    affected = await find_affected_specs(db_session, embedder, "GDPR", "EU", REG_TEXT)

    assert [(a.spec_id, a.semantic_score) for a in affected] == [(spec.id, 1.0)]
    assert embedder.texts == [REG_TEXT]


async def test_superseded_versions_are_not_candidates(make_spec, db_session):
    from assure.models.enums import TriggeredBy
    from assure.repositories.spec_version_repo import SpecVersionRepository

    v1 = await make_spec()
    repo = SpecVersionRepository(db_session)
    parent = await repo.get(v1.id)
    v2 = await repo.create_child_version(parent, parent.module_payloads(), "v1.1.0", "edit", TriggeredBy.USER)
    await db_session.commit()

    affected = await find_affected_specs(db_session, None, "GDPR", "EU")
    assert [a.spec_id for a in affected] == [v2.id]


def test_matches_structurally_is_case_insensitive():
    class Row:
        frameworks = [" gdpr "]
        jurisdictions = ["eu"]

    assert matches_structurally(Row(), "GDPR", "EU")
    assert not matches_structurally(Row(), "HIPAA", "EU")
