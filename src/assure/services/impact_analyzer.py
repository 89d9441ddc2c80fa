"""Spec impact analyzer.

Given a new regulation, finds the active specs it affects in two stages:

1. Structural filter over declared frameworks and jurisdictions. It must be a
   superset of the truly affected specs, so matching is case-insensitive and
   a ``GLOBAL`` jurisdiction on either side matches everything.
2. Semantic filter (only when regulation text is available): cosine similarity
   between the regulation text and each candidate's master specification
   summary, retained at or above the configured threshold.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from assure.config import settings
from assure.db.models.spec_version import SpecVersionRow
from assure.errors.exceptions import AssureError
from assure.llm.base import EmbeddingProvider
from assure.models.spec import AffectedSpec
from assure.repositories.spec_version_repo import SpecVersionRepository
from assure.services.similarity import cosine_similarity
from assure.services.spec_summary import extract_master_spec_text

logger = logging.getLogger(__name__)

GLOBAL_JURISDICTION = "GLOBAL"


def _normalize(values: list[str] | None) -> set[str]:
    return {v.strip().upper() for v in values or [] if isinstance(v, str) and v.strip()}


def matches_structurally(row: SpecVersionRow, framework: str, jurisdiction: str) -> bool:
    frameworks = _normalize(row.frameworks)
    jurisdictions = _normalize(row.jurisdictions)
    wanted_jurisdiction = jurisdiction.strip().upper()

    if framework.strip().upper() not in frameworks:
        return False
    if wanted_jurisdiction == GLOBAL_JURISDICTION or GLOBAL_JURISDICTION in jurisdictions:
        return True
    return wanted_jurisdiction in jurisdictions


def _to_affected(row: SpecVersionRow, score: float) -> AffectedSpec:
    return AffectedSpec(
        spec_id=row.id,
        workspace_id=row.workspace_id,
        lineage_id=row.lineage_id,
        version_number=row.version_number,
        frameworks=row.frameworks or [],
        jurisdictions=row.jurisdictions or [],
        semantic_score=score,
    )


async def find_structural_candidates(
    session: AsyncSession,
    framework: str,
    jurisdiction: str,
) -> list[SpecVersionRow]:
    """Stage 1. A storage failure propagates: nothing can proceed without candidates."""
    repo = SpecVersionRepository(session)
    active = await repo.list_active_candidates()
    return [row for row in active if matches_structurally(row, framework, jurisdiction)]


async def find_affected_specs(
    session: AsyncSession,
    embedder: EmbeddingProvider | None,
    framework: str,
    jurisdiction: str,
    regulation_text: str | None = None,
    threshold: float | None = None,
) -> list[AffectedSpec]:
    """Return the affected specs, most relevant first.

    Without regulation text (or without an embedder) every structural candidate
    is affected with score 1.0: the filter is skipped rather than silently
    dropping specs. The same holds for a single candidate whose master
    specification has no text. Embedding the regulation text itself failing raises, so
    the whole regulation event is redelivered; a failure while scoring one
    candidate excludes only that candidate.
    """
    threshold = settings.semantic_threshold if threshold is None else threshold

    logger.info("Scanning for specs: framework=%s, jurisdiction=%s", framework, jurisdiction)
    candidates = await find_structural_candidates(session, framework, jurisdiction)

    if not candidates:
        logger.info("No candidate specs found via framework filter")
        return []

    logger.info("%d candidates from framework filter", len(candidates))

    if not regulation_text or not regulation_text.strip() or embedder is None:
        return [_to_affected(row, 1.0) for row in candidates]

    regulation_vector = await embedder.embed(regulation_text)

    results: list[AffectedSpec] = []
    for row in candidates:
        try:
            spec_text = extract_master_spec_text(row.master_specification)
            if not spec_text:
                # Nothing to compare against; kept rather than silently dropped
                logger.warning("Spec %s has no master specification text; semantic filter skipped", row.id)
                results.append(_to_affected(row, 1.0))
                continue
            spec_vector = await embedder.embed(spec_text)
            score = cosine_similarity(regulation_vector, spec_vector)
        except AssureError as exc:
            logger.warning("Semantic scoring failed for spec %s; excluded: %s", row.id, exc.message)
            continue
        except Exception:
            logger.exception("Semantic scoring failed for spec %s; excluded", row.id)
            continue

        logger.info("Spec %s: semantic score = %.3f", row.id, score)
        if score >= threshold:
            results.append(_to_affected(row, score))

    results.sort(key=lambda a: a.semantic_score, reverse=True)

    logger.info(
        "%d / %d specs passed semantic filter (threshold: %.2f)",
        len(results),
        len(candidates),
        threshold,
    )
    return results
