"""Clause-level diff engine.

Given a regulation and one module payload, the text-generation capability
proposes the minimum set of clause edits. Proposals are untrusted: they are
schema-validated, checked against the live payload, applied per module and
verified so that nothing outside the named clause paths changes.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from assure.errors.exceptions import ClausePathError
from assure.llm.base import TextGenerator
from assure.llm.parsing import GeneratedContentError, parse_json_array, parse_json_object
from assure.models.enums import ModuleKey
from assure.models.regulation import Regulation
from assure.models.spec import ClauseDiff, ProposedClauseDiff
from assure.services.clause_path import as_clause_text, assign, changed_paths, is_within, resolve

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Diff generation
# ---------------------------------------------------------------------------


def build_diff_prompt(regulation: Regulation, module_key: ModuleKey, module_payload: dict) -> str:
    return f"""You are a precise compliance engineer. A new regulation requires specific changes to a technical specification module.

<new_regulation>
Framework: {regulation.framework}
Article: {regulation.article}
Title: {regulation.title}
Content: {regulation.content}
</new_regulation>

<current_module key="{module_key.value}">
{json.dumps(module_payload, indent=2)}
</current_module>

TASK:
Identify the MINIMUM set of clause-level changes required to make this module compliant with the new regulation.

RULES:
1. Only change clauses that are directly affected by this specific regulation
2. Do NOT rewrite sections that are already compliant
3. Be precise: identify the exact field path using dot notation and array indices
4. The "before" must be the exact current value from the module above
5. The "after" must be the minimal change to achieve compliance
6. If no changes are needed, return an empty array []

Respond with ONLY a valid JSON array:
[
  {{
    "clausePath": "encryptionControls[0].algorithm",
    "fieldLabel": "Encryption Algorithm for Data at Rest",
    "before": "AES-128",
    "after": "AES-256",
    "reason": "{regulation.ref} requires 256-bit encryption for data at rest",
    "severity": "high"
  }}
]"""


def parse_proposed_diffs(text: str, module_key: ModuleKey, regulation_trigger: str) -> list[ClauseDiff]:
    """Parse the diff array; unparsable output yields [] and invalid items are dropped."""
    try:
        raw_items = parse_json_array(text)
    except GeneratedContentError as exc:
        logger.error("Failed to parse diffs for module %s: %s", module_key.value, exc)
        return []

    diffs: list[ClauseDiff] = []
    for item in raw_items:
        try:
            proposed = ProposedClauseDiff.model_validate(item)
        except PydanticValidationError as exc:
            logger.warning(
                "Dropping schema-invalid diff for module %s: %s",
                module_key.value,
                exc.errors(include_url=False),
            )
            continue
        diffs.append(proposed.stamp(module_key, regulation_trigger))
    return diffs


async def generate_module_diffs(
    generator: TextGenerator,
    regulation: Regulation,
    module_key: ModuleKey,
    module_payload: dict,
) -> list[ClauseDiff]:
    """Propose the minimum clause edits for one module. Empty list means no change."""
    prompt = build_diff_prompt(regulation, module_key, module_payload)
    text = await generator.generate(prompt, max_tokens=4096)
    return parse_proposed_diffs(text, module_key, regulation.ref)


def validate_diffs(module_payload: Any, diffs: list[ClauseDiff]) -> list[ClauseDiff]:
    """Keep diffs whose path resolves and whose ``before`` matches the live value.

    A mismatching ``before`` signals a stale or conflicting proposal and the
    diff is rejected. No-op diffs and repeated paths are rejected as well.
    """
    accepted: list[ClauseDiff] = []
    seen: list[str] = []
    for diff in diffs:
        try:
            current = resolve(module_payload, diff.clause_path)
        except ClausePathError as exc:
            logger.warning("Rejecting diff on %s.%s: %s", diff.module.value, diff.clause_path, exc.message)
            continue
        if as_clause_text(current) != diff.before:
            logger.warning(
                "Rejecting stale diff on %s.%s: before=%r does not match current value",
                diff.module.value,
                diff.clause_path,
                diff.before,
            )
            continue
        if diff.before == diff.after:
            continue
        if any(is_within(diff.clause_path, p) or is_within(p, diff.clause_path) for p in seen):
            logger.warning("Rejecting overlapping diff on %s.%s", diff.module.value, diff.clause_path)
            continue
        seen.append(diff.clause_path)
        accepted.append(diff)
    return accepted


# ---------------------------------------------------------------------------
# Applying diffs
# ---------------------------------------------------------------------------


class ModuleApplier(ABC):
    """Produces an updated module payload from the current payload plus its diffs."""

    name: str = "unknown"

    @abstractmethod
    async def apply(self, module_key: ModuleKey, payload: dict, diffs: list[ClauseDiff]) -> dict:
        ...


def coerce_after_value(current: Any, after: str) -> Any:
    """Decode ``after`` back to the type of the value it replaces.

    Strings stay strings; for numbers, booleans, lists and objects the text is
    decoded as JSON when it yields the same kind of value.
    """
    if isinstance(current, str):
        return after
    try:
        decoded = json.loads(after)
    except (TypeError, ValueError):
        return after
    if current is None or isinstance(decoded, type(current)):
        return decoded
    if isinstance(current, (int, float)) and not isinstance(current, bool) and isinstance(decoded, (int, float)):
        return decoded
    return after


class ClausePathApplier(ModuleApplier):
    """Deterministic applier: assigns each ``after`` at its clause path."""

    name = "path"

    async def apply(self, module_key: ModuleKey, payload: dict, diffs: list[ClauseDiff]) -> dict:
        updated = payload
        for diff in diffs:
            current = resolve(updated, diff.clause_path)
            updated = assign(updated, diff.clause_path, coerce_after_value(current, diff.after))
        return updated


class GenerativeApplier(ModuleApplier):
    """Asks the text-generation capability to rewrite the module with the diffs applied."""

    name = "generative"

    def __init__(self, generator: TextGenerator):
        self.generator = generator

    async def apply(self, module_key: ModuleKey, payload: dict, diffs: list[ClauseDiff]) -> dict:
        described = "\n---\n".join(
            f"Clause: {d.clause_path} ({d.field_label})\nBefore: {d.before}\nAfter: {d.after}\nReason: {d.reason}"
            for d in diffs
        )
        prompt = f"""You are applying compliance patches to a technical specification module.

<current_module key="{module_key.value}">
{json.dumps(payload, indent=2)}
</current_module>

<diffs_to_apply>
{described}
</diffs_to_apply>

Apply ONLY the changes described in the diffs. Do not change anything else.
Preserve all existing structure, formatting, and content that is not in the diffs.
Return ONLY the updated module as valid JSON with the exact same schema."""
        text = await self.generator.generate(prompt, max_tokens=8192)
        return parse_json_object(text)


def _comparable(text: str) -> str:
    try:
        return as_clause_text(json.loads(text))
    except (TypeError, ValueError):
        return text


class ApplyVerificationError(ValueError):
    """An applied module deviates from its input outside the patched clause paths."""


def verify_applied_module(original: dict, updated: dict, diffs: list[ClauseDiff]) -> None:
    """Check the post-condition of an apply.

    Every changed leaf must sit under one of the diff paths, and every diff
    path must now hold its ``after`` value.
    """
    patched = [d.clause_path for d in diffs]
    unexpected = sorted(p for p in changed_paths(original, updated) if not any(is_within(p, c) for c in patched))
    if unexpected:
        raise ApplyVerificationError(f"unexpected changes at {unexpected[:5]}")
    for diff in diffs:
        try:
            value = resolve(updated, diff.clause_path)
        except ClausePathError as exc:
            raise ApplyVerificationError(exc.message) from exc
        if _comparable(as_clause_text(value)) != _comparable(diff.after):
            raise ApplyVerificationError(f"{diff.clause_path} does not hold the patched value")


@dataclass
class ApplyOutcome:
    modules: dict[str, dict | None]
    failed_modules: list[ModuleKey] = field(default_factory=list)


async def apply_diffs_to_spec(
    modules: dict[str, dict | None],
    diffs: list[ClauseDiff],
    applier: ModuleApplier,
) -> ApplyOutcome:
    """Apply diffs module by module.

    A module whose apply raises or fails verification keeps its original
    content and is reported in ``failed_modules``; other modules are unaffected.
    Modules without diffs are carried over unchanged.
    """
    by_module: dict[ModuleKey, list[ClauseDiff]] = defaultdict(list)
    for diff in diffs:
        by_module[diff.module].append(diff)

    updated = dict(modules)
    failed: list[ModuleKey] = []

    for module_key, module_diffs in by_module.items():
        current = modules.get(module_key.value)
        if not current:
            failed.append(module_key)
            continue
        try:
            result = await applier.apply(module_key, current, module_diffs)
            verify_applied_module(current, result, module_diffs)
        except (GeneratedContentError, ApplyVerificationError, ClausePathError) as exc:
            logger.error(
                "Failed to apply %d diff(s) to module %s with %s applier; keeping original: %s",
                len(module_diffs),
                module_key.value,
                applier.name,
                exc,
            )
            failed.append(module_key)
            continue
        updated[module_key.value] = result

    return ApplyOutcome(modules=updated, failed_modules=failed)


def build_applier(mode: str, generator: TextGenerator) -> ModuleApplier:
    """Applier for ``settings.diff_apply_mode``."""
    if mode == ClausePathApplier.name:
        return ClausePathApplier()
    if mode == GenerativeApplier.name:
        return GenerativeApplier(generator)
    raise ValueError(f"unknown diff_apply_mode {mode!r} (expected 'path' or 'generative')")
