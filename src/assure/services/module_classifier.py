"""Module-impact classifier: which of the five spec modules a regulation touches."""

import logging

from assure.llm.base import TextGenerator
from assure.llm.parsing import GeneratedContentError, parse_json_array
from assure.models.enums import ModuleKey
from assure.models.regulation import Regulation
from assure.services.spec_summary import build_spec_summary

logger = logging.getLogger(__name__)

# Used when the classifier output cannot be parsed. A missed module is
# preferred over blocking every compliance update.
FALLBACK_MODULES: frozenset[ModuleKey] = frozenset(
    {ModuleKey.MASTER_SPECIFICATION, ModuleKey.SECURITY_BLUEPRINT}
)

_MODULE_DESCRIPTIONS = """\
- master_specification: Project overview, features, data flows, NFRs
- security_blueprint: Threat model, encryption, IAM, audit logging, incident response
- cost_analysis: Infrastructure costs, compliance premium
- tech_stack_justification: Technology decisions, vendor risk
- code_scaffolding: Dockerfile, CI pipeline, env template"""


def build_classifier_prompt(regulation: Regulation, spec_summary: str) -> str:
    return f"""You are a compliance analyst. Given a new regulation and a technical spec summary,
identify which spec modules are affected.

<regulation>
Framework: {regulation.framework}
Article: {regulation.article}
Content: {regulation.content}
</regulation>

<spec_summary>
{spec_summary}
</spec_summary>

The 5 modules are:
{_MODULE_DESCRIPTIONS}

Respond with ONLY a JSON array of affected module keys. Example: ["security_blueprint", "code_scaffolding"]
Only include modules genuinely affected by this specific regulation."""


def parse_module_keys(text: str) -> set[ModuleKey]:
    """Parse classifier output; unknown keys are dropped, unparsable output falls back."""
    try:
        raw = parse_json_array(text)
    except GeneratedContentError as exc:
        logger.warning("Module classifier output unparsable (%s); using fallback modules", exc)
        return set(FALLBACK_MODULES)

    valid = {m.value for m in ModuleKey}
    keys = {ModuleKey(k) for k in raw if isinstance(k, str) and k in valid}
    dropped = [k for k in raw if not (isinstance(k, str) and k in valid)]
    if dropped:
        logger.debug("Dropped unknown module keys from classifier output: %s", dropped)
    return keys


async def detect_affected_modules(
    generator: TextGenerator,
    regulation: Regulation,
    modules: dict[str, dict | None],
) -> set[ModuleKey]:
    """Ask the text-generation capability which modules the regulation affects.

    Transport failures propagate (TransientError) so the job is retried; only
    malformed output degrades to the fallback set.
    """
    prompt = build_classifier_prompt(regulation, build_spec_summary(modules))
    text = await generator.generate(prompt, max_tokens=500)
    return parse_module_keys(text)
