"""Text summaries of spec modules used for prompts and embeddings."""

import json


def _text(value) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _items(value) -> list:
    return value if isinstance(value, list) else []


def extract_master_spec_text(master_spec: dict | None) -> str:
    """Searchable text of a master specification for semantic scoring.

    Generated documents are not trusted to be well typed: numbers are
    rendered and any other non-string value is skipped.
    """
    if not isinstance(master_spec, dict):
        return ""

    parts: list[str] = [
        _text(master_spec.get("projectName")),
        _text(master_spec.get("projectSummary")),
        _text(master_spec.get("problemStatement")),
    ]
    for feature in _items(master_spec.get("coreFeatures")):
        if isinstance(feature, dict) and (feature.get("name") or feature.get("description")):
            parts.append(f"{_text(feature.get('name'))}: {_text(feature.get('description'))}")
    for flow in _items(master_spec.get("dataFlows")):
        if isinstance(flow, dict) and _text(flow.get("dataType")):
            parts.append(f"{_text(flow.get('from'))} -> {_text(flow.get('to'))}: {_text(flow['dataType'])}")
    for nfr in _items(master_spec.get("nonFunctionalRequirements")):
        if isinstance(nfr, dict):
            parts.append(_text(nfr.get("requirement")))

    return "\n".join(p for p in parts if p)


def build_spec_summary(modules: dict[str, dict | None]) -> str:
    """Compact spec summary for the module classifier prompt.

    Deliberately small: project name, chosen technologies and encryption
    mechanisms, never the full payloads.
    """
    master = modules.get("master_specification") or {}
    tech = modules.get("tech_stack_justification") or {}
    security = modules.get("security_blueprint") or {}

    chosen = [d.get("chosen") for d in tech.get("decisions") or [] if isinstance(d, dict)]
    mechanisms = [
        e.get("mechanism") for e in security.get("encryptionControls") or [] if isinstance(e, dict)
    ]

    return "\n".join([
        f"Project: {master.get('projectName') or 'Unknown'}",
        f"Tech Stack: {json.dumps([c for c in chosen if c])}",
        f"Security Controls: {json.dumps([m for m in mechanisms if m])}",
    ])
