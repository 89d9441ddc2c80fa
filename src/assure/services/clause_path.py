"""Clause-path addressing into module payloads.

A clause path such as ``encryptionControls[0].algorithm`` names one field or
array element inside a module document (a tree of dicts, lists and scalars).
"""

from __future__ import annotations

import copy
import json
import re
from typing import Any

from assure.errors.exceptions import ClausePathError

PathSegment = str | int

_TOKEN_RE = re.compile(r"\[(\d+)\]|\.?([^.\[\]]+)")


def parse_clause_path(path: str) -> list[PathSegment]:
    """Parse ``"a.b[0].c"`` into ``["a", "b", 0, "c"]``."""
    if not path or not path.strip():
        raise ClausePathError(path, "empty path")
    path = path.strip()
    segments: list[PathSegment] = []
    pos = 0
    while pos < len(path):
        match = _TOKEN_RE.match(path, pos)
        if not match or match.end() == pos:
            raise ClausePathError(path, f"unexpected character at offset {pos}")
        index, key = match.groups()
        if index is not None:
            segments.append(int(index))
        else:
            if match.group(0).startswith(".") and not segments:
                raise ClausePathError(path, "path cannot start with '.'")
            segments.append(key)
        pos = match.end()
    if path.endswith("."):
        raise ClausePathError(path, "path cannot end with '.'")
    return segments


def format_clause_path(segments: list[PathSegment]) -> str:
    parts: list[str] = []
    for segment in segments:
        if isinstance(segment, int):
            parts.append(f"[{segment}]")
        elif parts:
            parts.append(f".{segment}")
        else:
            parts.append(segment)
    return "".join(parts)


def _step(node: Any, segment: PathSegment, path: str) -> Any:
    if isinstance(segment, int):
        if not isinstance(node, list):
            raise ClausePathError(path, f"index [{segment}] applied to a non-array")
        if segment >= len(node):
            raise ClausePathError(path, f"index [{segment}] out of range")
        return node[segment]
    if not isinstance(node, dict):
        raise ClausePathError(path, f"field '{segment}' applied to a non-object")
    if segment not in node:
        raise ClausePathError(path, f"field '{segment}' does not exist")
    return node[segment]


def resolve(document: Any, path: str) -> Any:
    """Return the value addressed by ``path`` or raise ClausePathError."""
    node = document
    for segment in parse_clause_path(path):
        node = _step(node, segment, path)
    return node


def assign(document: Any, path: str, value: Any) -> Any:
    """Return a deep copy of ``document`` with the addressed field replaced.

    The field must already exist: patches edit clauses, they never invent them.
    """
    segments = parse_clause_path(path)
    updated = copy.deepcopy(document)
    parent = updated
    for segment in segments[:-1]:
        parent = _step(parent, segment, path)
    _step(parent, segments[-1], path)
    parent[segments[-1]] = value
    return updated


def leaf_paths(document: Any, prefix: list[PathSegment] | None = None) -> dict[str, Any]:
    """Flatten a document into ``{clause_path: scalar}``.

    Empty containers are reported as leaves so that removing all items of a
    list still shows up as a change.
    """
    prefix = prefix or []
    leaves: dict[str, Any] = {}
    if isinstance(document, dict) and document:
        for key, child in document.items():
            leaves.update(leaf_paths(child, prefix + [str(key)]))
    elif isinstance(document, list) and document:
        for index, child in enumerate(document):
            leaves.update(leaf_paths(child, prefix + [index]))
    elif prefix:
        leaves[format_clause_path(prefix)] = document
    return leaves


def changed_paths(before: Any, after: Any) -> set[str]:
    """Leaf paths whose value differs between two documents (added and removed included)."""
    old = leaf_paths(before)
    new = leaf_paths(after)
    return {p for p in old.keys() | new.keys() if old.get(p, _MISSING) != new.get(p, _MISSING)}


def is_within(path: str, clause_path: str) -> bool:
    """True when ``path`` is ``clause_path`` itself or nested beneath it."""
    if path == clause_path:
        return True
    return path.startswith(clause_path + ".") or path.startswith(clause_path + "[")


def as_clause_text(value: Any) -> str:
    """Serialize a clause value for audit rows and before-value comparison."""
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, ensure_ascii=False)


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


_MISSING = _Missing()
