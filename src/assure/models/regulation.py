"""Pydantic models for regulations and regulation-arrival events."""

import hashlib
from typing import Any

from pydantic import Field, model_validator

from assure.models.common import CamelModel
from assure.models.enums import Severity


class Regulation(CamelModel):
    """A new or amended regulation as emitted by the regulation source."""

    id: str | None = None
    framework: str = Field(..., min_length=1)
    article: str = Field(..., min_length=1)
    title: str = ""
    content: str = ""
    jurisdiction: str = Field(..., min_length=1)
    severity: Severity = Severity.MEDIUM
    tags: list[str] = Field(default_factory=list)

    @property
    def ref(self) -> str:
        """Human reference used in change reasons and audit rows, e.g. 'GDPR Article 32'."""
        return f"{self.framework} {self.article}"

    def content_hash(self) -> str:
        digest = hashlib.sha256()
        for part in (self.framework, self.article, self.jurisdiction, self.content):
            digest.update(part.encode("utf-8"))
            digest.update(b"\x00")
        return digest.hexdigest()


class RegulationEvent(CamelModel):
    """Message on regulation.new / regulation.updated.

    Accepts either the nested ``{"regulation": {...}}`` shape or a bare
    regulation object.
    """

    event_id: str | None = None
    event_type: str | None = None
    regulation: Regulation

    @model_validator(mode="before")
    @classmethod
    def _wrap_bare_regulation(cls, data: Any) -> Any:
        if isinstance(data, dict) and "regulation" not in data and "framework" in data:
            meta = {k: data[k] for k in ("eventId", "eventType", "_meta") if k in data}
            body = {k: v for k, v in data.items() if k not in meta}
            return {**meta, "regulation": body}
        return data
