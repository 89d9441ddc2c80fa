"""Pydantic models for spec versions, clause diffs and patch results."""

from datetime import datetime
from typing import Any

from pydantic import Field, field_validator

from assure.models.common import CamelModel
from assure.models.enums import ModuleKey, Severity, SpecStatus, TriggeredBy
from assure.services.clause_path import as_clause_text


class ClauseDiff(CamelModel):
    """One clause-level edit between two adjacent versions."""

    module: ModuleKey
    clause_path: str = Field(..., min_length=1)
    field_label: str = ""
    before: str
    after: str
    reason: str = ""
    regulation_trigger: str | None = None
    severity: Severity


class ProposedClauseDiff(CamelModel):
    """One item of the diff array returned by the text-generation capability.

    Values may come back as numbers, lists or objects; they are normalised to
    their clause text so they compare against the live payload.
    """

    clause_path: str = Field(..., min_length=1)
    field_label: str = ""
    before: str
    after: str
    reason: str = ""
    severity: Severity

    @field_validator("before", "after", mode="before")
    @classmethod
    def _serialize_value(cls, value: Any) -> str:
        return as_clause_text(value)

    @field_validator("severity", mode="before")
    @classmethod
    def _lower_severity(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    def stamp(self, module: ModuleKey, regulation_trigger: str) -> ClauseDiff:
        return ClauseDiff(
            module=module,
            regulation_trigger=regulation_trigger,
            **self.model_dump(),
        )


class SpecModules(CamelModel):
    master_specification: dict[str, Any] | None = None
    security_blueprint: dict[str, Any] | None = None
    cost_analysis: dict[str, Any] | None = None
    tech_stack_justification: dict[str, Any] | None = None
    code_scaffolding: dict[str, Any] | None = None


class SpecVersionModel(CamelModel):
    """API representation of one immutable spec snapshot."""

    id: str
    workspace_id: str
    lineage_id: str
    parent_id: str | None = None
    version_number: int
    version_label: str
    status: SpecStatus
    change_reason: str | None = None
    triggered_by: TriggeredBy
    regulation_trigger: str | None = None
    frameworks: list[str]
    jurisdictions: list[str]
    modules: SpecModules
    created_by: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row) -> "SpecVersionModel":
        return cls(
            id=row.id,
            workspace_id=row.workspace_id,
            lineage_id=row.lineage_id,
            parent_id=row.parent_id,
            version_number=row.version_number,
            version_label=row.version_label,
            status=row.status,
            change_reason=row.change_reason,
            triggered_by=row.triggered_by,
            regulation_trigger=row.regulation_trigger,
            frameworks=row.frameworks or [],
            jurisdictions=row.jurisdictions or [],
            modules=SpecModules(**row.module_payloads()),
            created_by=row.created_by,
            created_at=row.created_at,
        )


class CreateSpecRequest(CamelModel):
    """Registration of version 1 by the draft-generation collaborator."""

    workspace_id: str = Field(..., min_length=1)
    version_label: str = "v1.0.0"
    status: SpecStatus = SpecStatus.ACTIVE
    change_reason: str | None = "Initial draft"
    triggered_by: TriggeredBy = TriggeredBy.USER
    frameworks: list[str] = Field(default_factory=list)
    jurisdictions: list[str] = Field(default_factory=list)
    modules: SpecModules
    created_by: str | None = None

    @field_validator("status")
    @classmethod
    def _initial_status(cls, value: SpecStatus) -> SpecStatus:
        if value not in (SpecStatus.ACTIVE, SpecStatus.DRAFT):
            raise ValueError("version 1 must be created as 'active' or 'draft'")
        return value


class AffectedSpec(CamelModel):
    """A spec retained by the impact analyzer for one regulation."""

    spec_id: str
    workspace_id: str
    lineage_id: str
    version_number: int
    frameworks: list[str]
    jurisdictions: list[str]
    semantic_score: float


class PatchResult(CamelModel):
    """Outcome of one patch orchestration."""

    spec_version_id: str
    new_version_id: str | None = None
    new_version_number: int | None = None
    version_label: str | None = None
    diffs: list[ClauseDiff] = Field(default_factory=list)
    affected_modules: list[ModuleKey] = Field(default_factory=list)
    regulation_trigger: str
    status: str
    apply_failures: list[ModuleKey] = Field(default_factory=list)
    patched_at: datetime
