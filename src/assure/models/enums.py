"""String enums shared by the ORM layer, services and API."""

from enum import StrEnum


class SpecStatus(StrEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    ARCHIVED = "archived"


class TriggeredBy(StrEnum):
    USER = "user"
    REGULATION_UPDATE = "regulation_update"
    SCAN = "scan"


class ModuleKey(StrEnum):
    MASTER_SPECIFICATION = "master_specification"
    SECURITY_BLUEPRINT = "security_blueprint"
    COST_ANALYSIS = "cost_analysis"
    TECH_STACK_JUSTIFICATION = "tech_stack_justification"
    CODE_SCAFFOLDING = "code_scaffolding"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ImpactStatus(StrEnum):
    PENDING = "pending"
    PATCHED = "patched"
    NO_CHANGE = "no_change"
    FAILED = "failed"
    PR_CREATED = "pr_created"


class JobStatus(StrEnum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobType(StrEnum):
    SPEC_PATCH = "spec_patch"
    PR_REQUEST = "pr_request"


class PatchState(StrEnum):
    """Patch orchestrator states, in pipeline order."""

    LOADED = "LOADED"
    MODULES_DETECTED = "MODULES_DETECTED"
    DIFFS_GENERATED = "DIFFS_GENERATED"
    VERSION_CREATED = "VERSION_CREATED"
    AUDIT_WRITTEN = "AUDIT_WRITTEN"
    EVENTS_PUBLISHED = "EVENTS_PUBLISHED"
    DONE = "DONE"
    FAILED = "FAILED"


PATCH_STATE_ORDER: list[PatchState] = [
    PatchState.LOADED,
    PatchState.MODULES_DETECTED,
    PatchState.DIFFS_GENERATED,
    PatchState.VERSION_CREATED,
    PatchState.AUDIT_WRITTEN,
    PatchState.EVENTS_PUBLISHED,
    PatchState.DONE,
]
