"""Exception hierarchy for the spec patching pipeline."""


class AssureError(Exception):
    """Base exception for Assure."""

    def __init__(self, code: str, message: str, details=None, status_code: int = 500):
        self.code = code
        self.message = message
        self.details = details
        self.status_code = status_code
        super().__init__(message)


class ValidationError(AssureError):
    """Request or payload validation failure."""

    def __init__(self, message: str, details=None):
        super().__init__("VALIDATION_ERROR", message, details, status_code=400)


class NotFoundError(AssureError):
    """Referenced spec, job or regulation does not exist. Never retried."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            "NOT_FOUND",
            f"{resource} '{resource_id}' not found",
            details={"resource": resource, "resource_id": resource_id},
            status_code=404,
        )


class ConflictError(AssureError):
    """Resource state conflict."""

    def __init__(self, message: str, details=None):
        super().__init__("CONFLICT", message, details, status_code=409)


class VersionConflictError(ConflictError):
    """The version a job meant to supersede is no longer the active one."""

    def __init__(self, spec_version_id: str, lineage_id: str | None = None):
        super().__init__(
            f"Spec version '{spec_version_id}' is no longer active",
            details={"spec_version_id": spec_version_id, "lineage_id": lineage_id},
        )
        self.code = "VERSION_CONFLICT"


class TransientError(AssureError):
    """Timeout or connection failure against a capability or storage layer."""

    def __init__(self, message: str, details=None):
        super().__init__("TRANSIENT_ERROR", message, details, status_code=503)


class ClausePathError(AssureError):
    """A clause path is malformed or does not address a field in the module."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            "CLAUSE_PATH_ERROR",
            f"Clause path '{path}': {reason}",
            details={"clause_path": path},
            status_code=422,
        )
        self.path = path


def is_retryable(exc: BaseException) -> bool:
    """Queue retry policy: everything except not-found and bad input is retried."""
    return not isinstance(exc, (NotFoundError, ValidationError))
