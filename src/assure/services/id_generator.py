"""ID generation utilities."""

import uuid


def generate_id(prefix: str = "") -> str:
    """Generate an opaque unique ID, optionally prefixed.

    Args:
        prefix: The prefix (e.g., "job_", "impact_", "evt_"). Spec versions use
            bare UUIDs so downstream collaborators can treat them as UUIDs.

    Returns:
        A string like "job_a1b2c3d4e5f6a7b8" or a UUID4 string.
    """
    if not prefix:
        return str(uuid.uuid4())
    return f"{prefix}{uuid.uuid4().hex[:16]}"
