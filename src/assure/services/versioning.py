"""Version label arithmetic."""

import re

_SEMVER_RE = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)$")


def bump_minor_version(current: str | None) -> str:
    """``v1.2.3`` -> ``v1.3.0``.

    Labels that are not ``vMAJOR.MINOR.PATCH`` get a synthetic ``.1`` suffix
    rather than failing the patch.
    """
    label = (current or "v1.0.0").strip()
    match = _SEMVER_RE.match(label)
    if not match:
        return f"{label}.1"
    major, minor, _ = match.groups()
    return f"v{major}.{int(minor) + 1}.0"
