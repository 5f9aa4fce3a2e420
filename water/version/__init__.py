"""Version comparison and release availability checks."""

from .compare import (
    ComparisonResult,
    Version,
    compare,
    is_compatible,
    major_minor,
    needs_upgrade,
    parse_version,
    validate_version,
)
from .releases import ReleaseIndex, ReleaseType, get_release_config

__all__ = [
    "ComparisonResult",
    "Version",
    "compare",
    "is_compatible",
    "major_minor",
    "needs_upgrade",
    "parse_version",
    "validate_version",
    "ReleaseIndex",
    "ReleaseType",
    "get_release_config",
]
