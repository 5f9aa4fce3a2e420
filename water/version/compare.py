"""Semantic version parsing and ordering."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from ..errors import InvalidVersionFormat
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ComparisonResult(Enum):
    """Result of comparing a version against another."""

    OLDER = -1
    EQUAL = 0
    NEWER = 1

    def __str__(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class Version:
    """A parsed ``major.minor.patch`` version.

    The pre-release suffix is kept for display only and never affects
    ordering or equality.
    """

    major: int
    minor: int
    patch: int
    suffix: Optional[str] = None

    @property
    def parts(self) -> tuple:
        return (self.major, self.minor, self.patch)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.parts == other.parts

    def __hash__(self) -> int:
        return hash(self.parts)

    def __lt__(self, other: "Version") -> bool:
        return self.parts < other.parts

    def __le__(self, other: "Version") -> bool:
        return self.parts <= other.parts

    def __gt__(self, other: "Version") -> bool:
        return self.parts > other.parts

    def __ge__(self, other: "Version") -> bool:
        return self.parts >= other.parts

    def __str__(self) -> str:
        text = f"v{self.major}.{self.minor}.{self.patch}"
        if self.suffix:
            text += f"-{self.suffix}"
        return text


VersionLike = Union[str, Version]


def parse_version(version: VersionLike) -> Version:
    """Parse ``[v]major.minor.patch[-suffix]`` into a Version."""
    if isinstance(version, Version):
        return version
    if not isinstance(version, str) or not version:
        raise InvalidVersionFormat(str(version), "version cannot be empty")

    text = version[1:] if version.startswith("v") else version
    # The pre-release suffix hangs off the patch component
    core, _, suffix = text.partition("-")
    parts = core.split(".")
    if len(parts) != 3:
        raise InvalidVersionFormat(version, "expected major.minor.patch")

    numbers = []
    for part in parts:
        if not (part.isascii() and part.isdigit()):
            raise InvalidVersionFormat(version, f"invalid version part '{part}'")
        numbers.append(int(part))

    return Version(numbers[0], numbers[1], numbers[2], suffix or None)


def validate_version(version: str) -> None:
    """Raise InvalidVersionFormat unless ``version`` parses."""
    parse_version(version)


def compare(version1: VersionLike, version2: VersionLike) -> ComparisonResult:
    """Compare ``version1`` against ``version2``.

    Returns NEWER when ``version1`` is ahead, OLDER when it is behind.
    """
    first = parse_version(version1)
    second = parse_version(version2)

    for a, b in zip(first.parts, second.parts):
        if a > b:
            result = ComparisonResult.NEWER
            break
        if a < b:
            result = ComparisonResult.OLDER
            break
    else:
        result = ComparisonResult.EQUAL

    logger.debug(f"Compared {version1} with {version2}: {result}")
    return result


def needs_upgrade(current: VersionLike, target: VersionLike, subject: str = "Current version") -> bool:
    """True only when ``current`` is strictly older than ``target``.

    A newer current version is reported as not needing an upgrade and
    logged as a warning; downgrades are never performed.
    """
    result = compare(current, target)
    if result is ComparisonResult.NEWER:
        logger.warning(f"{subject} {current} is newer than target {target}; downgrades are not performed")
    needed = result is ComparisonResult.OLDER
    logger.debug(f"Upgrade check {current} -> {target}: needs_upgrade={needed} ({result})")
    return needed


def major_minor(version: VersionLike) -> str:
    """Format a version as ``v{major}.{minor}``."""
    parsed = parse_version(version)
    return f"v{parsed.major}.{parsed.minor}"


def is_compatible(version1: VersionLike, version2: VersionLike) -> bool:
    """Two versions are compatible when major and minor match."""
    return major_minor(version1) == major_minor(version2)
