"""Exception types raised by water."""

from typing import List, Optional


class WaterError(Exception):
    """Base exception for all water errors."""


class ConfigError(WaterError):
    """Raised when the configuration file is missing or invalid."""


class CommandError(WaterError):
    """Raised when an external command (kubectl, talosctl) fails."""

    def __init__(self, command: List[str], stderr: str = "", returncode: Optional[int] = None):
        self.command = command
        self.stderr = stderr.strip()
        self.returncode = returncode
        super().__init__(f"Command failed ({' '.join(command)}): {self.stderr or returncode}")


class InvalidVersionFormat(WaterError):
    """Raised when a version string is not [v]major.minor.patch[-suffix]."""

    def __init__(self, version: str, reason: str = ""):
        self.version = version
        message = f"invalid version format '{version}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ClusterUnavailable(WaterError):
    """Raised when cluster state cannot be read."""


class ReleaseIndexUnavailable(WaterError):
    """Raised when the release index cannot be reached."""


class NoStableVersions(WaterError):
    """Raised when the release index returns no stable versions."""


class NotYetReleased(WaterError):
    """Raised when a target version is absent from the release index."""

    def __init__(self, layer: str, version: str, available: List[str]):
        self.layer = layer
        self.version = version
        self.available = list(available)
        super().__init__(
            f"{layer.title()} version {version} is not yet released. "
            f"Available versions: {', '.join(self.available) or 'none'}"
        )


class NodeNotFound(WaterError):
    """Raised when a planned node is absent from the current snapshot."""

    def __init__(self, node_name: str):
        self.node_name = node_name
        super().__init__(f"node {node_name} not found in cluster info")


class UpgradeInitiationFailed(WaterError):
    """Raised when the host-layer upgrade could not be started on a node."""


class UpgradeFailed(WaterError):
    """Raised when the orchestration-layer upgrade failed on a node."""


class UpgradeTimeout(WaterError):
    """Raised when a health wait or progress monitor runs out of time."""

    def __init__(self, message: str, outstanding: Optional[List[str]] = None):
        self.outstanding = list(outstanding or [])
        super().__init__(message)


class PrerequisitesNotMet(WaterError):
    """Raised when the cluster is not in a state that allows upgrading."""


def describe(error: BaseException) -> str:
    """Message for an exception, falling back to its type for blank ones."""
    return str(error) or error.__class__.__name__
