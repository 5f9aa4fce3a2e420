"""Kubernetes (orchestration layer) upgrades driven through talosctl."""

from dataclasses import dataclass

from ..errors import CommandError, InvalidVersionFormat, UpgradeFailed, describe
from ..talos.client import TalosClient
from ..utils.logger import get_logger
from ..version.compare import Version, is_compatible, parse_version

logger = get_logger(__name__)


@dataclass(frozen=True)
class UpgradePath:
    """A validated from/to pair for a Kubernetes upgrade."""

    current: Version
    target: Version

    @classmethod
    def create(cls, current: str, target: str) -> "UpgradePath":
        try:
            path = cls(parse_version(current), parse_version(target))
        except InvalidVersionFormat as e:
            raise UpgradeFailed(f"failed to create upgrade path from {current} to {target}: {e}")
        if path.target < path.current:
            raise UpgradeFailed(f"refusing to downgrade Kubernetes from {current} to {target}")
        return path

    @property
    def is_noop(self) -> bool:
        return self.current == self.target

    @property
    def crosses_minor(self) -> bool:
        return not is_compatible(self.current, self.target)

    @property
    def from_version(self) -> str:
        return f"{self.current.major}.{self.current.minor}.{self.current.patch}"

    @property
    def to_version(self) -> str:
        return f"{self.target.major}.{self.target.minor}.{self.target.patch}"


class KubernetesUpgrader:
    """Upgrades Kubernetes components through a node's Talos API."""

    def __init__(self, client: TalosClient, upgrade_kubelet: bool = True, pre_pull_images: bool = False):
        self.client = client
        self.upgrade_kubelet = upgrade_kubelet
        self.pre_pull_images = pre_pull_images

    def _build_args(self, path: UpgradePath, endpoint: str) -> list:
        args = [
            "upgrade-k8s",
            "--from",
            path.from_version,
            "--to",
            path.to_version,
            "--endpoint",
            endpoint,
            f"--upgrade-kubelet={str(self.upgrade_kubelet).lower()}",
            f"--pre-pull-images={str(self.pre_pull_images).lower()}",
        ]
        return args

    async def upgrade(self, endpoint: str, current_version: str, target_version: str) -> None:
        path = UpgradePath.create(current_version, target_version)
        if path.is_noop:
            logger.info(f"Kubernetes on {endpoint} already at {target_version}")
            return

        if path.crosses_minor:
            logger.info(f"Kubernetes upgrade {current_version} -> {target_version} crosses a minor version")
        logger.info(f"Upgrading Kubernetes via {endpoint} from {current_version} to {target_version}")

        try:
            await self.client.execute(self._build_args(path, endpoint), node=endpoint)
        except CommandError as e:
            raise UpgradeFailed(
                f"failed to upgrade Kubernetes on node {endpoint} from {current_version} to {target_version}: "
                f"{describe(e)}"
            )

        logger.info(f"Kubernetes upgrade completed via {endpoint}: {current_version} -> {target_version}")
