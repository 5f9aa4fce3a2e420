"""Upgrade configuration loading and validation."""

from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from ..errors import ConfigError
from ..utils.logger import get_logger

logger = get_logger(__name__)

CONFIG_NAME = "water"
CONFIG_EXTENSIONS = (".yaml", ".yml")
MANDATORY_FIELDS = ("talos.version", "talos.imageId", "k8s.version")


class UpgradeOrder(str, Enum):
    """Order in which role groups are upgraded."""

    CONTROL_PLANE_FIRST = "control-plane-first"
    WORKERS_FIRST = "workers-first"


class UpgradeTimings(BaseModel):
    """Fixed delays and timeouts, in seconds."""

    inter_node_delay: float = Field(30.0, alias="interNodeDelay", ge=0)
    talos_group_stabilization: float = Field(120.0, alias="talosGroupStabilization", ge=0)
    k8s_group_stabilization: float = Field(60.0, alias="k8sGroupStabilization", ge=0)
    layer_stabilization: float = Field(120.0, alias="layerStabilization", ge=0)
    node_upgrade_timeout: float = Field(600.0, alias="nodeUpgradeTimeout", gt=0)
    reboot_timeout: float = Field(480.0, alias="rebootTimeout", gt=0)
    reboot_settle_delay: float = Field(30.0, alias="rebootSettleDelay", ge=0)
    reboot_probe_interval: float = Field(15.0, alias="rebootProbeInterval", gt=0)
    node_ready_timeout: float = Field(300.0, alias="nodeReadyTimeout", gt=0)
    monitor_interval: float = Field(30.0, alias="monitorInterval", gt=0)
    monitor_timeout: float = Field(600.0, alias="monitorTimeout", gt=0)
    snapshot_timeout: float = Field(30.0, alias="snapshotTimeout", gt=0)
    release_fetch_timeout: float = Field(30.0, alias="releaseFetchTimeout", gt=0)
    retry_attempts: int = Field(3, alias="retryAttempts", ge=1)
    retry_delay: float = Field(2.0, alias="retryDelay", ge=0)

    class Config:
        populate_by_name = True


class TalosConfig(BaseModel):
    """Host layer settings."""

    version: str
    image_id: str = Field(alias="imageId")
    upgrade_order: UpgradeOrder = Field(UpgradeOrder.CONTROL_PLANE_FIRST, alias="upgradeOrder")

    class Config:
        populate_by_name = True
        frozen = True

    @property
    def image_ref(self) -> str:
        """Full installer image reference for the target version."""
        return f"{self.image_id}:{self.version}"


class K8sConfig(BaseModel):
    """Orchestration layer settings."""

    version: str
    upgrade_order: UpgradeOrder = Field(UpgradeOrder.CONTROL_PLANE_FIRST, alias="upgradeOrder")

    class Config:
        populate_by_name = True
        frozen = True


class UpgradeConfig(BaseModel):
    """Complete upgrade configuration."""

    talos: TalosConfig
    k8s: K8sConfig
    timings: UpgradeTimings = Field(default_factory=UpgradeTimings)

    class Config:
        frozen = True

    def with_orders(
        self,
        talos_order: Optional[Union[str, UpgradeOrder]] = None,
        k8s_order: Optional[Union[str, UpgradeOrder]] = None,
    ) -> "UpgradeConfig":
        """Return a copy with command-line order overrides applied."""
        talos = self.talos
        k8s = self.k8s
        if talos_order:
            talos = talos.copy(update={"upgrade_order": parse_upgrade_order(talos_order, "talos-upgrade-order")})
            logger.info(f"Overriding Talos upgrade order from command line: {talos.upgrade_order.value}")
        if k8s_order:
            k8s = k8s.copy(update={"upgrade_order": parse_upgrade_order(k8s_order, "k8s-upgrade-order")})
            logger.info(f"Overriding Kubernetes upgrade order from command line: {k8s.upgrade_order.value}")
        return self.copy(update={"talos": talos, "k8s": k8s})


def parse_upgrade_order(value: Union[str, UpgradeOrder], field_name: str = "upgradeOrder") -> UpgradeOrder:
    """Validate an upgrade order string."""
    try:
        return UpgradeOrder(value)
    except ValueError:
        allowed = " or ".join(f"'{order.value}'" for order in UpgradeOrder)
        raise ConfigError(f"invalid {field_name} '{value}': must be {allowed}")


def default_config_paths() -> List[Path]:
    """Locations searched when no config path is given."""
    directories = [Path.cwd(), Path.home() / ".water", Path("/etc/water")]
    return [directory / f"{CONFIG_NAME}{ext}" for directory in directories for ext in CONFIG_EXTENSIONS]


def find_config_file(config_path: Optional[Union[str, Path]] = None) -> Path:
    """Resolve the configuration file to load."""
    if config_path:
        path = Path(config_path).expanduser()
        if not path.is_file():
            raise ConfigError(f"failed to read config file: {path} does not exist")
        return path

    for candidate in default_config_paths():
        if candidate.is_file():
            return candidate

    searched = ", ".join(str(p) for p in default_config_paths())
    raise ConfigError(f"failed to read config file: no {CONFIG_NAME}.yaml found (searched {searched})")


def _lookup(data: dict, dotted: str):
    current = data
    for key in dotted.split("."):
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def parse_config(data: dict) -> UpgradeConfig:
    """Validate raw configuration data."""
    if not isinstance(data, dict):
        raise ConfigError("configuration must be a mapping")

    for field_name in MANDATORY_FIELDS:
        value = _lookup(data, field_name)
        if value is None or str(value).strip() == "":
            raise ConfigError(f"required field '{field_name}' is missing or empty")

    for layer, example in (("talos", "v1.10.5"), ("k8s", "v1.33.3")):
        if not str(data[layer]["version"]).startswith("v"):
            raise ConfigError(f"{layer}.version should start with 'v' (e.g., {example})")

    for layer in ("talos", "k8s"):
        order = data[layer].get("upgradeOrder")
        if order in (None, ""):
            data[layer].pop("upgradeOrder", None)
        else:
            parse_upgrade_order(order, f"{layer}.upgradeOrder")

    try:
        config = UpgradeConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"failed to parse config: {e}")

    logger.info(
        f"Configuration loaded: talos={config.talos.version} "
        f"(image {config.talos.image_id}, order {config.talos.upgrade_order.value}), "
        f"k8s={config.k8s.version} (order {config.k8s.upgrade_order.value})"
    )
    return config


def load_config(config_path: Optional[Union[str, Path]] = None) -> UpgradeConfig:
    """Load and validate the YAML configuration file."""
    path = find_config_file(config_path)
    logger.info(f"Loading configuration file: {path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"failed to read config file {path}: {e}")

    return parse_config(data)
