"""Upgrade orchestration for Talos and Kubernetes."""

import asyncio
import time
from datetime import timedelta
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ..errors import InvalidVersionFormat, NodeNotFound, PrerequisitesNotMet, WaterError, describe
from ..k8s.endpoints import EndpointCache
from ..model.cluster import ClusterSnapshot, NodeInfo, NodeRole
from ..model.config import UpgradeConfig, UpgradeOrder
from ..model.result import CheckReport, LayerCheck, UpgradeLayer, UpgradeResult
from ..utils.logger import get_logger
from ..version.compare import ComparisonResult, compare, needs_upgrade
from ..version.releases import ReleaseIndex, ReleaseType
from .layers import ClusterSource, KubernetesLayer, LayerDriver, NodeUpgrader, TalosLayer, WorkloadUpgrader
from .monitor import ProgressMonitor
from .sequencer import NodeSequencer

logger = get_logger(__name__)

RELEASE_TYPES = {
    UpgradeLayer.TALOS: ReleaseType.TALOS,
    UpgradeLayer.KUBERNETES: ReleaseType.KUBERNETES,
}


class OrchestratorState(Enum):
    """Phases of an upgrade run."""

    IDLE = "idle"
    VALIDATING_PREREQUISITES = "validating-prerequisites"
    PLANNING = "planning"
    UPGRADING_HOST_LAYER = "upgrading-host-layer"
    UPGRADING_ORCHESTRATION_LAYER = "upgrading-orchestration-layer"
    DONE = "done"


def order_role_groups(
    order: UpgradeOrder, control_plane: List[str], workers: List[str]
) -> List[Tuple[NodeRole, List[str]]]:
    """Role groups in the configured order, empty groups dropped."""
    groups = [(NodeRole.CONTROL_PLANE, control_plane), (NodeRole.WORKER, workers)]
    if order == UpgradeOrder.WORKERS_FIRST:
        groups.reverse()
    return [(role, names) for role, names in groups if names]


class UpgradeManager:
    """Drives a full upgrade run.

    The run moves through VALIDATING_PREREQUISITES, PLANNING,
    UPGRADING_HOST_LAYER and UPGRADING_ORCHESTRATION_LAYER to DONE. Only
    prerequisite validation and the initial snapshot can fail the run;
    everything after that is recorded in the returned UpgradeResult.
    Nodes are always upgraded one at a time.
    """

    def __init__(
        self,
        config: UpgradeConfig,
        inspector: ClusterSource,
        release_index: ReleaseIndex,
        node_upgrader: NodeUpgrader,
        workload_upgrader: WorkloadUpgrader,
        endpoint_cache: Optional[EndpointCache] = None,
        monitor: Optional[ProgressMonitor] = None,
        sequencer: Optional[NodeSequencer] = None,
    ):
        self.config = config
        self.timings = config.timings
        self.inspector = inspector
        self.release_index = release_index
        self.node_upgrader = node_upgrader
        self.workload_upgrader = workload_upgrader
        self.endpoint_cache = endpoint_cache
        self.monitor = monitor or ProgressMonitor(
            inspector,
            interval=self.timings.monitor_interval,
            timeout=self.timings.monitor_timeout,
            poll_timeout=self.timings.snapshot_timeout,
        )
        self.sequencer = sequencer or NodeSequencer(
            self.monitor,
            inter_node_delay=self.timings.inter_node_delay,
            node_upgrade_timeout=self.timings.node_upgrade_timeout,
        )
        self.state = OrchestratorState.IDLE
        self.state_history: List[OrchestratorState] = []

    def _enter(self, state: OrchestratorState) -> None:
        logger.debug(f"Orchestrator state: {self.state.value} -> {state.value}")
        self.state = state
        self.state_history.append(state)

    async def _sleep(self, seconds: float, reason: str) -> None:
        if seconds <= 0:
            return
        logger.info(f"{reason} ({seconds:.0f}s)")
        await asyncio.sleep(seconds)

    # Prerequisites and planning

    async def validate_prerequisites(self) -> ClusterSnapshot:
        """Fetch a snapshot and refuse clusters with unready nodes or no control plane."""
        logger.info("Validating upgrade prerequisites")
        snapshot = await self.inspector.snapshot()

        not_ready = snapshot.not_ready_nodes
        if not snapshot.nodes:
            raise PrerequisitesNotMet("no nodes found in cluster")
        if not_ready:
            raise PrerequisitesNotMet(f"some nodes are not ready for upgrade: {', '.join(not_ready)}")

        control_plane = snapshot.control_plane_nodes
        if not control_plane:
            raise PrerequisitesNotMet("no control plane nodes found in cluster")

        logger.info(
            f"Upgrade prerequisites validated: {len(snapshot.nodes)} nodes, "
            f"{len(control_plane)} control plane, {len(snapshot.worker_nodes)} workers"
        )
        return snapshot

    def plan_talos_upgrade(self, snapshot: ClusterSnapshot) -> List[str]:
        """Names of nodes whose Talos version is behind the target.

        A node whose version cannot be compared is planned for upgrade.
        """
        target = self.config.talos.version
        planned = []

        for node in snapshot.nodes:
            try:
                result = compare(node.talos_version, target)
            except InvalidVersionFormat as e:
                logger.warning(
                    f"Failed to check if node {node.name} needs upgrade "
                    f"(current '{node.talos_version}', target {target}), assuming it does: {e}"
                )
                planned.append(node.name)
                continue

            if result is ComparisonResult.OLDER:
                logger.debug(f"Node {node.name} needs Talos upgrade: {node.talos_version} -> {target}")
                planned.append(node.name)
            elif result is ComparisonResult.NEWER:
                logger.warning(
                    f"Node {node.name} runs Talos {node.talos_version}, newer than target {target}; "
                    "downgrades are not performed"
                )
            else:
                logger.debug(f"Node {node.name} already at Talos {target}")

        return planned

    def _k8s_needs_upgrade(self, snapshot: ClusterSnapshot) -> bool:
        return needs_upgrade(snapshot.k8s_version, self.config.k8s.version, subject="Cluster Kubernetes")

    async def _release_gate(self, layer: UpgradeLayer, target_version: str) -> Optional[str]:
        """None when the target is released, otherwise the reason to skip the layer."""
        try:
            await self.release_index.validate_target_available(RELEASE_TYPES[layer], target_version)
        except WaterError as e:
            return describe(e)
        return None

    # Upgrade phases

    async def _run_role_groups(
        self,
        driver: LayerDriver,
        groups: List[Tuple[NodeRole, List[str]]],
        nodes: Dict[str, NodeInfo],
        group_delay: float,
        result: UpgradeResult,
    ) -> Optional[str]:
        """Run the sequencer over each role group; returns a batch error or None."""
        layer = driver.layer.display_name
        for index, (role, names) in enumerate(groups):
            logger.info(f"Upgrading {layer} on {role.value} nodes: {', '.join(names)}")
            try:
                await self.sequencer.run(names, nodes, driver, result)
            except NodeNotFound as e:
                if self.endpoint_cache is not None:
                    await self.endpoint_cache.invalidate()
                return f"{role.value} {layer} upgrade failed: {e}"
            except WaterError as e:
                return f"{role.value} {layer} upgrade failed: {describe(e)}"

            if index < len(groups) - 1:
                await self._sleep(group_delay, f"Waiting for {role.value} nodes to stabilize")
        return None

    async def _upgrade_talos(self, planned: Dict[str, NodeRole], result: UpgradeResult) -> None:
        talos = self.config.talos
        logger.info(
            f"Starting Talos upgrade to {talos.version} with image {talos.image_ref} "
            f"(order {talos.upgrade_order.value})"
        )
        started = time.monotonic()

        try:
            snapshot = await self.inspector.snapshot()
        except WaterError as e:
            result.add_error(f"Talos upgrade failed: failed to get cluster info for upgrade planning: {describe(e)}")
            return

        control_plane = [name for name, role in planned.items() if role == NodeRole.CONTROL_PLANE]
        workers = [name for name, role in planned.items() if role == NodeRole.WORKER]
        driver = TalosLayer(
            self.node_upgrader,
            target_version=talos.version,
            image_ref=talos.image_ref,
            reboot_timeout=self.timings.reboot_timeout,
        )

        error = await self._run_role_groups(
            driver,
            order_role_groups(talos.upgrade_order, control_plane, workers),
            snapshot.node_map(),
            self.timings.talos_group_stabilization,
            result,
        )
        if error:
            logger.error(f"Talos upgrade failed: {error}")
            result.add_error(f"Talos upgrade failed: {error}")
            return

        result.talos_upgraded = True
        logger.info(
            f"Talos upgrade to {talos.version} completed on {len(planned)} nodes "
            f"in {time.monotonic() - started:.0f}s"
        )

    async def _upgrade_kubernetes(self, result: UpgradeResult) -> None:
        k8s = self.config.k8s
        logger.info(f"Starting Kubernetes upgrade to {k8s.version} (order {k8s.upgrade_order.value})")
        started = time.monotonic()

        try:
            snapshot = await self.inspector.snapshot()
        except WaterError as e:
            result.add_error(f"Kubernetes upgrade failed: failed to get cluster info: {describe(e)}")
            return

        control_plane = [node.name for node in snapshot.control_plane_nodes]
        workers = [node.name for node in snapshot.worker_nodes]
        logger.info(f"Kubernetes upgrade covers {len(control_plane)} control plane and {len(workers)} worker nodes")
        driver = KubernetesLayer(
            self.workload_upgrader,
            self.inspector,
            target_version=k8s.version,
            ready_timeout=self.timings.node_ready_timeout,
            probe_interval=self.timings.reboot_probe_interval,
        )

        error = await self._run_role_groups(
            driver,
            order_role_groups(k8s.upgrade_order, control_plane, workers),
            snapshot.node_map(),
            self.timings.k8s_group_stabilization,
            result,
        )
        if error:
            logger.error(f"Kubernetes upgrade failed: {error}")
            result.add_error(f"Kubernetes upgrade failed: {error}")
            return

        result.k8s_upgraded = True
        logger.info(f"Kubernetes upgrade to {k8s.version} completed in {time.monotonic() - started:.0f}s")

    async def perform_upgrade(self) -> UpgradeResult:
        """Run the whole upgrade.

        Raises PrerequisitesNotMet or ClusterUnavailable before anything is
        touched; otherwise always returns a result.
        """
        logger.info("Starting upgrade process")
        started = time.monotonic()
        result = UpgradeResult()
        self.state_history = []

        self._enter(OrchestratorState.VALIDATING_PREREQUISITES)
        try:
            snapshot = await self.validate_prerequisites()
        except WaterError:
            self._enter(OrchestratorState.DONE)
            raise

        self._enter(OrchestratorState.PLANNING)
        talos, k8s = self.config.talos, self.config.k8s
        logger.info(
            f"Current vs target versions: talos {snapshot.talos_version or 'unknown'} -> {talos.version}, "
            f"k8s {snapshot.k8s_version} -> {k8s.version}, {len(snapshot.nodes)} nodes"
        )
        planned_names = self.plan_talos_upgrade(snapshot)
        roles = {node.name: node.role for node in snapshot.nodes}
        planned = {name: roles[name] for name in planned_names}
        if planned:
            logger.info(f"Nodes needing Talos upgrade to {talos.version}: {', '.join(planned)}")

        self._enter(OrchestratorState.UPGRADING_HOST_LAYER)
        skip_reason = await self._release_gate(UpgradeLayer.TALOS, talos.version)
        if skip_reason:
            logger.warning(f"Skipping Talos upgrade: {skip_reason}")
            result.skip_layer(UpgradeLayer.TALOS, skip_reason)
        elif planned:
            await self._upgrade_talos(planned, result)
        else:
            logger.info("Talos is already at the target version")

        self._enter(OrchestratorState.UPGRADING_ORCHESTRATION_LAYER)
        skip_reason = await self._release_gate(UpgradeLayer.KUBERNETES, k8s.version)
        if skip_reason:
            logger.warning(f"Skipping Kubernetes upgrade: {skip_reason}")
            result.skip_layer(UpgradeLayer.KUBERNETES, skip_reason)
        else:
            try:
                k8s_needed = self._k8s_needs_upgrade(snapshot)
            except InvalidVersionFormat as e:
                result.add_error(f"failed to check Kubernetes version: {e}")
            else:
                if k8s_needed:
                    if result.talos_upgraded:
                        await self._sleep(
                            self.timings.layer_stabilization,
                            "Waiting for Talos upgrade to stabilize before upgrading Kubernetes",
                        )
                    await self._upgrade_kubernetes(result)
                else:
                    logger.info("Kubernetes is already at the target version")

        self._enter(OrchestratorState.DONE)
        result.duration = timedelta(seconds=time.monotonic() - started)
        self._log_result(result)
        return result

    def _log_result(self, result: UpgradeResult) -> None:
        if result.has_errors:
            logger.error(
                f"Upgrade process completed with errors: {len(result.errors)} errors, "
                f"talos_upgraded={result.talos_upgraded}, k8s_upgraded={result.k8s_upgraded}, "
                f"nodes_upgraded={len(result.nodes_upgraded)}, nodes_failed={len(result.failed_nodes)}, "
                f"duration={result.duration.total_seconds():.0f}s, success_rate={result.success_rate:.2f}"
            )
            for index, error in enumerate(result.errors):
                logger.error(f"Upgrade error {index}: {error}")
            if result.rollback_required:
                logger.warning("Rollback may be required due to failed nodes")
        else:
            logger.info(
                f"Upgrade process completed successfully: talos_upgraded={result.talos_upgraded}, "
                f"k8s_upgraded={result.k8s_upgraded}, nodes_upgraded={len(result.nodes_upgraded)}, "
                f"duration={result.duration.total_seconds():.0f}s"
            )

    # Check-only mode

    async def check_only(self) -> CheckReport:
        """Report upgrade decisions without invoking any upgrader."""
        snapshot = await self.inspector.snapshot()
        talos, k8s = self.config.talos, self.config.k8s

        planned = self.plan_talos_upgrade(snapshot)
        talos_check = LayerCheck(
            layer=UpgradeLayer.TALOS,
            current_version=snapshot.talos_version or "unknown",
            target_version=talos.version,
            nodes_to_upgrade=planned,
        )
        skip_reason = await self._release_gate(UpgradeLayer.TALOS, talos.version)
        if skip_reason:
            logger.warning(f"Target Talos version is not available - skipping Talos upgrade check: {skip_reason}")
            talos_check.skip_reason = skip_reason
        else:
            talos_check.version_available = True
            talos_check.needs_upgrade = bool(planned)

        k8s_check = LayerCheck(
            layer=UpgradeLayer.KUBERNETES,
            current_version=snapshot.k8s_version,
            target_version=k8s.version,
        )
        skip_reason = await self._release_gate(UpgradeLayer.KUBERNETES, k8s.version)
        if skip_reason:
            logger.warning(
                f"Target Kubernetes version is not available - skipping Kubernetes upgrade check: {skip_reason}"
            )
            k8s_check.skip_reason = skip_reason
        else:
            k8s_check.version_available = True
            try:
                k8s_check.needs_upgrade = self._k8s_needs_upgrade(snapshot)
            except InvalidVersionFormat as e:
                k8s_check.error = f"failed to check Kubernetes version: {e}"

        report = CheckReport(talos=talos_check, kubernetes=k8s_check, not_ready_nodes=snapshot.not_ready_nodes)
        logger.info(
            f"Upgrade checks completed: talos {talos_check.current_version} -> {talos.version} "
            f"(available={talos_check.version_available}, needs_upgrade={talos_check.needs_upgrade}), "
            f"k8s {k8s_check.current_version} -> {k8s.version} "
            f"(available={k8s_check.version_available}, needs_upgrade={k8s_check.needs_upgrade})"
        )
        logger.info(report.summary())
        return report
