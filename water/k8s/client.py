"""Kubernetes client wrapper."""

import json
import shutil
from typing import Any, Dict, List, Optional

from ..errors import CommandError
from ..utils.logger import get_logger
from ..utils.process import run_command

logger = get_logger(__name__)


class K8sClient:
    """Wrapper for kubectl commands."""

    binary = "kubectl"

    def __init__(self, kubeconfig: Optional[str] = None, context: Optional[str] = None):
        self.kubeconfig = kubeconfig
        self.context = context
        self._verify_kubectl()

    def _verify_kubectl(self):
        """Verify kubectl is available."""
        if shutil.which(self.binary) is None:
            raise RuntimeError("kubectl command not found. Please install kubectl.")
        logger.debug("kubectl verified successfully")

    def _build_command(self, args: List[str]) -> List[str]:
        """Build kubectl command with kubeconfig and context."""
        cmd = [self.binary]

        if self.kubeconfig:
            cmd.extend(["--kubeconfig", self.kubeconfig])

        if self.context:
            cmd.extend(["--context", self.context])

        cmd.extend(args)
        return cmd

    async def execute(self, args: List[str]) -> str:
        """Execute kubectl command and return its output."""
        cmd = self._build_command(args)
        logger.debug(f"Executing: {' '.join(cmd)}")

        returncode, stdout, stderr = await run_command(cmd)
        if returncode != 0:
            logger.debug(f"Command failed: {stderr.strip()}")
            raise CommandError(cmd, stderr, returncode)
        return stdout

    async def get_json(self, args: List[str]) -> Dict[str, Any]:
        """Run a kubectl query that prints JSON."""
        output = await self.execute(args + ["-o", "json"])
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise CommandError(self._build_command(args), f"failed to parse JSON output: {e}")

    async def get_nodes(self) -> List[Dict[str, Any]]:
        data = await self.get_json(["get", "nodes"])
        return data.get("items", [])

    async def get_server_version(self) -> Optional[str]:
        """Cluster gitVersion, or None when the server does not report one."""
        data = await self.get_json(["version"])
        return (data.get("serverVersion") or {}).get("gitVersion")
