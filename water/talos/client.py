"""Talos client wrapper."""

import json
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..errors import CommandError
from ..utils.process import run_command
from ..utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TALOSCONFIG = Path.home() / ".talos" / "config"


class TalosClient:
    """Wrapper for talosctl commands."""

    binary = "talosctl"

    def __init__(self, talosconfig: Optional[str] = None, verify: bool = True):
        self.talosconfig = str(talosconfig) if talosconfig else str(DEFAULT_TALOSCONFIG)
        if verify:
            self._verify_talosctl()

    def _verify_talosctl(self):
        """Verify talosctl is available."""
        if shutil.which(self.binary) is None:
            raise RuntimeError("talosctl command not found. Please install talosctl.")
        logger.debug("talosctl verified successfully")

    def _build_command(self, args: List[str], node: Optional[str] = None) -> List[str]:
        """Build talosctl command targeting an optional node."""
        cmd = [self.binary, "--talosconfig", self.talosconfig]

        if node:
            cmd.extend(["--nodes", node])

        cmd.extend(args)
        return cmd

    async def execute(self, args: List[str], node: Optional[str] = None) -> str:
        """Execute talosctl command and return its output."""
        cmd = self._build_command(args, node)
        logger.debug(f"Executing: {' '.join(cmd)}")

        returncode, stdout, stderr = await run_command(cmd)
        if returncode != 0:
            logger.debug(f"Command failed: {stderr.strip()}")
            raise CommandError(cmd, stderr, returncode)
        return stdout

    def load_config(self) -> Dict[str, Any]:
        """Read the talosconfig file."""
        try:
            with open(self.talosconfig, "r") as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to read talosconfig {self.talosconfig}: {e}")
            return {}

    def configured_endpoints(self) -> List[str]:
        """Nodes of the current talosconfig context, falling back to its endpoints."""
        config = self.load_config()
        context = (config.get("contexts") or {}).get(config.get("context") or "")
        if not context:
            return []
        return list(context.get("nodes") or context.get("endpoints") or [])

    async def version(self, node: str) -> str:
        """Raw ``talosctl version`` output for a node; raises when unreachable."""
        return await self.execute(["version", "--short"], node=node)

    async def hostname(self, node: str) -> str:
        """Hostname reported by a node's Talos API."""
        output = await self.execute(["get", "hostname", "-o", "json"], node=node)
        try:
            resource, _ = json.JSONDecoder().raw_decode(output.strip())
        except json.JSONDecodeError as e:
            raise CommandError(self._build_command(["get", "hostname"], node), f"failed to parse JSON output: {e}")

        hostname = (resource.get("spec") or {}).get("hostname", "")
        if not hostname:
            raise CommandError(self._build_command(["get", "hostname"], node), "no hostname found in response")
        return hostname
