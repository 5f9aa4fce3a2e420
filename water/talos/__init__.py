"""Talos Linux interaction module."""

from .client import TalosClient
from .upgrader import TalosNodeUpgrader

__all__ = ["TalosClient", "TalosNodeUpgrader"]
