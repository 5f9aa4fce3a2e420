"""water - Talos Linux and Kubernetes upgrade tool."""

__version__ = "0.1.0"
APP_NAME = "water"
