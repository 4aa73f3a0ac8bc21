"""Ephemeral local-to-remote bridges."""

from .base import TunnelService
from .client import TunnelClient
from .manager import TunnelManager
from .process import BridgeProcess

__all__ = [
    "BridgeProcess",
    "TunnelClient",
    "TunnelManager",
    "TunnelService",
]
