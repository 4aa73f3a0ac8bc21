"""Abstract tunnel service shared by the in-process manager and the HTTP client."""

from __future__ import annotations

from abc import ABC, abstractmethod

from notarybridge.shared.errors import TunnelNotFound
from notarybridge.shared.models import Tunnel, TunnelSpec


class TunnelService(ABC):
    """Create, inspect and tear down local-to-remote bridges."""

    @abstractmethod
    async def create(self, spec: TunnelSpec) -> Tunnel:
        """
        Create a tunnel for the given spec.

        Raises:
            RequestValidationError: If the spec is invalid
            HostUnresolvable: If the remote host does not resolve
            TunnelConflict: If a tunnel with the same id already exists
            ProcessFailure: If the bridge process cannot be started
        """

    @abstractmethod
    async def get(self, tunnel_id: str) -> Tunnel:
        """Return a tunnel by id, or raise TunnelNotFound."""

    @abstractmethod
    async def list(self) -> list[Tunnel]:
        """Return all registered tunnels."""

    @abstractmethod
    async def update(self, tunnel_id: str, spec: TunnelSpec) -> Tunnel:
        """Replace a tunnel's bridge with one for the new spec."""

    @abstractmethod
    async def delete(self, tunnel_id: str) -> None:
        """Stop and remove a tunnel, or raise TunnelNotFound."""

    @abstractmethod
    async def delete_all(self) -> None:
        """Stop and remove every tunnel."""

    async def delete_matching(self, spec: TunnelSpec) -> list[str]:
        """Delete every tunnel whose triple matches spec; returns the deleted ids."""
        deleted = []
        for tunnel in await self.list():
            if not tunnel.matches(spec):
                continue
            try:
                await self.delete(tunnel.id)
            except TunnelNotFound:
                continue
            deleted.append(tunnel.id)
        return deleted
