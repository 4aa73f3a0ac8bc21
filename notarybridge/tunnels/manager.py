"""Tunnel registry backed by supervised bridge processes."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from notarybridge.shared.config import Settings, get_settings
from notarybridge.shared.errors import HostUnresolvable, TunnelConflict, TunnelNotFound
from notarybridge.shared.logging import get_logger
from notarybridge.shared.models import Tunnel, TunnelSpec
from notarybridge.tunnels.base import TunnelService
from notarybridge.tunnels.process import BridgeProcess

logger = get_logger(__name__)

RELAY_COMMAND = [sys.executable, "-m", "notarybridge.tunnels.relay"]

Resolver = Callable[[str], Awaitable[bool]]
ProcessFactory = Callable[..., BridgeProcess]


async def resolve_host(host: str, timeout: float = 5.0) -> bool:
    """Return True if host resolves within timeout."""
    loop = asyncio.get_running_loop()
    try:
        await asyncio.wait_for(loop.getaddrinfo(host, None), timeout=timeout)
    except (OSError, UnicodeError, TimeoutError) as exc:
        logger.error(f"Invalid host: {host} ({exc!r})")
        return False
    return True


@dataclass
class _Entry:
    tunnel: Tunnel
    process: BridgeProcess


class TunnelManager(TunnelService):
    """
    Owns the tunnel registry.

    The registry, not the processes, decides whether a tunnel exists: an
    entry is added only after its process started and is evicted as soon
    as that process exits.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        resolver: Resolver | None = None,
        process_factory: ProcessFactory = BridgeProcess,
    ) -> None:
        self.settings = settings or get_settings()
        self._resolver = resolver
        self._process_factory = process_factory
        self._tunnels: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    async def create(self, spec: TunnelSpec) -> Tunnel:
        """Check the host, then start and register a bridge for spec."""
        await self._check_host(spec.remote_host)

        tunnel_id = spec.tunnel_id
        async with self._lock:
            if tunnel_id in self._tunnels:
                logger.warning(f"Tunnel {tunnel_id} already exists")
                raise TunnelConflict("Tunnel with these parameters already exists")

            entry = await self._spawn(tunnel_id, spec)
            self._tunnels[tunnel_id] = entry

        logger.info(
            f"Tunnel created: {entry.tunnel.bridge_address} -> {spec.remote_host}:{spec.remote_port} (ID: {tunnel_id})"
        )
        return entry.tunnel.model_copy()

    async def get(self, tunnel_id: str) -> Tunnel:
        """Get a registered tunnel by id."""
        entry = self._tunnels.get(tunnel_id)
        if entry is None:
            raise TunnelNotFound(f"Tunnel {tunnel_id} not found")
        return entry.tunnel.model_copy()

    async def list(self) -> list[Tunnel]:
        """List all registered tunnels."""
        return [entry.tunnel.model_copy() for entry in self._tunnels.values()]

    async def update(self, tunnel_id: str, spec: TunnelSpec) -> Tunnel:
        """Replace a tunnel's bridge with one for spec, rekeying the registry."""
        if tunnel_id not in self._tunnels:
            raise TunnelNotFound(f"Tunnel {tunnel_id} not found")

        await self._check_host(spec.remote_host)

        new_id = spec.tunnel_id
        async with self._lock:
            old = self._tunnels.get(tunnel_id)
            if old is None:
                raise TunnelNotFound(f"Tunnel {tunnel_id} not found")
            if new_id != tunnel_id and new_id in self._tunnels:
                raise TunnelConflict("Tunnel with these parameters already exists")

            del self._tunnels[tunnel_id]
            await old.process.stop()

            entry = await self._spawn(new_id, spec)
            self._tunnels[new_id] = entry

        logger.info(f"Tunnel updated: {tunnel_id} -> {new_id}")
        return entry.tunnel.model_copy()

    async def delete(self, tunnel_id: str) -> None:
        """Stop a tunnel's bridge and remove it from the registry."""
        async with self._lock:
            entry = self._tunnels.pop(tunnel_id, None)
            if entry is None:
                raise TunnelNotFound(f"Tunnel {tunnel_id} not found")
            await entry.process.stop()

        logger.info(f"Tunnel removed: {tunnel_id}")

    async def delete_all(self) -> None:
        """Stop every bridge and clear the registry."""
        async with self._lock:
            entries = list(self._tunnels.values())
            self._tunnels.clear()
            await asyncio.gather(*(entry.process.stop() for entry in entries))

        logger.info(f"Removed {len(entries)} tunnel(s)")

    def get_tunnel_count(self) -> int:
        """Get number of registered tunnels."""
        return len(self._tunnels)

    async def _check_host(self, host: str) -> None:
        """Raise HostUnresolvable unless host resolves."""
        if self._resolver is not None:
            resolved = await self._resolver(host)
        else:
            resolved = await resolve_host(host, self.settings.host_check_timeout)
        if not resolved:
            raise HostUnresolvable(f"Invalid remoteHost: {host}")

    def _bridge_argv(self, spec: TunnelSpec) -> list[str]:
        command = self.settings.bridge_command or RELAY_COMMAND
        return [
            *command,
            "--bind-addr",
            f"{self.settings.bridge_bind_host}:{spec.local_port}",
            f"{spec.remote_host}:{spec.remote_port}",
        ]

    async def _spawn(self, tunnel_id: str, spec: TunnelSpec) -> _Entry:
        """Start a bridge for spec and build its registry entry."""
        process = self._process_factory(
            tunnel_id,
            self._bridge_argv(spec),
            on_exit=self._on_process_exit,
            stop_timeout=self.settings.process_stop_timeout,
        )
        await process.start()

        tunnel = Tunnel(
            id=tunnel_id,
            local_port=spec.local_port,
            remote_host=spec.remote_host,
            remote_port=spec.remote_port,
            bridge_address=f"ws://{self.settings.bridge_host}:{spec.local_port}",
            pid=process.pid if process.pid is not None else -1,
        )
        return _Entry(tunnel=tunnel, process=process)

    def _on_process_exit(self, process: BridgeProcess, code: int | None) -> None:
        entry = self._tunnels.get(process.tunnel_id)
        # A replaced or deleted tunnel no longer owns this process.
        if entry is None or entry.process is not process:
            return

        del self._tunnels[process.tunnel_id]
        logger.warning(f"Tunnel {process.tunnel_id} evicted, bridge exited with code {code}")
