"""HTTP client for a remote tunnel API."""

from __future__ import annotations

from typing import Any

import aiohttp

from notarybridge.shared.config import Settings, get_settings
from notarybridge.shared.errors import (
    HostUnresolvable,
    NotaryBridgeError,
    ProcessFailure,
    RequestValidationError,
    TunnelConflict,
    TunnelNotFound,
)
from notarybridge.shared.logging import get_logger
from notarybridge.shared.models import Tunnel, TunnelSpec
from notarybridge.tunnels.base import TunnelService

logger = get_logger(__name__)

_STATUS_ERRORS: dict[int, type[NotaryBridgeError]] = {
    404: TunnelNotFound,
    409: TunnelConflict,
    500: ProcessFailure,
}


class TunnelClient(TunnelService):
    """TunnelService implementation that talks to a tunnel API over HTTP."""

    def __init__(
        self,
        api_base: str | None = None,
        session: aiohttp.ClientSession | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.api_base = (api_base or self.settings.tunnel_api_base).rstrip("/")
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> TunnelClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def is_reachable(self) -> bool:
        """Check the API answers within the host check timeout."""
        timeout = aiohttp.ClientTimeout(total=self.settings.host_check_timeout)
        try:
            async with self._get_session().head(self.api_base, timeout=timeout) as response:
                return response.ok
        except (aiohttp.ClientError, TimeoutError) as exc:
            logger.error(f"Tunnel API {self.api_base} is not reachable: {exc!r}")
            return False

    async def create(self, spec: TunnelSpec) -> Tunnel:
        payload = await self._request("POST", self.api_base, json=spec.to_wire())
        return Tunnel.model_validate(payload)

    async def get(self, tunnel_id: str) -> Tunnel:
        payload = await self._request("GET", f"{self.api_base}/{tunnel_id}")
        return Tunnel.model_validate(payload)

    async def list(self) -> list[Tunnel]:
        payload = await self._request("GET", self.api_base)
        return [Tunnel.model_validate(item) for item in payload]

    async def update(self, tunnel_id: str, spec: TunnelSpec) -> Tunnel:
        payload = await self._request("PUT", f"{self.api_base}/{tunnel_id}", json=spec.to_wire())
        return Tunnel.model_validate(payload)

    async def delete(self, tunnel_id: str) -> None:
        await self._request("DELETE", f"{self.api_base}/{tunnel_id}")

    async def delete_all(self) -> None:
        await self._request("DELETE", self.api_base)

    async def _request(self, method: str, url: str, json: dict[str, Any] | None = None) -> Any:
        logger.debug(f"{method} {url}")
        async with self._get_session().request(method, url, json=json) as response:
            if response.status >= 400:
                raise await self._error_from(response)
            if response.status == 204:
                return None
            return await response.json()

    @staticmethod
    async def _error_from(response: aiohttp.ClientResponse) -> NotaryBridgeError:
        try:
            payload = await response.json(content_type=None)
            message = payload.get("error", payload) if isinstance(payload, dict) else payload
        except ValueError:
            message = await response.text()

        if response.status == 400:
            if isinstance(message, str) and message.startswith("Invalid remoteHost"):
                return HostUnresolvable(message)
            return RequestValidationError(str(message))

        error_cls = _STATUS_ERRORS.get(response.status, NotaryBridgeError)
        return error_cls(str(message) or f"HTTP {response.status}")
