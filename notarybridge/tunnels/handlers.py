"""HTTP handlers for the tunnel API."""

from typing import Any

import pydantic
from aiohttp import web

from notarybridge.shared.errors import NotaryBridgeError, RequestValidationError
from notarybridge.shared.logging import get_logger
from notarybridge.shared.models import TunnelSpec
from notarybridge.tunnels.manager import TunnelManager

logger = get_logger(__name__)


def error_response(status: int, error: Any) -> web.Response:
    return web.json_response({"error": error}, status=status)


class TunnelHandlers:
    """REST handlers over a TunnelManager."""

    def __init__(self, tunnel_manager: TunnelManager) -> None:
        self.tunnel_manager = tunnel_manager

    async def handle_index(self, request: web.Request) -> web.Response:
        return web.Response(text="Hello, Tunnel World!")

    async def handle_list(self, request: web.Request) -> web.Response:
        tunnels = await self.tunnel_manager.list()
        return web.json_response([tunnel.to_wire() for tunnel in tunnels])

    async def handle_get(self, request: web.Request) -> web.Response:
        try:
            tunnel = await self.tunnel_manager.get(request.match_info["tunnel_id"])
        except NotaryBridgeError as exc:
            return error_response(exc.http_status, exc.message)
        return web.json_response(tunnel.to_wire())

    async def handle_create(self, request: web.Request) -> web.Response:
        try:
            spec = await self._read_spec(request)
            tunnel = await self.tunnel_manager.create(spec)
        except NotaryBridgeError as exc:
            return error_response(exc.http_status, exc.message)
        except pydantic.ValidationError as exc:
            return error_response(400, self._validation_errors(exc))
        return web.json_response(tunnel.to_wire(), status=201)

    async def handle_update(self, request: web.Request) -> web.Response:
        try:
            spec = await self._read_spec(request)
            tunnel = await self.tunnel_manager.update(request.match_info["tunnel_id"], spec)
        except NotaryBridgeError as exc:
            return error_response(exc.http_status, exc.message)
        except pydantic.ValidationError as exc:
            return error_response(400, self._validation_errors(exc))
        return web.json_response(tunnel.to_wire())

    async def handle_delete(self, request: web.Request) -> web.Response:
        try:
            await self.tunnel_manager.delete(request.match_info["tunnel_id"])
        except NotaryBridgeError as exc:
            return error_response(exc.http_status, exc.message)
        return web.Response(status=204)

    async def handle_delete_all(self, request: web.Request) -> web.Response:
        await self.tunnel_manager.delete_all()
        return web.Response(status=204)

    async def _read_spec(self, request: web.Request) -> TunnelSpec:
        try:
            payload = await request.json()
        except ValueError as exc:
            raise RequestValidationError(f"Request body is not valid JSON: {exc}") from exc

        if not isinstance(payload, dict):
            raise RequestValidationError("Request body must be a JSON object")

        return TunnelSpec.model_validate(payload)

    @staticmethod
    def _validation_errors(exc: pydantic.ValidationError) -> list[dict[str, Any]]:
        return [
            {"field": ".".join(str(part) for part in error["loc"]), "msg": error["msg"]}
            for error in exc.errors()
        ]
