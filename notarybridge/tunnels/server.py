"""
Tunnel API server.

Exposes the TunnelManager over HTTP so notarization sessions can acquire
and release bridges to remote TLS servers.
"""

import asyncio
import time

import aiohttp_cors
import uvloop
from aiohttp import web

from notarybridge.shared.config import Settings, get_settings
from notarybridge.shared.logging import get_logger, setup_logging
from notarybridge.tunnels.handlers import TunnelHandlers, error_response
from notarybridge.tunnels.manager import TunnelManager

logger = get_logger(__name__)


@web.middleware
async def request_logging_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Log every request with its status and duration."""
    start = time.monotonic()
    try:
        response = await handler(request)
    except web.HTTPException as exc:
        logger.info(f"{request.method} {request.path} -> {exc.status}")
        raise
    except Exception:
        logger.exception(f"{request.method} {request.path} failed")
        response = error_response(500, "Internal server error")

    duration = (time.monotonic() - start) * 1000
    logger.info(f"{request.method} {request.path} -> {response.status} ({duration:.1f}ms)")
    return response


class TunnelServer:
    """Hosts the tunnel API and owns the TunnelManager's lifetime."""

    def __init__(self, settings: Settings | None = None, tunnel_manager: TunnelManager | None = None) -> None:
        self.settings = settings or get_settings()
        self.tunnel_manager = tunnel_manager or TunnelManager(self.settings)
        self.handlers = TunnelHandlers(self.tunnel_manager)

    def setup_routes(self, app: web.Application) -> None:
        """Configure application routes."""
        app.router.add_get("/", self.handlers.handle_index)
        app.router.add_get("/tunnels", self.handlers.handle_list)
        app.router.add_post("/tunnels", self.handlers.handle_create)
        app.router.add_delete("/tunnels", self.handlers.handle_delete_all)
        app.router.add_get("/tunnels/{tunnel_id}", self.handlers.handle_get)
        app.router.add_put("/tunnels/{tunnel_id}", self.handlers.handle_update)
        app.router.add_delete("/tunnels/{tunnel_id}", self.handlers.handle_delete)

    async def _on_shutdown(self, app: web.Application) -> None:
        logger.info("Stopping all bridges")
        await self.tunnel_manager.delete_all()

    def create_app(self) -> web.Application:
        """Build the aiohttp application."""
        app = web.Application(middlewares=[request_logging_middleware])
        self.setup_routes(app)

        cors = aiohttp_cors.setup(
            app,
            defaults={
                self.settings.cors_origin: aiohttp_cors.ResourceOptions(
                    allow_credentials=True,
                    expose_headers="*",
                    allow_headers="*",
                )
            },
        )
        for route in list(app.router.routes()):
            cors.add(route)

        app.on_shutdown.append(self._on_shutdown)
        return app

    async def start(self) -> None:
        """Start the tunnel API server."""
        runner = web.AppRunner(self.create_app())
        await runner.setup()

        site = web.TCPSite(runner, self.settings.host, self.settings.port)
        await site.start()

        logger.info(f"Tunnel API started on http://{self.settings.host}:{self.settings.port}")
        logger.info(f"Bridges advertised as ws://{self.settings.bridge_host}:<localPort>")

        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()


def main() -> None:
    """Entry point for the tunnel API server."""
    settings = get_settings()
    setup_logging(settings.log_level)
    server = TunnelServer(settings)

    try:
        uvloop.run(server.start())
    except KeyboardInterrupt:
        logger.info("Server stopped by user")


if __name__ == "__main__":
    main()
