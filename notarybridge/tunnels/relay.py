"""
WebSocket-to-TCP relay.

Runs as the child process behind each tunnel. Every WebSocket connection
accepted on the bind address gets its own TCP connection to the remote
host; bytes are pumped both ways until either side closes.

Usage: python -m notarybridge.tunnels.relay --bind-addr 0.0.0.0:9001 example.com:443
"""

import argparse
import asyncio
from contextlib import suppress

import uvloop
from aiohttp import WSMsgType, web

from notarybridge.shared.config import get_settings
from notarybridge.shared.logging import get_logger, setup_logging

logger = get_logger(__name__)

REMOTE_KEY = web.AppKey("remote", tuple)
READ_SIZE = 64 * 1024


def split_address(address: str) -> tuple[str, int]:
    """Split "host:port" (IPv6 hosts may be bracketed)."""
    host, sep, port = address.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"Expected host:port, got {address!r}")
    return host.strip("[]"), int(port)


async def _pump_remote_to_client(reader: asyncio.StreamReader, ws: web.WebSocketResponse) -> None:
    try:
        while True:
            chunk = await reader.read(READ_SIZE)
            if not chunk:
                break
            await ws.send_bytes(chunk)
    except OSError as exc:
        logger.warning(f"Remote connection lost: {exc!r}")
    finally:
        await ws.close()


async def handle_websocket(request: web.Request) -> web.WebSocketResponse:
    """Relay one WebSocket client to a fresh TCP connection."""
    remote_host, remote_port = request.app[REMOTE_KEY]

    ws = web.WebSocketResponse()
    await ws.prepare(request)

    try:
        reader, writer = await asyncio.open_connection(remote_host, remote_port)
    except OSError as exc:
        logger.error(f"Cannot reach {remote_host}:{remote_port}: {exc}")
        await ws.close(message=b"remote unreachable")
        return ws

    logger.info(f"Relaying {request.remote} -> {remote_host}:{remote_port}")
    downstream = asyncio.create_task(_pump_remote_to_client(reader, ws))

    try:
        async for msg in ws:
            if msg.type == WSMsgType.BINARY:
                writer.write(msg.data)
            elif msg.type == WSMsgType.TEXT:
                writer.write(msg.data.encode("utf-8"))
            elif msg.type == WSMsgType.ERROR:
                logger.error(f"WebSocket error: {ws.exception()}")
                break
            await writer.drain()
    except OSError as exc:
        logger.warning(f"Write to {remote_host}:{remote_port} failed: {exc!r}")
    finally:
        downstream.cancel()
        with suppress(asyncio.CancelledError, ConnectionError):
            await downstream
        writer.close()
        with suppress(OSError):
            await writer.wait_closed()
        await ws.close()

    logger.info(f"Relay closed for {request.remote}")
    return ws


def create_app(remote_host: str, remote_port: int) -> web.Application:
    app = web.Application()
    app[REMOTE_KEY] = (remote_host, remote_port)
    app.router.add_get("/{tail:.*}", handle_websocket)
    return app


async def serve(bind_host: str, bind_port: int, remote_host: str, remote_port: int) -> None:
    runner = web.AppRunner(create_app(remote_host, remote_port))
    await runner.setup()

    site = web.TCPSite(runner, bind_host, bind_port)
    await site.start()
    logger.info(f"Relay listening on ws://{bind_host}:{bind_port} -> {remote_host}:{remote_port}")

    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Relay WebSocket clients to a remote TCP endpoint")
    parser.add_argument("--bind-addr", required=True, help="host:port to listen on")
    parser.add_argument("remote", help="remote host:port")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Entry point for a bridge process."""
    args = parse_args(argv)
    setup_logging(get_settings().log_level)

    bind_host, bind_port = split_address(args.bind_addr)
    remote_host, remote_port = split_address(args.remote)

    try:
        uvloop.run(serve(bind_host, bind_port, remote_host, remote_port))
    except KeyboardInterrupt:
        logger.info("Relay stopped")


if __name__ == "__main__":
    main()
