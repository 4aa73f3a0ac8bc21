"""HTTP client for a notary server."""

import base64

import aiohttp
from yarl import URL

from notarybridge.shared.logging import get_logger

logger = get_logger(__name__)


class NotaryServer:
    """Opens notarization sessions and fetches the notary's public key."""

    def __init__(self, url: str, session: aiohttp.ClientSession | None = None) -> None:
        self.url = url.rstrip("/")
        self._session = session

    async def _request_json(self, method: str, path: str, **kwargs) -> dict:
        if self._session is not None:
            async with self._session.request(method, f"{self.url}{path}", **kwargs) as response:
                response.raise_for_status()
                return await response.json(content_type=None)

        async with aiohttp.ClientSession() as session:
            async with session.request(method, f"{self.url}{path}", **kwargs) as response:
                response.raise_for_status()
                return await response.json(content_type=None)

    async def session_url(self, max_sent_data: int | None = None, max_recv_data: int | None = None) -> str:
        """Open a session and return the WebSocket URL the prover connects to."""
        payload = await self._request_json(
            "POST",
            "/session",
            json={"clientType": "Websocket", "maxSentData": max_sent_data, "maxRecvData": max_recv_data},
        )
        session_id = payload["sessionId"]

        base = URL(self.url)
        scheme = "wss" if base.scheme == "https" else "ws"
        path = "" if base.path == "/" else base.path.rstrip("/")
        session_url = f"{scheme}://{base.raw_authority}{path}/notarize?sessionId={session_id}"

        logger.info(f"Notary session opened: {session_url}")
        return session_url

    async def public_key(self) -> str:
        """Notary public key as hex, decoded from the PEM served at /info."""
        payload = await self._request_json("GET", "/info")
        pem = payload["publicKey"]

        body = "".join(line for line in pem.strip().splitlines() if not line.startswith("-----"))
        return base64.b64decode(body).hex()
