"""Presentation verification, locally through the engine or via a remote service."""

from abc import ABC, abstractmethod
from typing import Any

import aiohttp

from notarybridge.notary.engine import NotarizationEngine
from notarybridge.shared.config import Settings, get_settings
from notarybridge.shared.errors import VerificationFailure
from notarybridge.shared.logging import get_logger
from notarybridge.shared.models import VerificationResult

logger = get_logger(__name__)


class Verifier(ABC):
    """Checks a serialized presentation against a notary."""

    @abstractmethod
    async def verify(self, notary_url: str, presentation_json: dict[str, Any]) -> VerificationResult:
        """
        Verify a presentation.

        Raises:
            VerificationFailure: If the presentation does not verify
        """


class EngineVerifier(Verifier):
    """Verifies presentations with the notarization engine's own verifier."""

    def __init__(self, engine: NotarizationEngine) -> None:
        self.engine = engine

    async def verify(self, notary_url: str, presentation_json: dict[str, Any]) -> VerificationResult:
        logger.info(f"Verifying presentation against notary {notary_url}")
        await self.engine.ensure_initialized()

        try:
            presentation = await self.engine.load_presentation(presentation_json)
            notary_key = await self.engine.notary_server(notary_url).public_key()
            output = await presentation.verify()
            verifying_key = await presentation.verifying_key()
        except VerificationFailure:
            raise
        except Exception as exc:
            raise VerificationFailure(f"Presentation verification failed: {exc}") from exc

        logger.info(f"Presentation verified for server {output.server_name}")
        return VerificationResult(
            is_valid=True,
            server_name=output.server_name,
            verifying_key=verifying_key,
            notary_key=notary_key,
            time=output.time,
            sent=output.sent.decode("utf-8", errors="replace"),
            recv=output.recv.decode("utf-8", errors="replace"),
        )


class RemoteVerifier(Verifier):
    """
    Delegates verification to an HTTP verification service.

    The service accepts the presentation JSON at POST /verify-proof and
    answers {"verification": {"Ok": {...}} | {"Err": {"message": ...}}, ...}.
    """

    def __init__(self, settings: Settings | None = None, session: aiohttp.ClientSession | None = None) -> None:
        self.settings = settings or get_settings()
        if not self.settings.verifier_url:
            raise ValueError("verifier_url is not configured")
        self.url = self.settings.verifier_url.rstrip("/")
        self._session = session

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.settings.verifier_api_key:
            headers["x-api-key"] = self.settings.verifier_api_key
        return headers

    async def verify(self, notary_url: str, presentation_json: dict[str, Any]) -> VerificationResult:
        logger.info(f"Submitting presentation to {self.url}/verify-proof")
        try:
            if self._session is not None:
                payload = await self._post(self._session, presentation_json)
            else:
                async with aiohttp.ClientSession() as session:
                    payload = await self._post(session, presentation_json)
        except aiohttp.ClientError as exc:
            raise VerificationFailure(f"Verification service unavailable: {exc}") from exc

        return self._parse(payload)

    async def _post(self, session: aiohttp.ClientSession, presentation_json: dict[str, Any]) -> Any:
        async with session.post(
            f"{self.url}/verify-proof", json=presentation_json, headers=self._headers()
        ) as response:
            try:
                payload = await response.json(content_type=None)
            except ValueError:
                raise VerificationFailure(f"Verification service returned HTTP {response.status}") from None
            if response.status >= 500 and not isinstance(payload, dict):
                raise VerificationFailure(f"Verification service returned HTTP {response.status}")
            return payload

    @staticmethod
    def _parse(payload: Any) -> VerificationResult:
        if not isinstance(payload, dict) or "verification" not in payload:
            raise VerificationFailure("Malformed verification response")

        verification = payload["verification"]
        if isinstance(verification, dict) and "Err" in verification:
            raise VerificationFailure(verification["Err"].get("message", "Verification failed"))
        if isinstance(verification, dict) and "Ok" in verification:
            verification = verification["Ok"]
        if not isinstance(verification, dict):
            raise VerificationFailure("Malformed verification response")

        result = VerificationResult(
            is_valid=bool(verification.get("is_valid", False)),
            server_name=verification.get("server_name", ""),
            verifying_key=verification.get("verifying_key", ""),
            time=verification.get("time"),
            sent=verification.get("sent_readable", ""),
            recv=verification.get("recv_readable", ""),
        )
        if not result.is_valid:
            raise VerificationFailure(f"Presentation for {result.server_name or 'unknown server'} is not valid")
        return result
