"""
Boundary to the cryptographic notarization engine.

The engine (prover, presentation builder and presentation verifier) is an
external library; these classes describe exactly what the session driver
and verifier need from it. Adapters for a concrete engine subclass them.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict

from notarybridge.notary.notary_server import NotaryServer
from notarybridge.shared.models import Commit, HttpMethod


class ProverRequest(BaseModel):
    """HTTP request handed to the prover for transmission."""

    url: str
    method: HttpMethod
    headers: dict[str, str] = {}
    body: Any = None


class Transcript(BaseModel):
    """Raw bytes observed by the prover in each direction."""

    model_config = ConfigDict(frozen=True)

    sent: bytes
    recv: bytes


class NotarizationOutput(BaseModel):
    """Attestation material returned by a successful notarization."""

    model_config = ConfigDict(frozen=True)

    attestation: str
    secrets: str
    notary_url: str
    bridge_address: str


class VerifierOutput(BaseModel):
    """What a verified presentation discloses."""

    model_config = ConfigDict(frozen=True)

    server_name: str
    time: int
    sent: bytes
    recv: bytes


class Prover(ABC):
    """One prover session bound to a server identity."""

    @abstractmethod
    async def setup(self, session_url: str) -> None:
        """Connect to the notary session."""

    @abstractmethod
    async def send_request(self, bridge_address: str, request: ProverRequest) -> Any:
        """Send the request through the bridge and wait for the full response."""

    @abstractmethod
    async def transcript(self) -> Transcript:
        """Return the raw sent/received bytes."""

    @abstractmethod
    async def notarize(self, commit: Commit) -> NotarizationOutput:
        """Notarize the transcript disclosing only the committed ranges."""


class Presentation(ABC):
    """A shareable proof built from notarization output."""

    @abstractmethod
    async def json(self) -> dict[str, Any]:
        """Portable JSON form ({"version", "data", "meta"})."""

    @abstractmethod
    async def verify(self) -> VerifierOutput:
        """Check the presentation and return what it discloses."""

    @abstractmethod
    async def verifying_key(self) -> str:
        """Hex-encoded key that signed the attestation."""


class NotarizationEngine(ABC):
    """Factory for provers and presentations with a one-time global init."""

    _init_task: "asyncio.Future[None] | None" = None

    @abstractmethod
    async def init(self) -> None:
        """Initialize the engine runtime. Called once via ensure_initialized()."""

    @abstractmethod
    async def create_prover(self, server_dns: str, max_recv_data: int) -> Prover:
        """Create a prover for server_dns accepting at most max_recv_data bytes."""

    @abstractmethod
    async def create_presentation(self, output: NotarizationOutput, reveal: Commit) -> Presentation:
        """Build a presentation from notarization output."""

    @abstractmethod
    async def load_presentation(self, presentation_json: dict[str, Any]) -> Presentation:
        """Rebuild a presentation from its portable JSON form."""

    def notary_server(self, notary_url: str) -> NotaryServer:
        """Client for the notary at notary_url."""
        return NotaryServer(notary_url)

    async def ensure_initialized(self) -> None:
        """
        Run init() once; concurrent first callers share the same attempt.

        A failed or cancelled attempt is discarded so the next caller retries.
        """
        task = self._init_task
        if task is None or (task.done() and (task.cancelled() or task.exception() is not None)):
            task = asyncio.ensure_future(self.init())
            self._init_task = task
        await asyncio.shield(task)
