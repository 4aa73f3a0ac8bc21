import asyncio
import sys
from typing import Any

import pytest

from notarybridge.notary.engine import (
    NotarizationEngine,
    NotarizationOutput,
    Presentation,
    Prover,
    ProverRequest,
    Transcript,
    VerifierOutput,
)
from notarybridge.shared.config import Settings
from notarybridge.shared.errors import TunnelConflict, TunnelNotFound
from notarybridge.shared.models import Commit, Tunnel, TunnelSpec
from notarybridge.tunnels.base import TunnelService
from notarybridge.tunnels.manager import TunnelManager

SLEEPER = [sys.executable, "-c", "import time; time.sleep(60)"]

SENT = (
    b"GET /users/aaa/credit-score HTTP/1.1\r\n"
    b"Host: example.com\r\n"
    b"secret: test_secret\r\n"
    b"Connection: close\r\n"
    b"\r\n"
)

RESPONSE_BODY = b'{"a":{"b":1},"c":"x"}'


def http_response(body: bytes = RESPONSE_BODY, status: str = "200 OK", extra_headers: list[str] | None = None) -> bytes:
    lines = [
        f"HTTP/1.1 {status}",
        "Date: Mon, 01 Jan 2024 00:00:00 GMT",
        "Server: test",
        "Content-Type: application/json",
        *(extra_headers or []),
        f"Content-Length: {len(body)}",
    ]
    return ("\r\n".join(lines) + "\r\n\r\n").encode() + body


RECV = http_response()


class FakeNotary:
    def __init__(self) -> None:
        self.sessions: list[tuple[int | None, int | None]] = []

    async def session_url(self, max_sent_data=None, max_recv_data=None) -> str:
        self.sessions.append((max_sent_data, max_recv_data))
        return "wss://notary.test/notarize?sessionId=abc123"

    async def public_key(self) -> str:
        return "3059301306072a8648ce3d"


class FakePresentation(Presentation):
    def __init__(self, data: str, notary_url: str = "https://notary.test") -> None:
        self.data = data
        self.notary_url = notary_url

    async def json(self) -> dict[str, Any]:
        return {"version": "0.1.0-alpha.10", "data": self.data, "meta": {"notaryUrl": self.notary_url}}

    async def verify(self) -> VerifierOutput:
        if self.data == "corrupt":
            raise ValueError("signature mismatch")
        return VerifierOutput(server_name="example.com", time=1700000000, sent=SENT, recv=RECV)

    async def verifying_key(self) -> str:
        return "02a1b2c3"


class FakeProver(Prover):
    def __init__(self, engine: "FakeEngine", server_dns: str, max_recv_data: int) -> None:
        self.engine = engine
        self.server_dns = server_dns
        self.max_recv_data = max_recv_data
        self.session_url: str | None = None

    async def setup(self, session_url: str) -> None:
        self.session_url = session_url

    async def send_request(self, bridge_address: str, request: ProverRequest) -> Any:
        self.engine.requests.append((bridge_address, request))
        if self.engine.gate is not None:
            await self.engine.gate.wait()
        if self.engine.send_error is not None:
            raise self.engine.send_error
        return None

    async def transcript(self) -> Transcript:
        return Transcript(sent=self.engine.sent, recv=self.engine.recv)

    async def notarize(self, commit: Commit) -> NotarizationOutput:
        self.engine.commits.append(commit)
        return NotarizationOutput(
            attestation="a77e57",
            secrets="5ec2e7",
            notary_url="https://notary.test",
            bridge_address="ws://localhost:9001",
        )


class FakeEngine(NotarizationEngine):
    def __init__(self, sent: bytes = SENT, recv: bytes = RECV) -> None:
        self.sent = sent
        self.recv = recv
        self.init_calls = 0
        self.init_error: Exception | None = None
        self.send_error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.requests: list[tuple[str, ProverRequest]] = []
        self.commits: list[Commit] = []
        self.provers: list[FakeProver] = []
        self.notary = FakeNotary()

    async def init(self) -> None:
        self.init_calls += 1
        await asyncio.sleep(0.01)
        if self.init_error is not None:
            raise self.init_error

    async def create_prover(self, server_dns: str, max_recv_data: int) -> Prover:
        prover = FakeProver(self, server_dns, max_recv_data)
        self.provers.append(prover)
        return prover

    async def create_presentation(self, output: NotarizationOutput, reveal: Commit) -> Presentation:
        return FakePresentation(output.attestation, output.notary_url)

    async def load_presentation(self, presentation_json: dict[str, Any]) -> Presentation:
        return FakePresentation(presentation_json["data"])

    def notary_server(self, notary_url: str):
        return self.notary


class FakeBridgeProcess:
    """Stands in for BridgeProcess without starting an OS process."""

    next_pid = 40000

    def __init__(self, tunnel_id, argv, on_exit=None, stop_timeout=5.0) -> None:
        self.tunnel_id = tunnel_id
        self.argv = argv
        self.on_exit = on_exit
        self.pid: int | None = None
        self.running = False
        self.stopping = False

    async def start(self) -> None:
        FakeBridgeProcess.next_pid += 1
        self.pid = FakeBridgeProcess.next_pid
        self.running = True

    async def stop(self) -> None:
        self.stopping = True
        self.running = False

    def crash(self, code: int = 1) -> None:
        self.running = False
        if self.on_exit is not None:
            self.on_exit(self, code)


class FakeTunnelService(TunnelService):
    """In-memory tunnel service that can be told to keep conflicting."""

    def __init__(self, always_conflict: bool = False) -> None:
        self.always_conflict = always_conflict
        self.tunnels: dict[str, Tunnel] = {}
        self.create_calls = 0
        self.deleted: list[str] = []
        self._pid = 1000

    async def create(self, spec: TunnelSpec) -> Tunnel:
        self.create_calls += 1
        if self.always_conflict or spec.tunnel_id in self.tunnels:
            raise TunnelConflict("Tunnel with these parameters already exists")
        self._pid += 1
        tunnel = Tunnel(
            id=spec.tunnel_id,
            local_port=spec.local_port,
            remote_host=spec.remote_host,
            remote_port=spec.remote_port,
            bridge_address=f"ws://localhost:{spec.local_port}",
            pid=self._pid,
        )
        self.tunnels[tunnel.id] = tunnel
        return tunnel.model_copy()

    async def get(self, tunnel_id: str) -> Tunnel:
        if tunnel_id not in self.tunnels:
            raise TunnelNotFound(f"Tunnel {tunnel_id} not found")
        return self.tunnels[tunnel_id].model_copy()

    async def list(self) -> list[Tunnel]:
        return [tunnel.model_copy() for tunnel in self.tunnels.values()]

    async def update(self, tunnel_id: str, spec: TunnelSpec) -> Tunnel:
        await self.delete(tunnel_id)
        return await self.create(spec)

    async def delete(self, tunnel_id: str) -> None:
        if tunnel_id not in self.tunnels:
            raise TunnelNotFound(f"Tunnel {tunnel_id} not found")
        del self.tunnels[tunnel_id]
        self.deleted.append(tunnel_id)

    async def delete_all(self) -> None:
        self.tunnels.clear()


async def accept_all_hosts(host: str) -> bool:
    return not host.endswith(".invalid")


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.02) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        bridge_command=SLEEPER,
        bridge_host="localhost",
        conflict_retry_delay=0,
        process_stop_timeout=2.0,
        host_check_timeout=2.0,
    )


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def fake_manager(settings) -> TunnelManager:
    return TunnelManager(settings, resolver=accept_all_hosts, process_factory=FakeBridgeProcess)
