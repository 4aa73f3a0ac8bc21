"""Data models for tunnels, notarization sessions and proof records."""

import copy
import hashlib
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Port = Annotated[int, Field(ge=1, le=65535, description="TCP port (1-65535)")]


class WireModel(BaseModel):
    """Base model serialised with camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def generate_tunnel_id(local_port: int, remote_host: str, remote_port: int) -> str:
    """Derive the tunnel id: identical specs always map to the same id."""
    digest = hashlib.sha256(remote_host.encode("utf-8")).hexdigest()[:8]
    return f"{local_port}-{digest}-{remote_port}"


class TunnelSpec(WireModel):
    """Local rendezvous port bridged to a remote TCP endpoint."""

    local_port: Port
    remote_host: Annotated[str, Field(min_length=1, description="Remote DNS name or address")]
    remote_port: Port

    @property
    def tunnel_id(self) -> str:
        return generate_tunnel_id(self.local_port, self.remote_host, self.remote_port)

    def matches(self, other: "TunnelSpec") -> bool:
        """True if both describe the same (local port, remote host, remote port) triple."""
        return (
            self.local_port == other.local_port
            and self.remote_host == other.remote_host
            and self.remote_port == other.remote_port
        )


class Tunnel(TunnelSpec):
    """A registered tunnel as exposed by the tunnel API."""

    id: Annotated[str, Field(description="Deterministic tunnel id")]
    bridge_address: Annotated[str, Field(description="URL clients connect to, e.g. ws://localhost:9001")]
    pid: Annotated[int, Field(description="Bridge process id, -1 if unknown")] = -1


class ByteRange(WireModel):
    """Half-open byte range [start, end) over one direction of a transcript."""

    model_config = ConfigDict(frozen=True)

    start: Annotated[int, Field(ge=0)]
    end: Annotated[int, Field(ge=0)]

    @model_validator(mode="after")
    def _check_order(self) -> "ByteRange":
        if self.end < self.start:
            raise ValueError(f"range end {self.end} precedes start {self.start}")
        return self

    @property
    def length(self) -> int:
        return self.end - self.start


class Commit(WireModel):
    """Ranges to reveal per direction; everything else stays redacted."""

    model_config = ConfigDict(frozen=True)

    sent: list[ByteRange] = []
    recv: list[ByteRange] = []


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


class HttpRequestSpec(WireModel):
    """HTTP request to transmit through the bridge."""

    url: str
    method: HttpMethod = HttpMethod.GET
    headers: dict[str, str] = {}
    body: str = ""


class NotarizationCall(WireModel):
    """Everything the session driver needs to produce one proof."""

    notary_url: str
    server_dns: str
    bridge_address: str
    request: HttpRequestSpec
    max_recv_data: Annotated[int, Field(gt=0)] = 12048
    secret_fragments: list[str] = ["secret: test_secret"]


class NotarizationResult(WireModel):
    """Output of a completed notarization session."""

    model_config = ConfigDict(frozen=True)

    response_body: Any
    presentation: Annotated[Any, Field(exclude=True, description="Engine presentation handle")] = None
    presentation_json: dict[str, Any]

    def __deepcopy__(self, memo: dict[int, Any] | None = None) -> "NotarizationResult":
        # The presentation handle belongs to the engine and is shared, never cloned.
        return self.model_copy(
            update={
                "response_body": copy.deepcopy(self.response_body, memo),
                "presentation_json": copy.deepcopy(self.presentation_json, memo),
            }
        )


class VerificationResult(WireModel):
    """Outcome of verifying a presentation against a notary key."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool = True
    server_name: str
    verifying_key: str
    notary_key: str | None = None
    time: int | str | None = None
    sent: str = ""
    recv: str = ""


class ProofStatus(str, Enum):
    SENDING = "Sending"
    RECEIVED = "Received"
    PENDING = "Pending"
    VERIFIED = "Verified"
    FAILED = "Failed"
    ERROR = "Error"


class ProofFormData(WireModel):
    """Request parameters submitted by a caller."""

    url: str
    notary_url: str
    remote_dns: str
    remote_port: Port = 443
    local_port: Port
    headers: dict[str, str] = {}
    body: str = ""
    method: HttpMethod = HttpMethod.GET

    @field_validator("headers", mode="before")
    @classmethod
    def _parse_headers(cls, value: Any) -> Any:
        # Forms submit headers as JSON text.
        if isinstance(value, str):
            if not value.strip():
                return {}
            return json.loads(value)
        return value

    def tunnel_request(self) -> TunnelSpec:
        return TunnelSpec(
            local_port=self.local_port,
            remote_host=self.remote_dns,
            remote_port=self.remote_port,
        )


class ProofRecord(WireModel):
    """Lifecycle of one notarization request."""

    id: str
    form_data: ProofFormData
    status: ProofStatus = ProofStatus.SENDING
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tunnel_request: TunnelSpec
    tunnel_result: Tunnel | None = None
    notarization_call: NotarizationCall | None = None
    notarization_result: NotarizationResult | None = None
    verification_result: VerificationResult | None = None
    error: str | None = None
    error_type: str | None = None
    attempts: int = 0

    def fail(self, status: ProofStatus, exc: BaseException) -> None:
        self.status = status
        self.error = str(exc) or exc.__class__.__name__
        self.error_type = exc.__class__.__name__

    def clear_error(self) -> None:
        self.error = None
        self.error_type = None
