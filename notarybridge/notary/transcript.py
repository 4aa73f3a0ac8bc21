"""
Strict HTTP/1.x transcript parser.

Notarization commits byte ranges of the raw transcript, so a message is
either parsed completely or rejected; there is no partial result.
"""

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict

from notarybridge.shared.errors import MalformedTranscript

CRLF = b"\r\n"
HEADER_TERMINATOR = b"\r\n\r\n"

_REQUEST_LINE = re.compile(r"^[!#$%&'*+.^_`|~0-9A-Za-z-]+ \S+ HTTP/\d\.\d$")
_STATUS_LINE = re.compile(r"^HTTP/\d\.\d (\d{3})(?: .*)?$")
_TOKEN = re.compile(r"^[!#$%&'*+.^_`|~0-9A-Za-z-]+$")
_CHUNK_SIZE = re.compile(rb"^[0-9A-Fa-f]+$")


class MessageKind(str, Enum):
    REQUEST = "request"
    RESPONSE = "response"


class TranscriptMessage(BaseModel):
    """A fully parsed HTTP message."""

    model_config = ConfigDict(frozen=True)

    start_line: str
    headers: tuple[str, ...]
    body_chunks: tuple[bytes, ...]

    @property
    def body(self) -> bytes:
        return b"".join(self.body_chunks)

    def header_pairs(self) -> list[tuple[str, str]]:
        return list(zip(self.headers[::2], self.headers[1::2]))


def parse_http_message(buffer: bytes, kind: MessageKind | str) -> TranscriptMessage:
    """
    Parse a complete HTTP request or response.

    Raises:
        MalformedTranscript: If the buffer is not exactly one well-formed message
    """
    kind = MessageKind(kind)
    label = kind.value.upper()

    head_end = buffer.find(HEADER_TERMINATOR)
    if head_end < 0:
        raise MalformedTranscript(f"Could not parse {label}: missing header terminator")

    head = buffer[:head_end].decode("utf-8", errors="replace")
    lines = head.split("\r\n")
    first_line = lines[0]

    status = _check_start_line(first_line, kind, label)
    headers = _parse_headers(lines[1:], label)

    rest = buffer[head_end + len(HEADER_TERMINATOR):]
    chunks = _parse_body(rest, headers, kind, status, label)

    return TranscriptMessage(
        start_line=first_line + "\r\n",
        headers=tuple(headers),
        body_chunks=tuple(chunks),
    )


def _check_start_line(line: str, kind: MessageKind, label: str) -> int | None:
    if kind is MessageKind.REQUEST:
        if not _REQUEST_LINE.match(line):
            raise MalformedTranscript(f"Could not parse {label}: bad request line {line!r}")
        return None

    match = _STATUS_LINE.match(line)
    if not match:
        raise MalformedTranscript(f"Could not parse {label}: bad status line {line!r}")
    return int(match.group(1))


def _parse_headers(lines: list[str], label: str) -> list[str]:
    headers: list[str] = []
    for line in lines:
        name, sep, value = line.partition(":")
        if not sep or not _TOKEN.match(name):
            raise MalformedTranscript(f"Could not parse {label}: bad header line {line!r}")
        headers.extend((name, value.strip(" \t")))
    return headers


def _header_values(headers: list[str], name: str) -> list[str]:
    return [value for key, value in zip(headers[::2], headers[1::2]) if key.lower() == name]


def _parse_body(
    rest: bytes,
    headers: list[str],
    kind: MessageKind,
    status: int | None,
    label: str,
) -> list[bytes]:
    if status is not None and (100 <= status < 200 or status in (204, 304)):
        if rest:
            raise MalformedTranscript(f"Could not parse {label}: unexpected body for status {status}")
        return []

    transfer_encoding = ",".join(_header_values(headers, "transfer-encoding")).lower()
    codings = [coding.strip() for coding in transfer_encoding.split(",") if coding.strip()]
    if codings and codings[-1] == "chunked":
        return _parse_chunked(rest, label)

    lengths = {value.strip() for value in _header_values(headers, "content-length")}
    if lengths:
        if len(lengths) != 1:
            raise MalformedTranscript(f"Could not parse {label}: conflicting Content-Length headers")
        declared = lengths.pop()
        if not declared.isdigit():
            raise MalformedTranscript(f"Could not parse {label}: bad Content-Length {declared!r}")
        length = int(declared)
        if len(rest) < length:
            raise MalformedTranscript(f"Could not parse {label}: body truncated ({len(rest)} of {length} bytes)")
        if len(rest) > length:
            raise MalformedTranscript(f"Could not parse {label}: {len(rest) - length} trailing bytes after body")
        return [rest] if rest else []

    if kind is MessageKind.REQUEST:
        if rest:
            raise MalformedTranscript(f"Could not parse {label}: body without Content-Length")
        return []

    # Close-delimited response body.
    return [rest] if rest else []


def _parse_chunked(data: bytes, label: str) -> list[bytes]:
    chunks: list[bytes] = []
    pos = 0
    while True:
        line_end = data.find(CRLF, pos)
        if line_end < 0:
            raise MalformedTranscript(f"Could not parse {label}: truncated chunk size line")

        size_field = data[pos:line_end].split(b";", 1)[0].strip()
        if not _CHUNK_SIZE.match(size_field):
            raise MalformedTranscript(f"Could not parse {label}: bad chunk size {size_field!r}")
        size = int(size_field, 16)
        pos = line_end + len(CRLF)

        if size == 0:
            break

        chunk_end = pos + size
        if chunk_end + len(CRLF) > len(data) or data[chunk_end:chunk_end + len(CRLF)] != CRLF:
            raise MalformedTranscript(f"Could not parse {label}: truncated chunk")
        chunks.append(data[pos:chunk_end])
        pos = chunk_end + len(CRLF)

    # Trailer section, terminated by an empty line.
    while True:
        line_end = data.find(CRLF, pos)
        if line_end < 0:
            raise MalformedTranscript(f"Could not parse {label}: truncated chunked trailer")
        line = data[pos:line_end]
        pos = line_end + len(CRLF)
        if not line:
            break

    if pos != len(data):
        raise MalformedTranscript(f"Could not parse {label}: {len(data) - pos} trailing bytes after body")
    return chunks
