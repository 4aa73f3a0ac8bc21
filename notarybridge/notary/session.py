"""Drives one notarization session from request to shareable presentation."""

import json
from typing import Any

from notarybridge.notary.commit import build_commit
from notarybridge.notary.engine import NotarizationEngine, ProverRequest
from notarybridge.notary.transcript import MessageKind, TranscriptMessage, parse_http_message
from notarybridge.shared.config import Settings, get_settings
from notarybridge.shared.logging import get_logger
from notarybridge.shared.models import NotarizationCall, NotarizationResult

logger = get_logger(__name__)

# Header pairs before this offset (typically date/server bookkeeping) stay redacted.
REVEAL_HEADER_OFFSET = 2
MAX_REVEAL_HEADERS = 32


def flatten_json_fields(obj: Any) -> list[str]:
    """
    Turn a JSON document into `"key":value` fragments for disclosure.

    Nested objects are flattened (their own key is dropped), strings keep
    their quotes, other scalars use their JSON spelling. Scalars inside
    arrays have no key and produce no fragment.
    """
    fragments: list[str] = []
    if isinstance(obj, dict):
        for key, value in obj.items():
            if isinstance(value, (dict, list)):
                fragments.extend(flatten_json_fields(value))
            else:
                fragments.append(f"{json.dumps(key, ensure_ascii=False)}:{json.dumps(value, ensure_ascii=False)}")
    elif isinstance(obj, list):
        for item in obj:
            if isinstance(item, (dict, list)):
                fragments.extend(flatten_json_fields(item))
    return fragments


def extract_header_lines(
    message: TranscriptMessage,
    offset: int = REVEAL_HEADER_OFFSET,
    limit: int | None = MAX_REVEAL_HEADERS,
) -> list[str]:
    """Header lines ("Name: value\\r\\n") eligible for disclosure."""
    pairs = message.header_pairs()[offset:]
    if limit is not None:
        pairs = pairs[:limit]
    return [f"{name}: {value}\r\n" for name, value in pairs if name and value]


def decode_body(raw: bytes) -> Any:
    """Parse a response body as JSON, wrapping anything else as rawResponse."""
    text = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except ValueError:
        logger.warning("Response body is not JSON, using raw body instead")
        return {"rawResponse": text}


def _request_body(body: str) -> Any:
    if body == "":
        return ""
    try:
        return json.loads(body)
    except ValueError:
        return body


class NotarizationSession:
    """Runs notarization sessions against one engine."""

    def __init__(self, engine: NotarizationEngine, settings: Settings | None = None) -> None:
        self.engine = engine
        self.settings = settings or get_settings()

    async def run(self, call: NotarizationCall) -> NotarizationResult:
        """
        Produce a presentation for one HTTP exchange.

        Any failure other than a non-JSON response body propagates; the
        caller owns the tunnel and must release it.
        """
        logger.info(f"Starting notarization of {call.request.method.value} {call.request.url} via {call.bridge_address}")

        await self.engine.ensure_initialized()

        notary = self.engine.notary_server(call.notary_url)
        prover = await self.engine.create_prover(call.server_dns, call.max_recv_data)

        session_url = await notary.session_url(self.settings.max_sent_data, call.max_recv_data)
        await prover.setup(session_url)

        await prover.send_request(
            call.bridge_address,
            ProverRequest(
                url=call.request.url,
                method=call.request.method,
                headers=call.request.headers,
                body=_request_body(call.request.body),
            ),
        )

        transcript = await prover.transcript()
        logger.info(f"Transcript received, sent {len(transcript.sent)} bytes, received {len(transcript.recv)} bytes")

        parse_http_message(transcript.sent, MessageKind.REQUEST)
        response = parse_http_message(transcript.recv, MessageKind.RESPONSE)
        logger.debug(f"Response info: {response.start_line.strip()}")

        body = decode_body(response.body)
        reveal = [response.start_line, *extract_header_lines(response), *flatten_json_fields(body)]

        commit = build_commit(
            transcript.sent,
            transcript.recv,
            call.secret_fragments,
            reveal,
            strict_reveal=self.settings.strict_reveal,
        )

        output = await prover.notarize(commit)
        logger.info("Notarization completed")

        presentation = await self.engine.create_presentation(output, commit)
        presentation_json = await presentation.json()

        return NotarizationResult(
            response_body=body,
            presentation=presentation,
            presentation_json=presentation_json,
        )
