"""Transcript parsing, selective disclosure and notarization sessions."""

from .commit import build_commit, merge_ranges, subtract_ranges
from .engine import NotarizationEngine, Presentation, Prover
from .session import NotarizationSession, flatten_json_fields
from .transcript import MessageKind, TranscriptMessage, parse_http_message
from .verifier import EngineVerifier, RemoteVerifier, Verifier

__all__ = [
    "EngineVerifier",
    "MessageKind",
    "NotarizationEngine",
    "NotarizationSession",
    "Presentation",
    "Prover",
    "RemoteVerifier",
    "TranscriptMessage",
    "Verifier",
    "build_commit",
    "flatten_json_fields",
    "merge_ranges",
    "parse_http_message",
    "subtract_ranges",
]
