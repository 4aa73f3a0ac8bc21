"""Proof record lifecycle."""

from .service import ProofService, Subscriber, create_proof_service

__all__ = ["ProofService", "Subscriber", "create_proof_service"]
