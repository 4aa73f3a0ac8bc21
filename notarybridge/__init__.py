"""
notarybridge - HTTPS notarization orchestration.

Bridges a local WebSocket rendezvous to remote TLS servers, computes which
transcript bytes to disclose, and tracks each proof from request to
verification.
"""

__version__ = "0.1.0"
