"""Error taxonomy shared by the tunnel API, session driver and proof service."""


class NotaryBridgeError(Exception):
    """Base class for all notarybridge errors."""

    http_status = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__doc__ or self.__class__.__name__)
        self.message = message or str(self.args[0])


class RequestValidationError(NotaryBridgeError):
    """Bad port range or malformed request body."""

    http_status = 400


class HostUnresolvable(NotaryBridgeError):
    """Remote host did not resolve."""

    http_status = 400


class TunnelConflict(NotaryBridgeError):
    """Tunnel with these parameters already exists."""

    http_status = 409


class TunnelNotFound(NotaryBridgeError):
    """Tunnel not found."""

    http_status = 404


class ProcessFailure(NotaryBridgeError):
    """Bridge process failed to start or exited unexpectedly."""

    http_status = 500


class MalformedTranscript(NotaryBridgeError):
    """Transcript could not be parsed as a complete HTTP message."""

    http_status = 422


class FragmentNotFound(NotaryBridgeError):
    """Configured fragment does not occur in the transcript."""

    http_status = 422


class VerificationFailure(NotaryBridgeError):
    """Presentation failed verification."""

    http_status = 400


class InvalidState(NotaryBridgeError):
    """Operation is not allowed in the record's current state."""

    http_status = 409


class RecordNotFound(NotaryBridgeError):
    """Proof record not found."""

    http_status = 404
