# errors.py

from typing import Optional


class HandshakeError(ConnectionError):
    """Base class for failures while bringing a WebSocket connection up."""

    def __init__(self, message: str, request: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.request = request


class BindExhausted(HandshakeError):
    """No port in the allowed range could be bound. The server cannot start."""

    def __init__(self, message: str, last_error: str = ""):
        super().__init__(message)
        self.last_error = last_error


class AcceptFailed(HandshakeError):
    """accept() failed or timed out. The listener is still usable."""


class ReadFailed(HandshakeError):
    """The handshake request could not be read from the connection."""


class MalformedRequest(HandshakeError):
    """The request has no ``GET <uri> HTTP/`` line."""


class RequestTooLarge(MalformedRequest):
    """The request grew past the configured byte limit before it ended."""


class MissingKey(HandshakeError):
    """The request has no Sec-WebSocket-Key header."""


class InvalidKey(HandshakeError):
    """The Sec-WebSocket-Key is not base64 of a 16-byte nonce."""


class WriteFailed(HandshakeError):
    """The 101 response could not be written."""
