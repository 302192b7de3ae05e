# handshake.py

import base64
import hashlib
import re
import socket
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, BinaryIO, List, Optional
from urllib.parse import urlsplit

from ws_upgrade.errors import (
    AcceptFailed,
    HandshakeError,
    InvalidKey,
    MalformedRequest,
    MissingKey,
    ReadFailed,
    RequestTooLarge,
    WriteFailed,
)
from ws_upgrade.listener import ListenerHandle
from ws_upgrade.logs import resolve_logger

WEBSOCKET_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"
DEFAULT_MAX_REQUEST_BYTES = 8192
KEY_NONCE_LENGTH = 16

REQUEST_LINE_PATTERN = re.compile(r"GET (.*?) HTTP/", re.MULTILINE | re.IGNORECASE)
# [^\S\n] is \s without the newline, so the key never spills onto the next line
KEY_PATTERN = re.compile(
    r"Sec-WebSocket-Key:[^\S\n](.*?)$", re.MULTILINE | re.IGNORECASE
)


class HandshakeState(Enum):
    IDLE = "idle"
    ACCEPTED = "accepted"
    REQUEST_READ = "request_read"
    KEY_VALIDATED = "key_validated"
    RESPONSE_SENT = "response_sent"
    FAILED = "failed"


def derive_accept_token(key: str) -> str:
    """Compute Sec-WebSocket-Accept: base64 of the raw SHA-1 digest of key + GUID."""
    digest = hashlib.sha1(
        (key + WEBSOCKET_GUID).encode("utf-8", "surrogateescape")
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def validate_key(key: str) -> None:
    """Raise InvalidKey unless ``key`` is base64 of a 16-byte nonce."""
    try:
        nonce = base64.b64decode(key, validate=True)
    except ValueError as e:
        raise InvalidKey(f"Sec-WebSocket-Key is not valid base64: {key!r}") from e
    if len(nonce) != KEY_NONCE_LENGTH:
        raise InvalidKey(
            f"Sec-WebSocket-Key must decode to {KEY_NONCE_LENGTH} bytes, got {len(nonce)}"
        )


@dataclass
class HandshakeRequest:
    """Parsed upgrade request. ``lines`` keeps the header block in arrival order."""

    lines: List[str]
    path: str
    key: str
    uri: str = ""
    raw: str = ""

    def get_header(self, name: str) -> Optional[str]:
        """
        Return the value of the first line containing ``name`` (case-insensitive),
        i.e. the trimmed text after its first colon. None when no line matches.
        """
        needle = name.lower()
        for line in self.lines:
            if needle in line.lower():
                _, _, value = line.partition(":")
                return value.strip()
        return None


@dataclass(frozen=True)
class HandshakeResponse:
    accept: str

    @classmethod
    def for_key(cls, key: str) -> "HandshakeResponse":
        return cls(accept=derive_accept_token(key))

    def to_bytes(self) -> bytes:
        return (
            "HTTP/1.1 101 Switching Protocols\r\n"
            "Upgrade: websocket\r\n"
            "Connection: Upgrade\r\n"
            f"Sec-WebSocket-Accept: {self.accept}\r\n"
            "\r\n"
        ).encode("ascii")


@dataclass
class ConnectionHandle:
    """One accepted client socket and where its handshake got to."""

    sock: socket.socket
    peer: Any = None
    timeout: Optional[float] = None
    state: HandshakeState = HandshakeState.IDLE
    failure: Optional[str] = None
    _reader: Optional[BinaryIO] = field(default=None, repr=False)

    @property
    def reader(self) -> BinaryIO:
        """
        Buffered reader over the socket. The framing layer must keep reading
        from it, since it may already hold bytes sent right after the handshake.
        """
        if self._reader is None:
            self._reader = self.sock.makefile("rb")
        return self._reader

    def fail(self, reason: str) -> None:
        self.state = HandshakeState.FAILED
        self.failure = reason

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
        self.sock.close()


@dataclass
class UpgradedConnection:
    """A connection whose handshake completed, ready for framing."""

    connection: ConnectionHandle
    request: HandshakeRequest
    response: HandshakeResponse

    @property
    def path(self) -> str:
        return self.request.path

    @property
    def lines(self) -> List[str]:
        return self.request.lines

    @property
    def peer(self) -> Any:
        return self.connection.peer

    def get_header(self, name: str) -> Optional[str]:
        return self.request.get_header(name)

    def close(self) -> None:
        self.connection.close()


def read_request(reader: BinaryIO, max_bytes: int = DEFAULT_MAX_REQUEST_BYTES) -> str:
    """
    Read the request header block, one CRLF line at a time.

    Stops at end of input or at the blank line ending the headers. Each line
    ends with ``\\n`` in the returned text. Raises RequestTooLarge once more
    than ``max_bytes`` have been read.
    """
    lines = []
    consumed = 0
    while True:
        chunk = reader.readline(max_bytes - consumed + 1)
        if not chunk:
            break
        consumed += len(chunk)
        if consumed > max_bytes:
            partial = "".join(line + "\n" for line in lines)
            raise RequestTooLarge(
                f"Handshake request exceeds {max_bytes} bytes", request=partial
            )
        # Undecodable bytes survive as surrogates and encode back unchanged
        line = chunk.decode("utf-8", "surrogateescape").rstrip("\r\n")
        lines.append(line)
        if line == "":
            break
    return "".join(line + "\n" for line in lines)


def parse_request(text: str) -> HandshakeRequest:
    """Parse raw request text into a HandshakeRequest."""
    match = REQUEST_LINE_PATTERN.search(text)
    if not match:
        raise MalformedRequest(f"No GET in request: {text}", request=text)
    uri = match.group(1).strip()
    try:
        path = urlsplit(uri).path or "/"
    except ValueError as e:
        raise MalformedRequest(f"Invalid URI in request: {uri}; {e}", request=text) from e

    lines = text.split("\n")
    while lines and lines[-1] == "":
        lines.pop()

    match = KEY_PATTERN.search(text)
    key = match.group(1).strip() if match else ""
    if not key:
        raise MissingKey(f"Client had no Key in upgrade request: {text}", request=text)

    return HandshakeRequest(lines=lines, path=path, key=key, uri=uri, raw=text)


class HandshakeNegotiator:
    """Accepts clients from a listener and upgrades them to WebSocket."""

    def __init__(
        self,
        listener: ListenerHandle,
        timeout: Optional[float] = None,
        max_request_bytes: int = DEFAULT_MAX_REQUEST_BYTES,
        strict_key: bool = True,
        logger: Any = None,
    ):
        self.listener = listener
        self.timeout = timeout
        self.max_request_bytes = max_request_bytes
        self.strict_key = strict_key
        self.log = resolve_logger(logger)

    def accept(self) -> ConnectionHandle:
        """Block until a client connects. Raises AcceptFailed on timeout or I/O error."""
        try:
            sock, peer = self.listener.sock.accept()
        except OSError as e:
            message = f"Server failed to accept; {e}"
            self.log.error("{message}", message=message, port=self.listener.port)
            raise AcceptFailed(message) from e

        sock.settimeout(self.timeout)
        self.log.info(
            "Accepted connection on port {port}", port=self.listener.port, peer=peer
        )
        return ConnectionHandle(
            sock=sock, peer=peer, timeout=self.timeout, state=HandshakeState.ACCEPTED
        )

    def negotiate(self, connection: ConnectionHandle) -> UpgradedConnection:
        """Run the opening handshake on an accepted connection."""
        try:
            text = read_request(connection.reader, self.max_request_bytes)
        except HandshakeError as e:
            raise self._fail(connection, e)
        except OSError as e:
            raise self._fail(
                connection, ReadFailed(f"Failed to read handshake request; {e}")
            ) from e
        connection.state = HandshakeState.REQUEST_READ

        try:
            request = parse_request(text)
            if self.strict_key:
                validate_key(request.key)
        except HandshakeError as e:
            if e.request is None:
                e.request = text
            raise self._fail(connection, e)
        connection.state = HandshakeState.KEY_VALIDATED

        response = HandshakeResponse.for_key(request.key)
        try:
            connection.sock.sendall(response.to_bytes())
        except OSError as e:
            raise self._fail(
                connection, WriteFailed(f"Failed to write handshake response; {e}")
            ) from e
        connection.state = HandshakeState.RESPONSE_SENT

        self.log.debug("Handshake on {uri}", uri=request.uri, peer=connection.peer)
        return UpgradedConnection(
            connection=connection, request=request, response=response
        )

    def _fail(self, connection: ConnectionHandle, error: HandshakeError) -> HandshakeError:
        connection.fail(error.message)
        self.log.error(
            "{message}", message=error.message, peer=connection.peer, request=error.request
        )
        return error
