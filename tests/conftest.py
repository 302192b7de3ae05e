import socket

import pytest

from ws_upgrade.handshake import ConnectionHandle, HandshakeState

RFC_KEY = "dGhlIHNhbXBsZSBub25jZQ=="
RFC_ACCEPT = "s3pPLMBiTxaQ9kYGzzhZRbK+xOo="


def build_request(path="/chat", key=RFC_KEY, extra_headers=()):
    lines = [f"GET {path} HTTP/1.1", "Host: example.com:8080", "Upgrade: websocket"]
    lines.append("Connection: Upgrade")
    if key is not None:
        lines.append(f"Sec-WebSocket-Key: {key}")
    lines.append("Sec-WebSocket-Version: 13")
    lines.extend(extra_headers)
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8", "surrogateescape")


def read_response(sock: socket.socket) -> bytes:
    data = b""
    while b"\r\n\r\n" not in data:
        chunk = sock.recv(1024)
        if not chunk:
            break
        data += chunk
    return data


class RecordingLogger:
    """Collects log events as (level, rendered message, context)."""

    def __init__(self):
        self.records = []

    def bind(self, **kwargs):
        return self

    def _record(self, level, message, args, kwargs):
        self.records.append((level, message.format(*args, **kwargs), kwargs))

    def debug(self, message, /, *args, **kwargs):
        self._record("DEBUG", message, args, kwargs)

    def info(self, message, /, *args, **kwargs):
        self._record("INFO", message, args, kwargs)

    def warning(self, message, /, *args, **kwargs):
        self._record("WARNING", message, args, kwargs)

    def error(self, message, /, *args, **kwargs):
        self._record("ERROR", message, args, kwargs)

    def levels(self):
        return [level for level, _, _ in self.records]

    def messages(self, level):
        return [message for lvl, message, _ in self.records if lvl == level]


@pytest.fixture
def recording_logger():
    return RecordingLogger()


@pytest.fixture
def socket_pair():
    """(server side ConnectionHandle, client socket) joined by a socketpair."""
    server_sock, client_sock = socket.socketpair()
    server_sock.settimeout(2)
    client_sock.settimeout(2)
    connection = ConnectionHandle(
        sock=server_sock, peer="socketpair", timeout=2, state=HandshakeState.ACCEPTED
    )
    yield connection, client_sock
    connection.close()
    client_sock.close()


@pytest.fixture
def busy_port():
    """A port on 127.0.0.1 held by another listening socket."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(("127.0.0.1", 0))
        sock.listen(1)
        yield sock.getsockname()[1]


@pytest.fixture
def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return port
