import socket

import pytest

from conftest import RFC_ACCEPT, build_request, read_response
from ws_upgrade.config import ServerConfig
from ws_upgrade.errors import AcceptFailed, BindExhausted, MalformedRequest
from ws_upgrade.handshake import HandshakeState
from ws_upgrade.main import create_parser
from ws_upgrade.server import Server


@pytest.fixture
def server(free_port, recording_logger):
    config = ServerConfig(host="127.0.0.1", port=free_port, timeout=2, logger=recording_logger)
    with Server(config) as server:
        yield server


def connect(server):
    return socket.create_connection(("127.0.0.1", server.port), timeout=2)


def test_accept_and_upgrade(server, recording_logger):
    with connect(server) as client:
        client.sendall(build_request("/chat"))
        upgraded = server.accept()
        try:
            response = read_response(client)
        finally:
            upgraded.close()

    assert upgraded.path == "/chat"
    assert upgraded.get_header("host") == "example.com:8080"
    assert upgraded.connection.state is HandshakeState.RESPONSE_SENT
    assert upgraded.connection.sock.fileno() == -1
    assert f"Sec-WebSocket-Accept: {RFC_ACCEPT}".encode() in response
    assert f"Accepted connection on port {server.port}" in recording_logger.messages("INFO")


def test_each_client_gets_its_own_request(server):
    results = []
    for path in ("/one", "/two"):
        with connect(server) as client:
            client.sendall(build_request(path))
            upgraded = server.accept()
            read_response(client)
            results.append(upgraded)
            upgraded.close()

    assert [upgraded.path for upgraded in results] == ["/one", "/two"]
    assert results[0].request is not results[1].request


def test_failed_handshake_keeps_listener(server):
    with connect(server) as client:
        client.sendall(b"HELLO\r\n\r\n")
        with pytest.raises(MalformedRequest):
            server.accept()
        # the rejected client's socket was closed by the server
        assert client.recv(1024) == b""

    with connect(server) as client:
        client.sendall(build_request("/again"))
        upgraded = server.accept()
        upgraded.close()
    assert upgraded.path == "/again"


def test_accept_timeout(free_port):
    config = ServerConfig(host="127.0.0.1", port=free_port, timeout=0.05)
    with Server(config) as server:
        with pytest.raises(AcceptFailed):
            server.accept()
        assert not server.listener.closed


def test_port_accessors_report_bound_port(busy_port):
    config = ServerConfig(host="127.0.0.1", port=busy_port, port_upper_bound=busy_port + 20)
    with Server(config) as server:
        assert server.port == server.get_port()
        assert server.port != busy_port


def test_bind_exhausted_aborts_construction(busy_port):
    config = ServerConfig(host="127.0.0.1", port=busy_port, port_upper_bound=busy_port + 1)
    with pytest.raises(BindExhausted):
        Server(config)


def test_close_is_idempotent(free_port):
    server = Server(ServerConfig(host="127.0.0.1", port=free_port))
    server.close()
    server.close()
    assert server.listener.closed


class TestServerConfig:
    def test_defaults(self):
        config = ServerConfig()
        assert config.port == 8000
        assert config.port_upper_bound == 10000
        assert config.fragment_size == 4096
        assert config.filter == ["text", "binary"]
        assert config.return_obj is False
        assert config.validate_key is True

    def test_timeout_defaults_to_socket_default(self, monkeypatch):
        monkeypatch.setattr(socket, "getdefaulttimeout", lambda: 7.0)
        assert ServerConfig(timeout=None).timeout == 7.0

    @pytest.mark.parametrize(
        "kwargs",
        [{"port": 0}, {"port": 70000}, {"timeout": -1}, {"max_request_bytes": 0}],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            ServerConfig(**kwargs)


def test_parser_defaults():
    args = create_parser().parse_args([])
    assert args.port == 8000
    assert args.validate_key is True
    assert args.log_level == "INFO"


def test_parser_options():
    args = create_parser().parse_args(
        ["--port", "9001", "--timeout", "1.5", "--no-validate-key", "--log-level", "DEBUG"]
    )
    assert args.port == 9001
    assert args.timeout == 1.5
    assert args.validate_key is False
    assert args.log_level == "DEBUG"


def test_invalid_uri_closes_client_and_keeps_listener(server):
    with connect(server) as client:
        client.sendall(build_request("http://[::1/chat"))
        with pytest.raises(MalformedRequest):
            server.accept()
        assert client.recv(1024) == b""

    with connect(server) as client:
        client.sendall(build_request("/after"))
        upgraded = server.accept()
        upgraded.close()
    assert upgraded.path == "/after"
