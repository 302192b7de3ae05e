# server.py

from typing import Optional

from ws_upgrade.config import ServerConfig
from ws_upgrade.errors import HandshakeError
from ws_upgrade.handshake import HandshakeNegotiator, UpgradedConnection
from ws_upgrade.listener import ListenerHandle, bind_listener
from ws_upgrade.logs import resolve_logger


class Server:
    """
    WebSocket server bootstrap.

    Binding happens in the constructor, so a Server that exists always owns a
    listening socket. Each call to accept() returns one upgraded client
    connection; nothing about that client is stored on the server.
    """

    def __init__(self, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()
        self.log = resolve_logger(self.config.logger)
        self.listener: ListenerHandle = bind_listener(
            self.config.port,
            upper_bound=self.config.port_upper_bound,
            host=self.config.host,
            backlog=self.config.backlog,
            accept_timeout=self.config.timeout,
            logger=self.log,
        )
        self.negotiator = HandshakeNegotiator(
            self.listener,
            timeout=self.config.timeout,
            max_request_bytes=self.config.max_request_bytes,
            strict_key=self.config.validate_key,
            logger=self.log,
        )

    @property
    def port(self) -> int:
        return self.listener.port

    def get_port(self) -> int:
        return self.port

    def accept(self) -> UpgradedConnection:
        """
        Accept one client and run its handshake.

        A failed handshake closes that client's socket and re-raises; the
        listener stays open for the next call.
        """
        connection = self.negotiator.accept()
        try:
            return self.negotiator.negotiate(connection)
        except HandshakeError:
            connection.close()
            raise

    def close(self) -> None:
        if not self.listener.closed:
            self.listener.close()
            self.log.info("Server socket on port {port} closed", port=self.port)

    def __enter__(self) -> "Server":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
