# listener.py

import socket
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Any, Optional

from ws_upgrade.errors import BindExhausted
from ws_upgrade.logs import resolve_logger

DEFAULT_HOST = "0.0.0.0"
DEFAULT_UPPER_BOUND = 10000
MAX_PORT = 65535


@dataclass
class ListenerHandle:
    """A bound, listening socket owned by one server."""

    sock: socket.socket
    host: str
    port: int
    accept_timeout: Optional[float] = None

    @property
    def closed(self) -> bool:
        return self.sock.fileno() == -1

    def close(self) -> None:
        self.sock.close()


def _open_listener(host: str, port: int, backlog: int) -> socket.socket:
    """Bind and listen on one port; the socket is closed if either step fails."""
    with ExitStack() as stack:
        sock = stack.enter_context(socket.socket(socket.AF_INET, socket.SOCK_STREAM))
        # Allow immediate reuse of the port after restart
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(backlog)
        stack.pop_all()
    return sock


def bind_listener(
    port: int,
    upper_bound: int = DEFAULT_UPPER_BOUND,
    host: str = DEFAULT_HOST,
    backlog: int = 5,
    accept_timeout: Optional[float] = None,
    logger: Any = None,
) -> ListenerHandle:
    """
    Bind a listening TCP socket, starting at ``port`` and moving up one port
    at a time while ``port < upper_bound``.

    The preferred port is always tried, even when it is not below
    ``upper_bound``. Raises BindExhausted with the last error message when
    no attempt succeeds.
    """
    log = resolve_logger(logger)
    last_error = ""
    candidate = port
    stop = min(max(upper_bound, port + 1), MAX_PORT + 1)

    while candidate < stop:
        socket_name = f"tcp://{host}:{candidate}"
        log.debug("Attempt server socket on {name}", name=socket_name)
        try:
            sock = _open_listener(host, candidate, backlog)
        except OSError as e:
            last_error = str(e)
            log.warning(
                "Failed server socket on {name}: {error}", name=socket_name, error=last_error
            )
            candidate += 1
            continue

        sock.settimeout(accept_timeout)
        log.info("Server socket on {name}", name=socket_name, port=candidate)
        return ListenerHandle(
            sock=sock, host=host, port=candidate, accept_timeout=accept_timeout
        )

    message = f"Could not open server socket; {last_error}"
    log.error("{message}", message=message)
    raise BindExhausted(message, last_error=last_error)
