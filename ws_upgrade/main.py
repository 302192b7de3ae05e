import argparse
import socket
import sys
import time

from loguru import logger

from ws_upgrade.config import (
    WS_HOST,
    WS_MAX_REQUEST_BYTES,
    WS_PORT,
    WS_PORT_UPPER_BOUND,
    WS_TIMEOUT,
    WS_VALIDATE_KEY,
    ServerConfig,
)
from ws_upgrade.errors import AcceptFailed, BindExhausted, HandshakeError
from ws_upgrade.server import Server

ACCEPT_RETRY_DELAY = 1.0


def create_parser() -> argparse.ArgumentParser:
    """
    Create the argument parser for the handshake server.
    Returns:
        parser (argparse.ArgumentParser): The argparse parser object.
    """
    parser = argparse.ArgumentParser(
        description="Accept WebSocket clients and complete the opening handshake."
    )

    # Add the "host" argument
    parser.add_argument(
        "--host", type=str, default=WS_HOST, help="Address to listen on (default: 0.0.0.0)"
    )

    # Add the "port" argument
    parser.add_argument(
        "--port",
        type=int,
        default=WS_PORT,
        help="Preferred port; the next free port is used when it is taken (default: 8000)",
    )

    parser.add_argument(
        "--port-upper-bound",
        type=int,
        default=WS_PORT_UPPER_BOUND,
        help="Stop looking for a free port before this one (default: 10000)",
    )

    # Add the "timeout" argument
    parser.add_argument(
        "--timeout",
        type=float,
        default=WS_TIMEOUT,
        help="Accept and socket I/O timeout in seconds (default: platform default)",
    )

    parser.add_argument(
        "--max-request-bytes",
        type=int,
        default=WS_MAX_REQUEST_BYTES,
        help="Largest handshake request accepted (default: 8192)",
    )

    parser.add_argument(
        "--no-validate-key",
        dest="validate_key",
        action="store_false",
        default=WS_VALIDATE_KEY,
        help="Accept any non-empty Sec-WebSocket-Key without checking it",
    )

    # Add the "log-level" argument
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Minimum level written to stderr (default: INFO)",
    )

    return parser


def run_server(server: Server) -> None:
    logger.info(f"Waiting for WebSocket clients on port {server.port}")

    while True:
        try:
            client = server.accept()
        except AcceptFailed as e:
            if server.listener.closed:
                raise
            if not isinstance(e.__cause__, socket.timeout):
                # Sleep briefly to avoid a busy loop on errors such as EMFILE
                time.sleep(ACCEPT_RETRY_DELAY)
            continue
        except HandshakeError as e:
            logger.warning(f"Handshake rejected: {e.message.splitlines()[0]}")
            continue

        logger.info(f"Upgraded {client.peer} on {client.path}")
        for line in client.lines[1:]:
            logger.debug(f"  {line}")
        # No framing layer here: close once the handshake is complete
        client.close()


def main(argv=None) -> int:
    args = create_parser().parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level=args.log_level)
    logger.enable("ws_upgrade")

    try:
        config = ServerConfig(
            host=args.host,
            port=args.port,
            port_upper_bound=args.port_upper_bound,
            timeout=args.timeout,
            max_request_bytes=args.max_request_bytes,
            validate_key=args.validate_key,
            logger=logger,
        )
        server = Server(config)
    except (ValueError, BindExhausted) as e:
        logger.error(f"Failed to start server: {e}")
        return 1

    with server:
        try:
            run_server(server)
        except KeyboardInterrupt:
            logger.info("Server stopped by user.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
