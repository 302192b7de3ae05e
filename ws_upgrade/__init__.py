from loguru import logger

from ws_upgrade.config import ServerConfig
from ws_upgrade.errors import (
    AcceptFailed,
    BindExhausted,
    HandshakeError,
    InvalidKey,
    MalformedRequest,
    MissingKey,
    ReadFailed,
    RequestTooLarge,
    WriteFailed,
)
from ws_upgrade.handshake import (
    ConnectionHandle,
    HandshakeNegotiator,
    HandshakeRequest,
    HandshakeResponse,
    HandshakeState,
    UpgradedConnection,
    derive_accept_token,
)
from ws_upgrade.listener import ListenerHandle, bind_listener
from ws_upgrade.server import Server

# Silent unless the application calls logger.enable("ws_upgrade")
logger.disable("ws_upgrade")
