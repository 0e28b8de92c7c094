"""Session proxy service - duplex relay between a client and the provider WebSocket.

Public API:
    - SessionProxy: One client connection plus its upstream generations and buffer.
    - SessionRegistry: Tracks live sessions, enforces the session cap.
    - UpstreamConnector / UpstreamConnectorFactory: One provider WebSocket per generation.
    - OutboundBuffer: Bounded FIFO for frames sent while upstream is not open.
    - resolve_credential: API key lookup from query string or header.
    - Control message models: ProxyConnectedMessage, ProxyErrorMessage.
"""

from voice_gateway.services.session_proxy.buffer import BufferedMessage, OutboundBuffer
from voice_gateway.services.session_proxy.connector import UpstreamConnector, UpstreamConnectorFactory
from voice_gateway.services.session_proxy.exceptions import (
    BufferOverflowError,
    ConnectorStateError,
    MissingCredentialError,
    SessionCapacityError,
    SessionProxyError,
    UpstreamSendError,
)
from voice_gateway.services.session_proxy.models import (
    ConnectorStatus,
    ControlMessageType,
    OverflowPolicy,
    ProxyConnectedMessage,
    ProxyErrorMessage,
    SessionInfo,
    UpstreamErrorDetail,
)
from voice_gateway.services.session_proxy.proxy import SessionProxy, resolve_credential
from voice_gateway.services.session_proxy.registry import SessionRegistry

__all__ = [
    "BufferOverflowError",
    "BufferedMessage",
    "ConnectorStateError",
    "ConnectorStatus",
    "ControlMessageType",
    "MissingCredentialError",
    "OutboundBuffer",
    "OverflowPolicy",
    "ProxyConnectedMessage",
    "ProxyErrorMessage",
    "SessionCapacityError",
    "SessionInfo",
    "SessionProxy",
    "SessionProxyError",
    "SessionRegistry",
    "UpstreamConnector",
    "UpstreamConnectorFactory",
    "UpstreamErrorDetail",
    "UpstreamSendError",
    "resolve_credential",
]
