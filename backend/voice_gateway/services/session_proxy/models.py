"""Session proxy models: client control messages and internal session events.

Control messages are JSON text frames the proxy itself sends to the client.
Everything else the client receives is an upstream frame relayed verbatim
(text stays text, binary stays binary) and is NOT represented here.

Protocol (proxy → client, text frames):
    proxy.connected - an upstream generation opened (once per (re)connect)
    error           - the upstream leg reported an error; the session continues

Session events are the only inputs to a session's dispatch loop. Connector
events carry the generation that produced them so a superseded generation's
late events can be recognised and dropped.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

Payload = str | bytes

UPSTREAM_ERROR_CODE = "ELEVENLABS_ERROR"
BUFFER_FULL_ERROR_CODE = "PROXY_BUFFER_FULL"


class ConnectorStatus(str, Enum):
    """Lifecycle states of one upstream connector generation."""

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"  # Terminal; a new generation is created to retry


class OverflowPolicy(str, Enum):
    """What the outbound buffer does when it is full."""

    DROP_OLDEST = "drop_oldest"
    REJECT = "reject"


# ---------------------------------------------------------------------------
# Proxy → client control messages
# ---------------------------------------------------------------------------


class ControlMessageType(str, Enum):
    PROXY_CONNECTED = "proxy.connected"
    ERROR = "error"


class ProxyConnectedMessage(BaseModel):
    """Sent when an upstream generation finishes its handshake."""

    type: ControlMessageType = ControlMessageType.PROXY_CONNECTED
    message: str = "Upstream connection established"


class UpstreamErrorDetail(BaseModel):
    message: str
    code: str = Field(default=UPSTREAM_ERROR_CODE, description="Machine-readable error code")


class ProxyErrorMessage(BaseModel):
    """Sent for every upstream error event. Does not end the session."""

    type: ControlMessageType = ControlMessageType.ERROR
    error: UpstreamErrorDetail


# ---------------------------------------------------------------------------
# Connector events (emitted by UpstreamConnector, consumed by SessionProxy)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConnectorOpened:
    generation: int


@dataclass(frozen=True)
class ConnectorMessage:
    generation: int
    payload: Payload


@dataclass(frozen=True)
class ConnectorError:
    generation: int
    detail: str


@dataclass(frozen=True)
class ConnectorClosed:
    generation: int
    code: int
    reason: str = ""


ConnectorEvent = ConnectorOpened | ConnectorMessage | ConnectorError | ConnectorClosed


# ---------------------------------------------------------------------------
# Session-local events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClientMessage:
    payload: Payload


@dataclass(frozen=True)
class ClientDisconnected:
    code: int = 1000


@dataclass(frozen=True)
class ReconnectDue:
    """Posted by the reconnect timer once the delay has elapsed."""

    generation: int


SessionEvent = ConnectorEvent | ClientMessage | ClientDisconnected | ReconnectDue


class SessionInfo(BaseModel):
    """Snapshot of one session for logging and status output."""

    session_id: str
    upstream_state: ConnectorStatus
    generation: int
    buffered_messages: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    messages_forwarded: int = 0
    messages_relayed: int = 0
    messages_dropped: int = 0
    reconnects: int = 0
