"""Test doubles for the session proxy: a client socket and scripted connectors."""

import asyncio
import json

from starlette.websockets import WebSocketState

from voice_gateway.services.session_proxy.exceptions import ConnectorStateError, UpstreamSendError
from voice_gateway.services.session_proxy.models import (
    ConnectorClosed,
    ConnectorError,
    ConnectorMessage,
    ConnectorOpened,
    ConnectorStatus,
)

CONTROL_TYPES = {"proxy.connected", "error"}


class FakeClientWebSocket:
    """Stands in for a Starlette WebSocket on the client side of a session."""

    def __init__(self) -> None:
        self._incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list = []
        self.client_state = WebSocketState.CONNECTED
        self.close_code: int | None = None
        self.close_reason: str | None = None

    def push(self, payload) -> None:
        key = "bytes" if isinstance(payload, bytes) else "text"
        self._incoming.put_nowait({"type": "websocket.receive", key: payload})

    def disconnect(self, code: int = 1000) -> None:
        self.client_state = WebSocketState.DISCONNECTED
        self._incoming.put_nowait({"type": "websocket.disconnect", "code": code})

    async def receive(self) -> dict:
        return await self._incoming.get()

    async def send_text(self, data: str) -> None:
        self.sent.append(data)

    async def send_bytes(self, data: bytes) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_code = code
        self.close_reason = reason
        self.disconnect(code)

    def control_messages(self) -> list[dict]:
        """JSON frames the proxy generated itself (connected / error)."""
        messages = []
        for frame in self.sent:
            if not isinstance(frame, str):
                continue
            try:
                data = json.loads(frame)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict) and data.get("type") in CONTROL_TYPES:
                messages.append(data)
        return messages


class FakeConnector:
    """Connector generation driven by the test instead of a network."""

    def __init__(self, generation: int, credential: str, on_event) -> None:
        self.generation = generation
        self.credential = credential
        self.on_event = on_event
        self.status = ConnectorStatus.IDLE
        self.sent: list = []
        self.connect_calls = 0
        self.close_calls = 0
        self.send_failures = 0

    def connect(self) -> None:
        self.connect_calls += 1
        self.status = ConnectorStatus.CONNECTING

    async def send(self, payload) -> None:
        if self.status == ConnectorStatus.CLOSED:
            raise ConnectorStateError(self.generation, "Cannot send while closed")
        if self.send_failures:
            self.send_failures -= 1
            raise UpstreamSendError(self.generation, "connection reset")
        self.sent.append(payload)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls += 1
        was_live = self.status in (ConnectorStatus.CONNECTING, ConnectorStatus.OPEN)
        self.status = ConnectorStatus.CLOSED
        if was_live:
            self.on_event(ConnectorClosed(self.generation, code, reason))

    # Test drivers

    def open(self) -> None:
        self.status = ConnectorStatus.OPEN
        self.on_event(ConnectorOpened(self.generation))

    def deliver(self, payload) -> None:
        self.on_event(ConnectorMessage(self.generation, payload))

    def drop(self, code: int = 1006, reason: str = "") -> None:
        self.status = ConnectorStatus.CLOSED
        self.on_event(ConnectorClosed(self.generation, code, reason))

    def fail(self, detail: str = "handshake refused") -> None:
        self.status = ConnectorStatus.CLOSED
        self.on_event(ConnectorError(self.generation, detail))
        self.on_event(ConnectorClosed(self.generation, 1006, detail))


class FakeConnectorFactory:
    def __init__(self) -> None:
        self.connectors: list[FakeConnector] = []

    def __call__(self, generation: int, credential: str, on_event) -> FakeConnector:
        connector = FakeConnector(generation, credential, on_event)
        self.connectors.append(connector)
        return connector

    @property
    def latest(self) -> FakeConnector:
        return self.connectors[-1]


async def wait_for(predicate, timeout: float = 1.0) -> None:
    """Poll until predicate() is true, yielding to the event loop."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)
