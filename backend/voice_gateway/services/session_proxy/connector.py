"""Upstream session connector - one generation of the provider WebSocket.

A connector is created per connection attempt and never reused:

    idle → connecting → open → closed
              └──────────────→ closed

``closed`` is terminal. The owning session creates a fresh connector (the
next generation) to retry. Lifecycle is reported through a plain callback
with generation-stamped events; the connector holds no reference to its
session.

Events, in the order they can occur:
    ConnectorOpened            - handshake succeeded
    ConnectorMessage(payload)  - one inbound frame, verbatim, in arrival order
    ConnectorError(detail)     - handshake failure or abnormal connection loss,
                                 always followed by ConnectorClosed
    ConnectorClosed(code, reason)
"""

import asyncio
import logging
from collections.abc import Callable

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, WebSocketException

from voice_gateway.services.session_proxy.exceptions import ConnectorStateError, UpstreamSendError
from voice_gateway.services.session_proxy.models import (
    ConnectorClosed,
    ConnectorError,
    ConnectorEvent,
    ConnectorMessage,
    ConnectorOpened,
    ConnectorStatus,
    Payload,
)

logger = logging.getLogger(__name__)

EventSink = Callable[[ConnectorEvent], None]

ABNORMAL_CLOSURE = 1006


class UpstreamConnector:
    """Owns one outbound WebSocket to the provider.

    Usage::

        connector = UpstreamConnector(1, url, api_key, on_event=inbox.put_nowait)
        connector.connect()          # returns immediately, events follow
        ...
        await connector.send(frame)  # only after ConnectorOpened
        await connector.close()
    """

    def __init__(
        self,
        generation: int,
        url: str,
        credential: str,
        on_event: EventSink,
        user_agent: str = "ElevenLabsProxy/1.0",
        open_timeout: float | None = 10.0,
    ) -> None:
        self._generation = generation
        self._url = url
        self._credential = credential
        self._on_event = on_event
        self._user_agent = user_agent
        self._open_timeout = open_timeout
        self._status = ConnectorStatus.IDLE
        self._ws: ClientConnection | None = None
        self._task: asyncio.Task | None = None
        self._close_requested = False

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def status(self) -> ConnectorStatus:
        return self._status

    def connect(self) -> None:
        """Start the handshake in a background task.

        Raises:
            ConnectorStateError: If this generation has already been started.
        """
        if self._status != ConnectorStatus.IDLE:
            raise ConnectorStateError(
                self._generation,
                f"Connector is {self._status.value}; create a new generation to reconnect",
            )
        self._status = ConnectorStatus.CONNECTING
        self._task = asyncio.create_task(self._run(), name=f"upstream-connector-{self._generation}")

    async def send(self, payload: Payload) -> None:
        """Write one frame upstream.

        Raises:
            ConnectorStateError: If the connector is not open.
            UpstreamSendError: If the connection failed during the write.
        """
        if self._status != ConnectorStatus.OPEN or self._ws is None:
            raise ConnectorStateError(self._generation, f"Cannot send while {self._status.value}")
        try:
            await self._ws.send(payload)
        except ConnectionClosed as exc:
            raise UpstreamSendError(self._generation, f"Send failed: {exc}") from exc

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Shut this generation down. Safe to call more than once."""
        if self._close_requested:
            return
        self._close_requested = True

        if self._ws is not None:
            try:
                await self._ws.close(code, reason)
            except Exception as exc:
                logger.warning("Error closing upstream generation %d: %s", self._generation, exc)
        elif self._task is not None and not self._task.done():
            # Still handshaking
            self._task.cancel()

        if self._task is not None and self._task is not asyncio.current_task():
            await asyncio.gather(self._task, return_exceptions=True)
        self._status = ConnectorStatus.CLOSED

    async def _run(self) -> None:
        try:
            ws = await connect(
                self._url,
                additional_headers={"xi-api-key": self._credential},
                user_agent_header=self._user_agent,
                open_timeout=self._open_timeout,
            )
        except asyncio.CancelledError:
            self._status = ConnectorStatus.CLOSED
            raise
        except (OSError, TimeoutError, WebSocketException) as exc:
            detail = self._redact(str(exc) or exc.__class__.__name__)
            logger.warning("Upstream generation %d handshake failed: %s", self._generation, detail)
            self._status = ConnectorStatus.CLOSED
            self._emit(ConnectorError(self._generation, detail))
            self._emit(ConnectorClosed(self._generation, ABNORMAL_CLOSURE, detail))
            return

        self._ws = ws
        self._status = ConnectorStatus.OPEN
        logger.info("Upstream generation %d connected to %s", self._generation, self._url)
        self._emit(ConnectorOpened(self._generation))

        try:
            async for message in ws:
                self._emit(ConnectorMessage(self._generation, message))
        except ConnectionClosedError as exc:
            # No close frame means the transport dropped rather than the
            # provider hanging up.
            if exc.rcvd is None:
                self._emit(ConnectorError(self._generation, self._redact(f"Connection lost: {exc}")))
        except Exception as exc:
            detail = self._redact(str(exc))
            logger.error("Upstream generation %d reader error: %s", self._generation, detail)
            self._emit(ConnectorError(self._generation, detail))

        self._status = ConnectorStatus.CLOSED
        code = ws.close_code if ws.close_code is not None else ABNORMAL_CLOSURE
        reason = ws.close_reason or ""
        logger.info("Upstream generation %d closed: code=%d reason=%s", self._generation, code, reason)
        self._emit(ConnectorClosed(self._generation, code, reason))

    def _redact(self, text: str) -> str:
        """Mask the API key in error text before it is logged or emitted."""
        return text.replace(self._credential, "***") if self._credential else text

    def _emit(self, event: ConnectorEvent) -> None:
        try:
            self._on_event(event)
        except Exception as exc:
            logger.error("Event sink rejected %s: %s", type(event).__name__, exc, exc_info=True)


class UpstreamConnectorFactory:
    """Builds one connector generation per call with fixed endpoint settings."""

    def __init__(self, url: str, user_agent: str, open_timeout: float | None = 10.0) -> None:
        self.url = url
        self.user_agent = user_agent
        self.open_timeout = open_timeout

    def __call__(self, generation: int, credential: str, on_event: EventSink) -> UpstreamConnector:
        return UpstreamConnector(
            generation=generation,
            url=self.url,
            credential=credential,
            on_event=on_event,
            user_agent=self.user_agent,
            open_timeout=self.open_timeout,
        )
