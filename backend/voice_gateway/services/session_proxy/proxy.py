"""Session proxy - pairs one client WebSocket with one upstream generation.

Every input to a session (client frames, client disconnect, connector
events, reconnect timers) is posted to a single inbox and handled by one
dispatch loop, so handlers of the same session never interleave.

Client → upstream:
    - upstream open: the frame is sent immediately
    - otherwise: the frame is appended to the outbound buffer, and a new
      generation is started if none is live, bringing a pending reconnect
      forward

Upstream → client:
    - ConnectorOpened: send proxy.connected, then flush the buffer in order
    - ConnectorMessage: relay verbatim while the client is open
    - ConnectorError: send an error control message, session continues
    - ConnectorClosed: forget the generation, schedule a reconnect after
      ``reconnect_delay`` seconds while the client is open

Forward-vs-buffer follows the session's own view of the upstream state,
which only changes while dispatching ConnectorOpened / ConnectorClosed.
That keeps a frame received just after the socket opened from overtaking
frames already waiting in the buffer.

Teardown (client disconnect or server shutdown) cancels the reconnect
timer, closes the live generation once and discards anything still
buffered.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable, Mapping

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from voice_gateway.services.session_proxy.buffer import BufferedMessage, OutboundBuffer
from voice_gateway.services.session_proxy.connector import EventSink, UpstreamConnector
from voice_gateway.services.session_proxy.exceptions import (
    BufferOverflowError,
    ConnectorStateError,
    MissingCredentialError,
    SessionProxyError,
)
from voice_gateway.services.session_proxy.models import (
    BUFFER_FULL_ERROR_CODE,
    UPSTREAM_ERROR_CODE,
    ClientDisconnected,
    ClientMessage,
    ConnectorClosed,
    ConnectorError,
    ConnectorMessage,
    ConnectorOpened,
    ConnectorStatus,
    OverflowPolicy,
    Payload,
    ProxyConnectedMessage,
    ProxyErrorMessage,
    ReconnectDue,
    SessionEvent,
    SessionInfo,
    UpstreamErrorDetail,
)

logger = logging.getLogger(__name__)

ConnectorFactory = Callable[[int, str, EventSink], UpstreamConnector]

CREDENTIAL_QUERY_PARAM = "api_key"
CREDENTIAL_HEADER = "xi-api-key"


def resolve_credential(query_params: Mapping[str, str], headers: Mapping[str, str]) -> str | None:
    """Pick the API key from the ``api_key`` query parameter, else the ``xi-api-key`` header."""
    for value in (query_params.get(CREDENTIAL_QUERY_PARAM), headers.get(CREDENTIAL_HEADER)):
        if value and value.strip():
            return value.strip()
    return None


class SessionProxy:
    """Manages one client connection and its upstream connector generations.

    Usage::

        proxy = SessionProxy(websocket=ws, credential=api_key, connector_factory=factory)
        await proxy.run()  # blocks until the client disconnects
    """

    def __init__(
        self,
        websocket: WebSocket,
        credential: str,
        connector_factory: ConnectorFactory,
        reconnect_delay: float = 5.0,
        buffer_capacity: int = 1000,
        overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
        send_retry_limit: int = 3,
        session_id: str | None = None,
    ) -> None:
        if not credential:
            raise MissingCredentialError()

        self._ws = websocket
        self._credential = credential
        self._connector_factory = connector_factory
        self._reconnect_delay = reconnect_delay
        self._send_retry_limit = max(1, send_retry_limit)
        self._session_id = session_id or uuid.uuid4().hex
        self._buffer = OutboundBuffer(capacity=buffer_capacity, overflow_policy=overflow_policy)
        self._inbox: asyncio.Queue[SessionEvent] = asyncio.Queue()

        self._connector: UpstreamConnector | None = None
        self._generation = 0
        self._upstream_state = ConnectorStatus.IDLE
        self._reconnect_task: asyncio.Task | None = None
        self._client_open = True
        self._torn_down = False

        # Metrics
        self._forwarded = 0
        self._relayed = 0
        self._dropped = 0
        self._reconnects = 0

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def upstream_state(self) -> ConnectorStatus:
        return self._upstream_state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def buffered_payloads(self) -> list[Payload]:
        return self._buffer.payloads()

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None

    @property
    def info(self) -> SessionInfo:
        return SessionInfo(
            session_id=self._session_id,
            upstream_state=self._upstream_state,
            generation=self._generation,
            buffered_messages=len(self._buffer),
            messages_forwarded=self._forwarded,
            messages_relayed=self._relayed,
            messages_dropped=self._dropped,
            reconnects=self._reconnects,
        )

    async def run(self) -> None:
        """Start the first generation and dispatch events until the client leaves."""
        logger.info("Session %s started", self._session_id)
        self._start_generation()
        reader = asyncio.create_task(self._read_client(), name=f"session-client-{self._session_id}")
        try:
            while True:
                event = await self._inbox.get()
                if isinstance(event, ClientDisconnected):
                    logger.info("Session %s: client disconnected (code=%s)", self._session_id, event.code)
                    break
                try:
                    await self._dispatch(event)
                except Exception as exc:
                    logger.error(
                        "Session %s: error handling %s: %s",
                        self._session_id,
                        type(event).__name__,
                        exc,
                        exc_info=True,
                    )
        finally:
            self._client_open = False
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
            await self.teardown()

    async def shutdown(self, code: int = 1001, reason: str = "Server shutting down") -> None:
        """Close the client side from the server; ``run()`` then tears down."""
        if self._client_open and self._ws.client_state == WebSocketState.CONNECTED:
            try:
                await self._ws.close(code=code, reason=reason)
            except Exception as exc:
                logger.warning("Session %s: failed to close client: %s", self._session_id, exc)
        self._inbox.put_nowait(ClientDisconnected(code=code))

    async def teardown(self) -> None:
        """Release the upstream leg and the buffer. Idempotent."""
        if self._torn_down:
            return
        self._torn_down = True
        self._client_open = False

        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        connector = self._connector
        self._connector = None
        self._upstream_state = ConnectorStatus.CLOSED
        if connector is not None:
            try:
                await connector.close()
            except Exception as exc:
                logger.warning(
                    "Session %s: error closing generation %d: %s",
                    self._session_id,
                    connector.generation,
                    exc,
                )

        discarded = self._buffer.clear()
        self._dropped += discarded
        logger.info(
            "Session %s torn down (generations=%d, forwarded=%d, relayed=%d, dropped=%d, discarded=%d)",
            self._session_id,
            self._generation,
            self._forwarded,
            self._relayed,
            self._dropped,
            discarded,
        )

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def _post(self, event: SessionEvent) -> None:
        self._inbox.put_nowait(event)

    async def _read_client(self) -> None:
        """Move client frames into the inbox until the client goes away."""
        code = 1000
        try:
            while True:
                message = await self._ws.receive()
                if message["type"] == "websocket.disconnect":
                    code = message.get("code", 1000)
                    break
                if message["type"] != "websocket.receive":
                    continue
                if message.get("bytes") is not None:
                    self._post(ClientMessage(message["bytes"]))
                elif message.get("text") is not None:
                    self._post(ClientMessage(message["text"]))
        except WebSocketDisconnect as exc:
            code = exc.code
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Session %s: client read error: %s", self._session_id, exc)
            code = 1011
        self._post(ClientDisconnected(code=code))

    async def _dispatch(self, event: SessionEvent) -> None:
        if isinstance(event, ClientMessage):
            await self._on_client_message(event.payload)
        elif isinstance(event, ReconnectDue):
            self._on_reconnect_due(event)
        elif event.generation != self._generation or self._connector is None:
            logger.debug(
                "Session %s: ignoring %s from stale generation %d (current %d)",
                self._session_id,
                type(event).__name__,
                event.generation,
                self._generation,
            )
        elif isinstance(event, ConnectorOpened):
            await self._on_connector_opened()
        elif isinstance(event, ConnectorMessage):
            await self._on_connector_message(event.payload)
        elif isinstance(event, ConnectorError):
            await self._on_connector_error(event.detail)
        elif isinstance(event, ConnectorClosed):
            self._on_connector_closed(event.code, event.reason)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _on_client_message(self, payload: Payload) -> None:
        if self._upstream_state == ConnectorStatus.OPEN:
            await self._send_upstream(BufferedMessage(payload=payload))
            return

        try:
            evicted = self._buffer.append(payload)
        except BufferOverflowError as exc:
            self._dropped += 1
            logger.warning("Session %s: %s, rejecting client message", self._session_id, exc)
            await self._send_error(str(exc), code=BUFFER_FULL_ERROR_CODE)
            return

        if evicted is not None:
            self._dropped += 1
            logger.warning(
                "Session %s: outbound buffer full (%d), dropped oldest message",
                self._session_id,
                self._buffer.capacity,
            )
        logger.debug(
            "Session %s: upstream %s, buffered message (%d pending)",
            self._session_id,
            self._upstream_state.value,
            len(self._buffer),
        )
        self._ensure_connecting()

    async def _on_connector_opened(self) -> None:
        self._upstream_state = ConnectorStatus.OPEN
        logger.info(
            "Session %s: upstream generation %d open, flushing %d buffered message(s)",
            self._session_id,
            self._generation,
            len(self._buffer),
        )
        await self._send_json(ProxyConnectedMessage())
        await self._flush_buffer()

    async def _on_connector_message(self, payload: Payload) -> None:
        if not self._client_open or self._ws.client_state != WebSocketState.CONNECTED:
            return
        try:
            if isinstance(payload, bytes):
                await self._ws.send_bytes(payload)
            else:
                await self._ws.send_text(payload)
            self._relayed += 1
        except Exception as exc:
            logger.warning("Session %s: failed to relay message to client: %s", self._session_id, exc)

    async def _on_connector_error(self, detail: str) -> None:
        logger.warning("Session %s: upstream generation %d error: %s", self._session_id, self._generation, detail)
        await self._send_error(f"Upstream connection error: {detail}")

    def _on_connector_closed(self, code: int, reason: str) -> None:
        logger.info(
            "Session %s: upstream generation %d closed (code=%d, reason=%s)",
            self._session_id,
            self._generation,
            code,
            reason,
        )
        self._connector = None
        self._upstream_state = ConnectorStatus.CLOSED
        if self._client_open:
            self._schedule_reconnect()

    def _on_reconnect_due(self, event: ReconnectDue) -> None:
        if event.generation != self._generation:
            return
        self._reconnect_task = None
        if not self._client_open or self._connector is not None:
            return
        self._reconnects += 1
        self._start_generation()

    # ------------------------------------------------------------------
    # Upstream management
    # ------------------------------------------------------------------

    def _start_generation(self) -> None:
        self._generation += 1
        logger.info("Session %s: connecting upstream generation %d", self._session_id, self._generation)
        connector = self._connector_factory(self._generation, self._credential, self._post)
        self._connector = connector
        self._upstream_state = ConnectorStatus.CONNECTING
        try:
            connector.connect()
        except SessionProxyError as exc:
            logger.error("Session %s: generation %d failed to start: %s", self._session_id, self._generation, exc)
            self._post(ConnectorError(self._generation, str(exc)))
            self._post(ConnectorClosed(self._generation, 1006, str(exc)))

    def _ensure_connecting(self) -> None:
        """Start a generation unless one is live; a pending reconnect is brought forward."""
        if self._connector is not None:
            return
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
            self._reconnects += 1
            logger.info("Session %s: client traffic, reconnecting now", self._session_id)
        self._start_generation()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None:
            return
        logger.info("Session %s: reconnecting in %.1fs", self._session_id, self._reconnect_delay)
        self._reconnect_task = asyncio.create_task(self._reconnect_after(self._generation))

    async def _reconnect_after(self, generation: int) -> None:
        await asyncio.sleep(self._reconnect_delay)
        self._post(ReconnectDue(generation))

    async def _flush_buffer(self) -> None:
        while self._buffer and self._upstream_state == ConnectorStatus.OPEN:
            item = self._buffer.popleft()
            if not await self._send_upstream(item):
                break

    async def _send_upstream(self, item: BufferedMessage) -> bool:
        """Send one frame on the live generation. Returns False on failure.

        A failed frame is requeued at the head of the buffer until it has
        used up ``send_retry_limit`` attempts; the generation is then closed
        and the regular ConnectorClosed path schedules the reconnect.
        """
        connector = self._connector
        if connector is None:
            self._buffer.requeue(item, count_attempt=False)
            return False
        try:
            await connector.send(item.payload)
        except ConnectorStateError as exc:
            # The reader already saw the close; its ConnectorClosed is queued.
            logger.debug("Session %s: %s, holding message for the next generation", self._session_id, exc)
            self._buffer.requeue(item, count_attempt=False)
            self._upstream_state = ConnectorStatus.CLOSED
            return False
        except SessionProxyError as exc:
            logger.warning("Session %s: upstream send failed: %s", self._session_id, exc)
            if item.attempts + 1 < self._send_retry_limit:
                self._buffer.requeue(item)
            else:
                self._dropped += 1
                logger.error(
                    "Session %s: dropping message after %d failed send attempt(s)",
                    self._session_id,
                    item.attempts + 1,
                )
            self._upstream_state = ConnectorStatus.CLOSED
            await self._send_error(f"Failed to forward message upstream: {exc}")
            await connector.close()
            return False
        self._forwarded += 1
        return True

    # ------------------------------------------------------------------
    # Client output
    # ------------------------------------------------------------------

    async def _send_error(self, message: str, code: str = UPSTREAM_ERROR_CODE) -> None:
        await self._send_json(ProxyErrorMessage(error=UpstreamErrorDetail(message=message, code=code)))

    async def _send_json(self, message) -> None:
        """Send a Pydantic model as a JSON text frame to the client."""
        try:
            if self._client_open and self._ws.client_state == WebSocketState.CONNECTED:
                await self._ws.send_text(message.model_dump_json())
        except Exception as exc:
            logger.warning("Session %s: failed to send control message: %s", self._session_id, exc)
