"""WebSocket endpoint for duplex client sessions.

Clients connect with their provider API key as the ``api_key`` query
parameter or the ``xi-api-key`` header. Each connection gets its own
SessionProxy, which relays frames to and from the provider WebSocket and
reconnects the upstream leg without dropping the client.

Route: /ws/<provider>
"""

import logging

from fastapi import APIRouter, WebSocket, status

from voice_gateway.core.config import settings
from voice_gateway.services.session_proxy import (
    OverflowPolicy,
    SessionCapacityError,
    SessionProxy,
    SessionRegistry,
    resolve_credential,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket(f"/{settings.PROVIDER_NAME}")
async def session_websocket(websocket: WebSocket) -> None:
    """Handle one client duplex session.

    Lifecycle:
        1. Accept the WebSocket connection
        2. Resolve the API key, close with 1008 if it is missing
        3. Register a SessionProxy (close with 1013 at capacity)
        4. Run the proxy (blocks until the client disconnects)
    """
    await websocket.accept()

    remote = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else "unknown"
    credential = resolve_credential(websocket.query_params, websocket.headers)
    if credential is None:
        logger.warning("Rejecting session from %s: missing API key", remote)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Missing API key")
        return

    registry: SessionRegistry = websocket.app.state.session_registry
    proxy = SessionProxy(
        websocket=websocket,
        credential=credential,
        connector_factory=websocket.app.state.connector_factory,
        reconnect_delay=settings.SESSION_RECONNECT_DELAY_SECONDS,
        buffer_capacity=settings.SESSION_BUFFER_CAPACITY,
        overflow_policy=OverflowPolicy(settings.SESSION_BUFFER_OVERFLOW_POLICY),
        send_retry_limit=settings.SESSION_SEND_RETRY_LIMIT,
    )

    try:
        registry.register(proxy)
    except SessionCapacityError as exc:
        logger.warning("Rejecting session from %s: %s", remote, exc)
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason="Too many sessions")
        return

    logger.info("Client %s connected as session %s", remote, proxy.session_id)
    try:
        await proxy.run()
    finally:
        registry.unregister(proxy.session_id)
    logger.info("Client %s disconnected (session %s)", remote, proxy.session_id)
