"""Unary request forwarding to the provider's REST API.

Stateless: one inbound request becomes exactly one outbound request, with
no retry. Only the authentication and negotiation headers are copied
through; the response is decoded by content type so the endpoint can
re-emit it unchanged.
"""

import json
import logging
from collections.abc import Mapping

import httpx

from voice_gateway.services.upstream_http.exceptions import (
    UpstreamRequestError,
    UpstreamResponseError,
    UpstreamTimeoutError,
)
from voice_gateway.services.upstream_http.models import BodyKind, ForwardedResponse

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/json"

# Inbound header (lowercase) → outbound header name
_PASSTHROUGH_HEADERS: dict[str, str] = {
    "xi-api-key": "xi-api-key",
    "authorization": "Authorization",
    "accept": "Accept",
}

_BODYLESS_METHODS = {"GET", "HEAD"}


def build_upstream_headers(inbound: Mapping[str, str], user_agent: str) -> dict[str, str]:
    """Select the headers forwarded to the provider."""
    lowered = {key.lower(): value for key, value in inbound.items()}
    headers = {
        "Content-Type": lowered.get("content-type") or DEFAULT_CONTENT_TYPE,
        "User-Agent": user_agent,
    }
    for inbound_name, outbound_name in _PASSTHROUGH_HEADERS.items():
        if lowered.get(inbound_name):
            headers[outbound_name] = lowered[inbound_name]
    return headers


def decode_response(response: httpx.Response) -> ForwardedResponse:
    """Decode an upstream response according to its content type.

    Raises:
        UpstreamResponseError: If a JSON response does not contain valid JSON.
    """
    content_type = response.headers.get("content-type")
    if content_type and "application/json" in content_type:
        try:
            body = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise UpstreamResponseError(f"Invalid JSON from upstream: {exc}") from exc
        kind = BodyKind.JSON
    elif content_type and content_type.startswith("audio/"):
        body = response.content
        kind = BodyKind.BINARY
    else:
        body = response.text
        kind = BodyKind.TEXT

    return ForwardedResponse(
        status_code=response.status_code,
        content_type=content_type,
        kind=kind,
        body=body,
    )


class UpstreamForwarder:
    """Forwards unary calls through a shared httpx.AsyncClient.

    The client's ``base_url`` is the provider host; ``path`` is resolved
    against it.

    Usage::

        async with httpx.AsyncClient(base_url="https://api.elevenlabs.io") as client:
            forwarder = UpstreamForwarder(client, user_agent="ElevenLabsProxy/1.0")
            result = await forwarder.forward("GET", "v1/voices", "", request.headers, b"")
    """

    def __init__(self, client: httpx.AsyncClient, user_agent: str) -> None:
        self._client = client
        self._user_agent = user_agent

    async def forward(
        self,
        method: str,
        path: str,
        query: str,
        headers: Mapping[str, str],
        body: bytes,
    ) -> ForwardedResponse:
        """Send one request upstream and decode the reply.

        Raises:
            UpstreamTimeoutError: If the provider did not answer in time.
            UpstreamRequestError: If the request could not be completed.
            UpstreamResponseError: If the response body is malformed.
        """
        method = method.upper()
        url = "/" + path.lstrip("/")
        if query:
            url = f"{url}?{query}"

        logger.info("Forwarding %s %s", method, url)
        try:
            response = await self._client.request(
                method,
                url,
                headers=build_upstream_headers(headers, self._user_agent),
                content=body if method not in _BODYLESS_METHODS and body else None,
            )
        except httpx.TimeoutException as exc:
            raise UpstreamTimeoutError(f"Request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamRequestError(f"HTTP error: {exc}") from exc

        logger.info("Upstream responded %d to %s %s", response.status_code, method, url)
        return decode_response(response)
