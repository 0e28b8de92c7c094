"""Unary forwarding to the provider REST API.

Public API:
    - UpstreamForwarder: forwards one request through a shared httpx client.
    - ForwardedResponse / BodyKind: decoded upstream reply.
    - UpstreamHTTPError and subclasses: failures mapped to a 500 response.
"""

from voice_gateway.services.upstream_http.exceptions import (
    UpstreamHTTPError,
    UpstreamRequestError,
    UpstreamResponseError,
    UpstreamTimeoutError,
)
from voice_gateway.services.upstream_http.forwarder import UpstreamForwarder, build_upstream_headers
from voice_gateway.services.upstream_http.models import BodyKind, ForwardedResponse, ProxyHTTPErrorResponse

__all__ = [
    "BodyKind",
    "ForwardedResponse",
    "ProxyHTTPErrorResponse",
    "UpstreamForwarder",
    "UpstreamHTTPError",
    "UpstreamRequestError",
    "UpstreamResponseError",
    "UpstreamTimeoutError",
    "build_upstream_headers",
]
