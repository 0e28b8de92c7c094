"""Unary HTTP forwarding to the provider REST API.

Route: /api/<provider>/{path}, any method. The request is forwarded to
<UPSTREAM_HTTP_BASE_URL>/{path} with the query string preserved; the
upstream status, content type and body come back unchanged.
"""

import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, Response

from voice_gateway.core.config import settings
from voice_gateway.services.upstream_http import (
    BodyKind,
    ForwardedResponse,
    ProxyHTTPErrorResponse,
    UpstreamForwarder,
    UpstreamHTTPError,
)

logger = logging.getLogger(__name__)

router = APIRouter()

FORWARDED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    body = ProxyHTTPErrorResponse(error=code, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def to_response(result: ForwardedResponse) -> Response:
    if result.kind == BodyKind.JSON:
        return JSONResponse(status_code=result.status_code, content=result.body)
    return Response(
        content=result.body,
        status_code=result.status_code,
        media_type=result.content_type,
    )


@router.api_route("/{path:path}", methods=FORWARDED_METHODS)
async def forward_request(path: str, request: Request) -> Response:
    """Forward one request to the provider and relay its response."""
    body = await request.body()
    if len(body) > settings.MAX_REQUEST_BODY_BYTES:
        return error_response(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            "REQUEST_TOO_LARGE",
            f"Request body exceeds {settings.MAX_REQUEST_BODY_BYTES} bytes",
        )

    forwarder: UpstreamForwarder = request.app.state.forwarder
    try:
        result = await forwarder.forward(
            method=request.method,
            path=path,
            query=request.url.query,
            headers=request.headers,
            body=body,
        )
    except UpstreamHTTPError as exc:
        logger.error("Forwarding %s /%s failed: %s", request.method, path, exc)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc.code, str(exc))

    return to_response(result)
