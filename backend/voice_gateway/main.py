import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from voice_gateway.api.router import api_router
from voice_gateway.core.config import settings
from voice_gateway.core.logging import configure_logging
from voice_gateway.services.session_proxy import SessionRegistry, UpstreamConnectorFactory
from voice_gateway.services.upstream_http import ProxyHTTPErrorResponse, UpstreamForwarder

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    http_client = httpx.AsyncClient(
        base_url=settings.UPSTREAM_HTTP_BASE_URL,
        timeout=settings.UPSTREAM_HTTP_TIMEOUT_SECONDS,
    )
    app.state.forwarder = UpstreamForwarder(http_client, user_agent=settings.UPSTREAM_USER_AGENT)
    app.state.connector_factory = UpstreamConnectorFactory(
        url=settings.UPSTREAM_WS_URL,
        user_agent=settings.UPSTREAM_USER_AGENT,
        open_timeout=settings.UPSTREAM_CONNECT_TIMEOUT_SECONDS,
    )
    app.state.session_registry = SessionRegistry(max_sessions=settings.MAX_CONCURRENT_SESSIONS)

    logger.info(
        "Gateway started (provider=%s, rest=%s, ws=%s, max_sessions=%d)",
        settings.PROVIDER_NAME,
        settings.UPSTREAM_HTTP_BASE_URL,
        settings.UPSTREAM_WS_URL,
        settings.MAX_CONCURRENT_SESSIONS,
    )

    yield

    # Shutdown: close every client session, then the shared HTTP client
    logger.info("Shutting down gateway...")
    await app.state.session_registry.teardown_all(code=1001, reason="Server shutting down")
    await http_client.aclose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    body = ProxyHTTPErrorResponse(error="INTERNAL_ERROR", message=str(exc))
    return JSONResponse(status_code=500, content=body.model_dump(mode="json"))


@app.get("/")
def service_status(request: Request):
    registry = getattr(request.app.state, "session_registry", None)
    return {
        "status": f"{settings.PROJECT_NAME} proxy",
        "version": settings.VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "endpoints": {
            "api": f"/api/{settings.PROVIDER_NAME}/*",
            "websocket": f"/ws/{settings.PROVIDER_NAME}",
        },
        "active_sessions": registry.active_session_count if registry is not None else 0,
    }


@app.get("/health")
def health_check():
    return {"status": "healthy", "timestamp": datetime.now(UTC).isoformat()}
