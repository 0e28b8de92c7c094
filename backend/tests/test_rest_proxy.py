"""Tests for the /api/<provider>/* forwarding endpoint."""

import httpx

from voice_gateway.core.config import settings
from voice_gateway.services.upstream_http import UpstreamForwarder

API_PREFIX = f"/api/{settings.PROVIDER_NAME}"


def _install_upstream(client, handler) -> None:
    http_client = httpx.AsyncClient(base_url="https://api.elevenlabs.test", transport=httpx.MockTransport(handler))
    client.app.state.forwarder = UpstreamForwarder(http_client, user_agent=settings.UPSTREAM_USER_AGENT)


def test_json_passthrough(client):
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["request"] = request
        return httpx.Response(200, json={"voices": [{"voice_id": "v1"}]})

    _install_upstream(client, handler)
    response = client.get(f"{API_PREFIX}/v1/voices", headers={"xi-api-key": "k2"})

    assert response.status_code == 200
    assert response.json() == {"voices": [{"voice_id": "v1"}]}
    assert str(captured["request"].url) == "https://api.elevenlabs.test/v1/voices"
    assert captured["request"].headers["xi-api-key"] == "k2"


def test_query_and_status_passthrough(client):
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["query"] = request.url.query
        return httpx.Response(404, json={"detail": "voice_not_found"})

    _install_upstream(client, handler)
    response = client.get(f"{API_PREFIX}/v1/voices/missing?with_settings=true")

    assert response.status_code == 404
    assert response.json() == {"detail": "voice_not_found"}
    assert captured["query"] == b"with_settings=true"


def test_audio_passthrough(client):
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = request.content
        return httpx.Response(200, content=b"\xff\xfbaudio", headers={"content-type": "audio/mpeg"})

    _install_upstream(client, handler)
    response = client.post(
        f"{API_PREFIX}/v1/text-to-speech/v1",
        content=b'{"text":"hello"}',
        headers={"xi-api-key": "k2", "content-type": "application/json"},
    )

    assert response.status_code == 200
    assert response.content == b"\xff\xfbaudio"
    assert response.headers["content-type"] == "audio/mpeg"
    assert captured["body"] == b'{"text":"hello"}'


def test_upstream_failure_returns_500(client):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    _install_upstream(client, handler)
    response = client.get(f"{API_PREFIX}/v1/voices")

    assert response.status_code == 500
    data = response.json()
    assert data["error"] == "UPSTREAM_REQUEST_FAILED"
    assert "connection refused" in data["message"]
    assert "timestamp" in data


def test_oversized_body_rejected(client, monkeypatch):
    calls = []
    _install_upstream(client, lambda request: calls.append(request) or httpx.Response(200, json={}))
    monkeypatch.setattr(settings, "MAX_REQUEST_BODY_BYTES", 8)

    response = client.post(f"{API_PREFIX}/v1/speech-to-text", content=b"0123456789")

    assert response.status_code == 413
    assert response.json()["error"] == "REQUEST_TOO_LARGE"
    assert calls == []
