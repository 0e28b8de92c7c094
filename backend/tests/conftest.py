import pytest
from fastapi.testclient import TestClient

from voice_gateway.core.config import settings
from voice_gateway.main import app as fastapi_app

from fakes import FakeClientWebSocket, FakeConnectorFactory

settings.DEBUG = True


@pytest.fixture
def client_ws():
    return FakeClientWebSocket()


@pytest.fixture
def connector_factory():
    return FakeConnectorFactory()


@pytest.fixture
def client():
    """TestClient with the lifespan running, so app.state is populated."""
    with TestClient(fastapi_app) as test_client:
        yield test_client
