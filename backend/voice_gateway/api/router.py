from fastapi import APIRouter

from voice_gateway.api.endpoints import rest_proxy, session
from voice_gateway.core.config import settings

api_router = APIRouter()

api_router.include_router(rest_proxy.router, prefix=f"/api/{settings.PROVIDER_NAME}", tags=["rest-proxy"])
api_router.include_router(session.router, prefix="/ws", tags=["session"])
