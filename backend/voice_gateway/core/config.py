from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "Voice Gateway"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    CORS_ORIGINS: list[str] = ["*"]

    # Upstream provider. PROVIDER_NAME is the path segment of both surfaces:
    # /api/<PROVIDER_NAME>/... and /ws/<PROVIDER_NAME>
    PROVIDER_NAME: str = "elevenlabs"
    UPSTREAM_HTTP_BASE_URL: str = "https://api.elevenlabs.io"
    UPSTREAM_WS_URL: str = "wss://api.elevenlabs.io/v1/convai/conversation"
    UPSTREAM_USER_AGENT: str = "ElevenLabsProxy/1.0"

    # Unary forwarding
    UPSTREAM_HTTP_TIMEOUT_SECONDS: float = 30.0
    MAX_REQUEST_BODY_BYTES: int = 50 * 1024 * 1024  # 50 MB

    # Duplex sessions
    UPSTREAM_CONNECT_TIMEOUT_SECONDS: float = 10.0
    SESSION_RECONNECT_DELAY_SECONDS: float = 5.0
    SESSION_BUFFER_CAPACITY: int = 1000  # 0 = unbounded
    SESSION_BUFFER_OVERFLOW_POLICY: Literal["drop_oldest", "reject"] = "drop_oldest"
    SESSION_SEND_RETRY_LIMIT: int = 3
    MAX_CONCURRENT_SESSIONS: int = 1000

    model_config = {"env_file": ".env", "case_sensitive": True}


settings = Settings()
