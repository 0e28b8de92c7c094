from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class BodyKind(str, Enum):
    """How a forwarded response body was decoded, chosen by content type."""

    JSON = "json"  # application/json: parsed, re-serialized on the way out
    BINARY = "binary"  # audio/*: raw bytes
    TEXT = "text"  # anything else: decoded string


@dataclass
class ForwardedResponse:
    status_code: int
    content_type: str | None
    kind: BodyKind
    body: Any


class ProxyHTTPErrorResponse(BaseModel):
    """JSON body of a 500 returned when forwarding fails."""

    error: str = Field(..., description="Machine-readable error code")
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
