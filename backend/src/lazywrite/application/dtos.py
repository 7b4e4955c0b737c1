"""Data Transfer Objects — Pydantic models for API boundaries.

Field names follow the public JSON contract (``imageUrl``, ``retryAfter``)
rather than Python naming, so the front end keeps working unchanged.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


# ═══════════════════════════════════════════════════════════════
#  Common
# ═══════════════════════════════════════════════════════════════
class ErrorResponse(BaseModel):
    code: str
    error: str
    retryAfter: int | None = None
    isNetworkError: bool | None = None
    details: str | None = None


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    environment: str = "development"
    providers: dict[str, str] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    message: str


# ═══════════════════════════════════════════════════════════════
#  Generation
# ═══════════════════════════════════════════════════════════════
class PromptRequest(BaseModel):
    """Request body shared by every generation endpoint.

    ``prompt`` is optional here so a missing prompt reaches the route and
    gets the endpoint-specific 400 message instead of a generic 422.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    prompt: str | None = Field(None, max_length=4000)


class TextResponse(BaseModel):
    text: str


class ImageResponse(BaseModel):
    imageUrl: str | None = None
    imageBase64: str | None = None


# ═══════════════════════════════════════════════════════════════
#  Provider admin
# ═══════════════════════════════════════════════════════════════
class UnblockRequest(BaseModel):
    key_index: int = Field(..., ge=0)


class ProviderHealthResponse(BaseModel):
    provider_id: str
    kind: str
    total_attempts: int
    outcomes: dict[str, int]
    consecutive_failures: int
    success_rate: float
    latency_p50_ms: float
    latency_p95_ms: float
    last_error: str | None = None
    pool_size: int
    blocked_keys: int
    cursor: int
