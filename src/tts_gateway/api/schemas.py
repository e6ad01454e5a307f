"""
API Response Schemas.

Pydantic models for the JSON bodies the gateway returns. /tts itself
answers with raw audio, so only errors, health and the catalog endpoints
carry a schema.

Models:
    ErrorResponse: {code, display} body of every non-200 response
    CacheSummary: Cache block of /health
    HealthResponse: /health body

Example Error:
    {
        "code": 1,
        "display": "Unknown voice 'xx' for mode eSpeak"
    }
"""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Error body returned with every non-200 status.

    Attributes:
        code: 0 unknown, 1 voice, 2 length, 3 rate, 4 authorization,
            5 translation disabled.
        display: Human-readable message.
    """
    code: int = Field(..., description="Numeric error code")
    display: str = Field(..., description="Human-readable message")


class CacheSummary(BaseModel):
    enabled: bool = Field(..., description="Whether the encrypted cache is active")
    store: Optional[str] = Field(default=None, description="Store class name (RedisStore/MemoryStore)")
    ttl_seconds: int = Field(default=0, description="Entry lifetime, 0 = no expiry")
    inflight: int = Field(default=0, ge=0)


class HealthResponse(BaseModel):
    """
    Service status for load balancers and monitoring.

    Attributes:
        ok: Always true when the process answers.
        version: Package version.
        modes: Enabled mode ids in registry order.
        cache: Cache summary.
        inflight: Number of open singleflight claims.
        egress_rotation: Whether gTTS source-address rotation is active.
        translation: Whether a DeepL key is configured.
        auth_required: Whether /tts needs an Authorization header.
    """
    ok: bool = True
    version: str
    modes: List[str]
    cache: CacheSummary
    inflight: int = Field(default=0, ge=0)
    egress_rotation: bool = False
    translation: bool = False
    auth_required: bool = False
