"""
tts-gateway Services Layer.

This package holds the request router that sits between the API layer and
the cache/backend layer.

Components:
    - gateway_service.py: GatewayService (validation, routing, outcomes)
    - validators.py: Ordered request checks
    - errors.py: Client-facing error codes and exceptions
    - translation.py: DeepL client used before synthesis
"""
from .errors import (
    ErrorCode,
    GatewayError,
    InvalidInput,
    MaxLengthExceeded,
    SpeakingRateExceeded,
    TranslationDisabled,
    Unauthorized,
    UnknownMode,
    UnknownVoice,
    UpstreamError,
    ValidationError,
)
from .gateway_service import (
    GatewayService,
    SynthesisOutcome,
    SynthesisRequest,
    TTSParams,
)

__all__ = [
    "GatewayService",
    "SynthesisRequest",
    "SynthesisOutcome",
    "TTSParams",
    "ErrorCode",
    "GatewayError",
    "ValidationError",
    "InvalidInput",
    "UnknownMode",
    "UnknownVoice",
    "MaxLengthExceeded",
    "SpeakingRateExceeded",
    "Unauthorized",
    "TranslationDisabled",
    "UpstreamError",
]
