"""
Gateway Error Codes and Exceptions.

Every error returned to a client is a JSON body of the form

    {"code": <int>, "display": "<human readable message>"}

with a non-200 HTTP status.

Error Codes:
    0 = UNKNOWN              - Unknown mode, bad input, upstream failure
    1 = UNKNOWN_VOICE        - Voice not in the mode's catalog
    2 = MAX_LENGTH_EXCEEDED  - Text longer than the effective limit
    3 = SPEAKING_RATE        - Speaking rate outside the backend's bounds
    4 = AUTHORIZATION        - Authorization header does not match
    5 = TRANSLATION_DISABLED - translation_lang given without a DeepL key
"""
from __future__ import annotations

from typing import Any, Dict

from tts_gateway.tts.backend import BackendError, BackendTimeout, RateLimited, Unreachable


class ErrorCode:
    """Numeric error codes sent to clients."""
    UNKNOWN = 0
    UNKNOWN_VOICE = 1
    MAX_LENGTH_EXCEEDED = 2
    SPEAKING_RATE = 3
    AUTHORIZATION = 4
    TRANSLATION_DISABLED = 5


class GatewayError(Exception):
    """
    Base exception for errors reported to clients.

    Attributes:
        message: Human-readable message, sent as "display".
        code: Value from ErrorCode.
        status_code: HTTP status for the response.
        label: Short name used as the metrics status label.
    """
    label = "error"

    def __init__(self, message: str, code: int = ErrorCode.UNKNOWN, status_code: int = 500):
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "display": self.message}


class ValidationError(GatewayError):
    """Rejected before any backend or cache work. Never retried."""
    label = "invalid_input"

    def __init__(self, message: str, code: int = ErrorCode.UNKNOWN, status_code: int = 400):
        super().__init__(message, code, status_code)


class UnknownMode(ValidationError):
    label = "unknown_mode"

    def __init__(self, mode: str):
        super().__init__(f"Unknown or disabled mode: {mode}", ErrorCode.UNKNOWN)


class InvalidInput(ValidationError):
    label = "invalid_input"


class UnknownVoice(ValidationError):
    label = "unknown_voice"

    def __init__(self, mode: str, voice: str):
        super().__init__(f"Unknown voice {voice!r} for mode {mode}", ErrorCode.UNKNOWN_VOICE)


class MaxLengthExceeded(ValidationError):
    label = "max_length"

    def __init__(self, length: int, limit: int):
        super().__init__(
            f"Text is {length} characters, the maximum is {limit}",
            ErrorCode.MAX_LENGTH_EXCEEDED,
        )


class SpeakingRateExceeded(ValidationError):
    label = "speaking_rate"

    def __init__(self, message: str):
        super().__init__(message, ErrorCode.SPEAKING_RATE)


class Unauthorized(ValidationError):
    label = "unauthorized"

    def __init__(self) -> None:
        super().__init__("Authorization failed", ErrorCode.AUTHORIZATION, status_code=403)


class TranslationDisabled(ValidationError):
    label = "translation_disabled"

    def __init__(self) -> None:
        super().__init__("Translation is not configured on this server", ErrorCode.TRANSLATION_DISABLED)


class UpstreamError(GatewayError):
    """A backend (or the translator) failed. Always code 0."""
    label = "backend_error"

    # Most specific first
    _STATUS = (
        (BackendTimeout, 504),
        (RateLimited, 503),
        (Unreachable, 502),
    )

    @classmethod
    def from_backend(cls, e: BackendError) -> "UpstreamError":
        status = 500
        for exc_type, code in cls._STATUS:
            if isinstance(e, exc_type):
                status = code
                break
        err = cls(f"{e.mode} failed: {e.message}", ErrorCode.UNKNOWN, status)
        err.label = type(e).__name__
        return err
