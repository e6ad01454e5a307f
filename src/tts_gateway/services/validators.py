"""
Input Validation for the Gateway.

Validation happens before any cache or backend work, in a fixed order:

    1. Authorization   (only when an operator secret is configured)
    2. Mode            (must be enabled, case-insensitive)
    3. Voice           (must be in the mode's voice catalog)
    4. Text            (non-blank, within the effective length limit)
    5. Speaking rate   (within the backend's bounds)
    6. Translation     (requires a DeepL key)

The first failing check wins; its error carries the code sent to the
client (see errors.py).

Effective Length Limit:
    min(limits.max_text_length, max_length) when the caller passes
    max_length, otherwise limits.max_text_length. A caller can lower the
    limit but never raise it above the server ceiling.
"""
from __future__ import annotations

import hmac
from typing import Dict, Mapping, Optional

from tts_gateway.core.logging import debug, get_logger
from tts_gateway.services.errors import (
    InvalidInput,
    MaxLengthExceeded,
    SpeakingRateExceeded,
    TranslationDisabled,
    Unauthorized,
    UnknownMode,
    UnknownVoice,
)
from tts_gateway.tts.backend import BaseBackend

_LOG = get_logger("tts-gateway.validators")


def check_authorization(configured_key: Optional[str], header: Optional[str]) -> None:
    """
    Compare the Authorization header with the operator secret.

    Raises:
        Unauthorized: A secret is configured and the header does not match.
    """
    if not configured_key:
        return
    supplied = (header or "").encode("utf-8")
    if not hmac.compare_digest(supplied, configured_key.encode("utf-8")):
        debug(_LOG, "auth_rejected")
        raise Unauthorized()


def mode_index(modes) -> Dict[str, str]:
    """Lower-cased mode id -> canonical mode id."""
    return {m.lower(): m for m in modes}


def resolve_mode(index: Mapping[str, str], mode: Optional[str]) -> str:
    """
    Resolve a caller-supplied mode to its canonical id.

    Raises:
        UnknownMode: Not an enabled mode.
    """
    canonical = index.get((mode or "").strip().lower())
    if canonical is None:
        raise UnknownMode(mode or "")
    return canonical


def validate_voice(backend: BaseBackend, voice: Optional[str]) -> str:
    """
    Raises:
        UnknownVoice: Voice not in the catalog.
    """
    if not voice or not backend.check_voice(voice):
        raise UnknownVoice(backend.mode, voice or "")
    return voice


def effective_max_length(ceiling: int, max_length: Optional[int]) -> int:
    """Length limit for one request."""
    if max_length is None:
        return ceiling
    return min(ceiling, max_length)


def validate_text(text: Optional[str], ceiling: int, max_length: Optional[int] = None) -> str:
    """
    Validate text input.

    The text is returned unchanged; its length is counted in characters.

    Raises:
        InvalidInput: Missing or blank text.
        MaxLengthExceeded: Longer than the effective limit.
    """
    if not text or not text.strip():
        raise InvalidInput("Text is required")

    limit = effective_max_length(ceiling, max_length)
    if len(text) > limit:
        raise MaxLengthExceeded(len(text), limit)
    return text


def validate_rate(backend: BaseBackend, rate: float) -> float:
    """
    Raises:
        SpeakingRateExceeded: Outside the backend's bounds, NaN or infinite.
    """
    violation = backend.descriptor.rate_violation(rate)
    if violation is not None:
        raise SpeakingRateExceeded(violation)
    return float(rate)


def validate_translation(enabled: bool, translation_lang: Optional[str]) -> Optional[str]:
    """
    Normalize translation_lang.

    Raises:
        TranslationDisabled: A target language was given but no key is configured.
    """
    if translation_lang is None or not translation_lang.strip():
        return None
    if not enabled:
        raise TranslationDisabled()
    return translation_lang.strip().upper()
