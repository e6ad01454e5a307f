"""
Cache Fingerprints.

A fingerprint is the SHA-256 of the canonical JSON form of every request
field that changes the produced audio:

    text, voice, mode, speaking_rate, preferred_format, translation_lang

Keys are sorted and separators are compact, so the same request always
yields the same 64-char hex string regardless of process or arrival order.
max_length is a validation knob and does not change the audio, so it is
not part of the fingerprint.

Usage:
    from tts_gateway.tts.fingerprint import fingerprint

    fp = fingerprint(req)       # "5a2b9c1e..."
"""
from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, TYPE_CHECKING

if TYPE_CHECKING:
    from tts_gateway.services.gateway_service import SynthesisRequest


def hash_bytes(data: bytes) -> str:
    """64-character lowercase hex SHA-256 of data."""
    return hashlib.sha256(data).hexdigest()


def hash_dict(data: Dict[str, Any]) -> str:
    """
    Hash a dictionary using SHA-256.

    Serializes to JSON with sorted keys and compact separators for
    deterministic hashing.
    """
    payload = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return hash_bytes(payload.encode("utf-8"))


def canonical_fields(req: "SynthesisRequest") -> Dict[str, Any]:
    """Fields of a request that take part in the fingerprint."""
    return {
        "text": req.text,
        "voice": req.voice,
        "mode": req.mode,
        "speaking_rate": float(req.speaking_rate),
        "preferred_format": req.preferred_format.value if req.preferred_format else None,
        "translation_lang": req.translation_lang,
    }


def fingerprint(req: "SynthesisRequest") -> str:
    """Compute the cache fingerprint of a validated request."""
    return hash_dict(canonical_fields(req))
