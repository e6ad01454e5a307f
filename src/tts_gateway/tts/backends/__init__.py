"""
Backend Adapter Implementations.

Each adapter is a subclass of BaseBackend and implements synthesize()
and supported_voices().

Available Backends:
    - EspeakBackend: Local espeak + mbrola pipeline, WAV output
    - GttsBackend: Google Translate TTS endpoint, MP3 output, egress rotation
    - PollyBackend: Amazon Polly via boto3, credential-gated
    - GcloudBackend: Google Cloud Text-to-Speech REST, credential-gated

Lazy Loading:
    Adapter classes are imported lazily so boto3 is only loaded when the
    registry actually builds a Polly adapter.

Usage:
    from tts_gateway.tts.backends import EspeakBackend

    backend = EspeakBackend(config.espeak)
    result = backend.synthesize("Hello", "en1")
"""
from __future__ import annotations

__all__ = [
    "EspeakBackend",
    "GttsBackend",
    "PollyBackend",
    "GcloudBackend",
]


def __getattr__(name: str):
    """Lazy import of adapter classes."""
    if name == "EspeakBackend":
        from .espeak_backend import EspeakBackend
        return EspeakBackend
    if name == "GttsBackend":
        from .gtts_backend import GttsBackend
        return GttsBackend
    if name == "PollyBackend":
        from .polly_backend import PollyBackend
        return PollyBackend
    if name == "GcloudBackend":
        from .gcloud_backend import GcloudBackend
        return GcloudBackend
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
