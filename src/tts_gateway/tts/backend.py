"""
Backend Base Class, Descriptors and Registry.

This module provides:
    - AudioFormat: Output formats a backend can produce
    - BackendDescriptor: Static per-mode metadata (format, rate bounds, ...)
    - SynthResult: Audio bytes plus the format they are encoded in
    - BackendError and subclasses: Typed backend failures
    - BaseBackend: Abstract adapter every mode implements
    - build_backends(): Build the mode -> adapter registry from config

Modes:
    eSpeak  - local espeak + mbrola pipeline (local engine)
    gTTS    - Google Translate TTS endpoint (unauthenticated, egress rotation)
    Polly   - Amazon Polly (credential-gated)
    gCloud  - Google Cloud Text-to-Speech (credential-gated)

The set of modes is closed: the registry is built once at startup and is
read-only afterwards. A credential-gated backend whose credentials are
missing is simply left out of the registry, so it is invisible to /modes,
/voices and /tts alike.

Implementing a New Backend:
    1. Create backends/<name>_backend.py
    2. Inherit from BaseBackend, set `descriptor`
    3. Implement synthesize() and supported_voices()
    4. Register it in build_backends()
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set, TYPE_CHECKING

from tts_gateway.core.logging import get_logger, info, warn

if TYPE_CHECKING:
    from tts_gateway.core.config import GatewayConfig
    from tts_gateway.tts.egress import EgressRotator

_LOG = get_logger("tts-gateway.backend")


# =============================================================================
# Audio Formats
# =============================================================================

class AudioFormat(str, Enum):
    """Audio encodings a backend may return."""
    MP3 = "mp3"
    OGG = "ogg"        # Ogg Vorbis
    OPUS = "opus"      # Ogg Opus
    WAV = "wav"        # RIFF/WAVE, 16-bit PCM
    PCM = "pcm"        # Raw signed 16-bit PCM
    MULAW = "mulaw"
    ALAW = "alaw"

    @property
    def content_type(self) -> str:
        return _CONTENT_TYPES[self]

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["AudioFormat"]:
        """
        Parse a caller-supplied format name.

        Accepts the enum values plus provider spellings (LINEAR16, OGG_OPUS,
        ogg_vorbis, audio/mpeg, ...). Returns None for anything unknown;
        the preferred format is advisory, so an unknown value means
        "backend default" rather than an error.
        """
        if not value:
            return None
        key = value.strip().lower()
        try:
            return cls(key)
        except ValueError:
            return _ALIASES.get(key)


_CONTENT_TYPES = {
    AudioFormat.MP3: "audio/mpeg",
    AudioFormat.OGG: "audio/ogg",
    AudioFormat.OPUS: "audio/opus",
    AudioFormat.WAV: "audio/wav",
    AudioFormat.PCM: "audio/pcm",
    AudioFormat.MULAW: "audio/wav",
    AudioFormat.ALAW: "audio/wav",
}

_ALIASES = {
    "mpeg": AudioFormat.MP3,
    "audio/mpeg": AudioFormat.MP3,
    "linear16": AudioFormat.WAV,
    "audio/wav": AudioFormat.WAV,
    "ogg_opus": AudioFormat.OPUS,
    "audio/opus": AudioFormat.OPUS,
    "ogg_vorbis": AudioFormat.OGG,
    "oggvorbis": AudioFormat.OGG,
    "vorbis": AudioFormat.OGG,
    "audio/ogg": AudioFormat.OGG,
}


# =============================================================================
# Descriptors and Results
# =============================================================================

@dataclass(frozen=True)
class BackendDescriptor:
    """
    Static metadata for one mode.

    Attributes:
        mode: Wire identifier ("eSpeak", "gTTS", "Polly", "gCloud").
        native_format: Format returned when no preference applies.
        min_rate: Lowest accepted speaking_rate multiplier (None = unbounded).
        max_rate: Highest accepted speaking_rate multiplier (None = unbounded).
        uses_egress_rotation: Outbound calls go through the EgressRotator.
        requires_credentials: Mode is only enabled with operator credentials.
        default_voice: Voice used by the CLI when none is given.
        timeout_s: Upper bound for one synthesize call.
    """
    mode: str
    native_format: AudioFormat
    min_rate: Optional[float] = None
    max_rate: Optional[float] = None
    uses_egress_rotation: bool = False
    requires_credentials: bool = False
    default_voice: str = ""
    timeout_s: float = 10.0

    def rate_violation(self, rate: float) -> Optional[str]:
        """
        Check a speaking rate against this backend's bounds.

        Returns:
            None if the rate is accepted, otherwise a message naming the
            violated bound.
        """
        if not math.isfinite(rate):
            return f"speaking_rate must be a finite number, got {rate}"
        if self.min_rate is not None and rate < self.min_rate:
            return f"speaking_rate {rate} is below the minimum of {self.min_rate} for {self.mode}"
        if self.max_rate is not None and rate > self.max_rate:
            return f"speaking_rate {rate} is above the maximum of {self.max_rate} for {self.mode}"
        return None


@dataclass(frozen=True)
class SynthResult:
    """
    Result of a synthesis operation.

    Attributes:
        audio: Encoded audio bytes, returned to callers verbatim.
        audio_format: Encoding of `audio`.
    """
    audio: bytes
    audio_format: AudioFormat

    @property
    def content_type(self) -> str:
        return self.audio_format.content_type


# =============================================================================
# Backend Errors
# =============================================================================

class BackendError(Exception):
    """
    Base class for synthesis failures.

    Attributes:
        mode: Mode that failed.
        message: Diagnostic (engine stderr, provider message, ...).
    """

    def __init__(self, mode: str, message: str):
        self.mode = mode
        self.message = message
        super().__init__(f"{mode}: {message}")


class EngineFailure(BackendError):
    """The local engine exited abnormally or produced no audio."""


class ProviderError(BackendError):
    """An authenticated provider rejected the call."""

    def __init__(self, mode: str, message: str, status: Optional[int | str] = None):
        self.status = status
        super().__init__(mode, message if status is None else f"{message} (status {status})")


class RateLimited(BackendError):
    """The provider refused the call because of rate limiting."""


class Unreachable(BackendError):
    """The provider could not be reached (DNS, connect, TLS)."""


class BackendTimeout(BackendError):
    """The call did not finish within the backend's timeout."""


# =============================================================================
# Base Backend
# =============================================================================

class BaseBackend:
    """
    Abstract base class for synthesis backends.

    Subclasses set `descriptor` and implement synthesize() and
    supported_voices(). Instances hold only immutable configuration plus
    lock-guarded lazy voice caches, so one instance serves all concurrent
    requests.
    """
    descriptor: BackendDescriptor

    @property
    def mode(self) -> str:
        return self.descriptor.mode

    @property
    def native_format(self) -> AudioFormat:
        return self.descriptor.native_format

    def synthesize(
        self,
        text: str,
        voice: str,
        rate: float = 1.0,
        preferred_format: Optional[AudioFormat] = None,
    ) -> SynthResult:
        """
        Synthesize speech.

        Raises:
            BackendError: On any failure (see subclasses).
        """
        raise NotImplementedError

    def supported_voices(self) -> Set[str]:
        """Voice identifiers accepted by synthesize()."""
        raise NotImplementedError

    def is_available(self) -> bool:
        """Whether the backend can serve requests right now."""
        return True

    def check_voice(self, voice: str) -> bool:
        return voice in self.supported_voices()

    def list_voices(self) -> List[str]:
        """Normalized voice listing, sorted."""
        return sorted(self.supported_voices())

    def list_voices_raw(self) -> Any:
        """Provider-native voice listing (defaults to the normalized one)."""
        return self.list_voices()


# =============================================================================
# Registry
# =============================================================================

def build_backends(
    config: "GatewayConfig",
    rotator: Optional["EgressRotator"] = None,
) -> Dict[str, BaseBackend]:
    """
    Build the mode -> backend registry from configuration.

    Adapters are imported lazily so a deployment without boto3 credentials
    never touches the AWS SDK at startup.

    Args:
        config: Validated gateway configuration.
        rotator: Egress rotator shared with egress-rotating backends.

    Returns:
        Ordered dict of enabled backends keyed by mode id.
    """
    backends: Dict[str, BaseBackend] = {}

    if config.gtts.enabled:
        from tts_gateway.tts.backends.gtts_backend import GttsBackend
        backends["gTTS"] = GttsBackend(config.gtts, rotator)

    if config.espeak.enabled:
        from tts_gateway.tts.backends.espeak_backend import EspeakBackend
        backends["eSpeak"] = EspeakBackend(config.espeak)

    from tts_gateway.tts.backends.polly_backend import PollyBackend
    polly = PollyBackend.from_config(config.polly)
    if polly is not None:
        backends["Polly"] = polly
    else:
        info(_LOG, "backend_disabled", mode="Polly", reason="no credentials")

    from tts_gateway.tts.backends.gcloud_backend import GcloudBackend
    try:
        gcloud = GcloudBackend.from_config(config.gcloud)
    except (OSError, ValueError, KeyError) as e:
        warn(_LOG, "backend_disabled", mode="gCloud", reason="unreadable credentials", error=str(e))
        gcloud = None
    if gcloud is not None:
        backends["gCloud"] = gcloud
    elif not config.gcloud.credentials_path:
        info(_LOG, "backend_disabled", mode="gCloud", reason="no credentials")

    info(_LOG, "backends_ready", modes=",".join(backends))
    return backends
