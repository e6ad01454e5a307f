"""
GatewayService - Request Router.

The single entry point for synthesis, shared by the HTTP routes and the
CLI.

Architecture:
    Request → Validate → Fingerprint → Cache lookup → (miss) Singleflight
            → [Translate] → Backend → Encrypt + Store → Response

Key Components:
    - Backend registry: mode id -> adapter, built once from config
    - CacheDedupEngine: encrypted store plus singleflight claim table
    - EgressRotator: source address pool shared with gTTS
    - Translator: optional DeepL pre-translation

Error Handling:
    - ValidationError subclasses are raised before any work is done
    - BackendError from an adapter is wrapped in UpstreamError (code 0)
      with a status of 504/503/502/500
    - Cache failures never surface (they degrade to a miss)

Example:
    >>> from tts_gateway.core.config import Settings
    >>> service = GatewayService(Settings(raw={}).get_gateway_config())
    >>> outcome = service.handle(TTSParams(text="Hello", lang="en", mode="gtts"))
    >>> outcome.cache_status
    'bypass'
"""
from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Dict, List, Optional

from tts_gateway import __version__
from tts_gateway.core.config import GatewayConfig, Settings
from tts_gateway.core.logging import fail, get_logger, info, success, warn
from tts_gateway.core.metrics import metrics
from tts_gateway.services.errors import GatewayError, UpstreamError
from tts_gateway.services.translation import Translator
from tts_gateway.services.validators import (
    check_authorization,
    mode_index,
    resolve_mode,
    validate_rate,
    validate_text,
    validate_translation,
    validate_voice,
)
from tts_gateway.tts.backend import AudioFormat, BackendError, BaseBackend, SynthResult, build_backends
from tts_gateway.tts.cache import CacheDedupEngine
from tts_gateway.tts.egress import EgressRotator
from tts_gateway.tts.fingerprint import fingerprint
from tts_gateway.utils.timeit import DeadlineMonitor

_LOG = get_logger("tts-gateway.service")


# =============================================================================
# Request/Response Dataclasses
# =============================================================================

@dataclass
class TTSParams:
    """
    Raw inbound parameters, as received on /tts.

    Attributes:
        text: Text to synthesize.
        lang: Voice id (named "lang" on the wire).
        mode: Mode id, case-insensitive.
        speaking_rate: Rate multiplier, 1.0 = normal speed.
        max_length: Optional lower text-length limit.
        preferred_format: Advisory output format name.
        translation_lang: Optional DeepL target language.
    """
    text: Optional[str]
    lang: Optional[str]
    mode: Optional[str]
    speaking_rate: float = 1.0
    max_length: Optional[int] = None
    preferred_format: Optional[str] = None
    translation_lang: Optional[str] = None


@dataclass(frozen=True)
class SynthesisRequest:
    """
    A validated request. Immutable.

    Attributes:
        text: Non-blank text within the effective length limit.
        voice: Voice id from the mode's catalog.
        mode: Canonical mode id.
        speaking_rate: Rate multiplier within the backend's bounds.
        preferred_format: Parsed format, or None for the backend default.
        max_length: The caller's length override, if any.
        translation_lang: Upper-cased DeepL target, if any.
    """
    text: str
    voice: str
    mode: str
    speaking_rate: float = 1.0
    preferred_format: Optional[AudioFormat] = None
    max_length: Optional[int] = None
    translation_lang: Optional[str] = None


@dataclass
class SynthesisOutcome:
    """
    Result returned to the route.

    Attributes:
        audio: Encoded audio bytes.
        audio_format: Encoding of audio.
        cache_status: "hit", "miss" or "bypass".
        request_id: Request ID for tracing.
        total_seconds: Total processing time.
    """
    audio: bytes
    audio_format: AudioFormat
    cache_status: str
    request_id: str = ""
    total_seconds: float = 0.0

    @property
    def content_type(self) -> str:
        return self.audio_format.content_type


# =============================================================================
# Main Service Class
# =============================================================================

class GatewayService:
    """
    Validates requests and routes them through the cache to a backend.

    Stateless apart from the shared registry, cache engine and translator,
    all of which are thread-safe, so one instance serves every request.

    Usage:
        config = load_settings().get_gateway_config()
        service = GatewayService(config)
        outcome = service.handle(TTSParams(text="Hi", lang="en1", mode="eSpeak"))
    """

    def __init__(
        self,
        config: GatewayConfig,
        backends: Optional[Dict[str, BaseBackend]] = None,
        cache: Optional[CacheDedupEngine] = None,
        translator: Optional[Translator] = None,
        rotator: Optional[EgressRotator] = None,
    ):
        self._config = config
        self._rotator = rotator or EgressRotator.from_block(config.egress.ipv6_block)
        self._backends = backends if backends is not None else build_backends(config, self._rotator)
        self._modes = mode_index(self._backends)
        self._cache = cache if cache is not None else CacheDedupEngine.from_config(config.cache)
        self._translator = translator or Translator(config.translation)

        info(
            _LOG,
            "service_ready",
            modes=",".join(self._backends),
            cache=self._cache.enabled,
            egress=self._rotator.enabled,
            translation=self._translator.enabled,
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def config(self) -> GatewayConfig:
        return self._config

    @property
    def cache(self) -> CacheDedupEngine:
        return self._cache

    @property
    def backends(self) -> Dict[str, BaseBackend]:
        return dict(self._backends)

    # =========================================================================
    # Catalog
    # =========================================================================

    def list_modes(self) -> List[str]:
        """Enabled mode ids in registry order."""
        return list(self._backends)

    def get_backend(self, mode: Optional[str]) -> BaseBackend:
        """
        Raises:
            UnknownMode: Mode not enabled.
        """
        return self._backends[resolve_mode(self._modes, mode)]

    def list_voices(self, mode: Optional[str], raw: bool = False) -> Any:
        """
        Voices for a mode.

        Raises:
            UnknownMode: Mode not enabled.
            UpstreamError: The provider listing failed.
        """
        backend = self.get_backend(mode)
        try:
            return backend.list_voices_raw() if raw else backend.list_voices()
        except BackendError as e:
            raise UpstreamError.from_backend(e) from e

    def translation_languages(self) -> List[List[str]]:
        """DeepL target languages as [code, name] pairs; [] without a key."""
        if not self._translator.enabled:
            return []
        try:
            return [[code, name] for code, name in self._translator.languages()]
        except BackendError as e:
            raise UpstreamError.from_backend(e) from e

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self, params: TTSParams, authorization: Optional[str] = None) -> SynthesisRequest:
        """
        Validate raw parameters in the fixed order (auth, mode, voice,
        text, rate, translation).

        Raises:
            ValidationError: First failing check.
            BackendError: The voice catalog could not be fetched.
        """
        check_authorization(self._config.auth.key, authorization)

        mode = resolve_mode(self._modes, params.mode)
        backend = self._backends[mode]

        voice = validate_voice(backend, params.lang)
        text = validate_text(params.text, self._config.limits.max_text_length, params.max_length)
        rate = validate_rate(backend, params.speaking_rate)
        translation_lang = validate_translation(self._translator.enabled, params.translation_lang)

        return SynthesisRequest(
            text=text,
            voice=voice,
            mode=mode,
            speaking_rate=rate,
            preferred_format=AudioFormat.parse(params.preferred_format),
            max_length=params.max_length,
            translation_lang=translation_lang,
        )

    # =========================================================================
    # Synthesis
    # =========================================================================

    def _synthesize(
        self,
        req: SynthesisRequest,
        backend: BaseBackend,
        deadline: Optional[DeadlineMonitor] = None,
    ) -> SynthResult:
        text = req.text
        if req.translation_lang:
            if deadline is not None:
                with deadline.stage("translation"):
                    translated = self._translator.translate(text, req.translation_lang)
            else:
                translated = self._translator.translate(text, req.translation_lang)
            if translated:
                text = translated

        t0 = perf_counter()
        try:
            result = backend.synthesize(text, req.voice, req.speaking_rate, req.preferred_format)
        except BackendError as e:
            metrics.record_backend_call(req.mode, type(e).__name__, perf_counter() - t0)
            raise
        metrics.record_backend_call(req.mode, "ok", perf_counter() - t0)
        return result

    def handle(
        self,
        params: TTSParams,
        authorization: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> SynthesisOutcome:
        """
        Validate, then serve from cache or synthesize.

        Args:
            params: Raw request parameters.
            authorization: Value of the Authorization header, if any.
            request_id: Request ID for tracing (generated if omitted).

        Raises:
            GatewayError: Validation failure or UpstreamError.
        """
        rid = request_id or str(uuid.uuid4())[:12]
        t0 = perf_counter()
        mode_label = "unknown"

        try:
            req = self.validate(params, authorization)
            mode_label = req.mode
            backend = self._backends[req.mode]

            deadlines = self._config.deadlines
            with DeadlineMonitor(
                total_ms=deadlines.total_ms,
                stages={"cache": deadlines.cache_ms, "translation": deadlines.translation_ms},
                mode=req.mode,
            ) as deadline:
                result, cache_status = self._cache.resolve(
                    req,
                    lambda r: self._synthesize(r, backend, deadline),
                    timeout=backend.descriptor.timeout_s,
                    deadline=deadline,
                )
        except GatewayError as e:
            metrics.record_request(mode_label, e.label, perf_counter() - t0)
            warn(_LOG, "tts_rejected", mode=mode_label, code=e.code, status=e.status_code, error=e.message)
            raise
        except BackendError as e:
            err = UpstreamError.from_backend(e)
            metrics.record_request(mode_label, err.label, perf_counter() - t0)
            fail(_LOG, "tts_failed", mode=mode_label, status=err.status_code, error=str(e))
            raise err from e

        total = perf_counter() - t0
        metrics.record_request(
            req.mode,
            "success",
            total,
            cache_status=cache_status,
            audio_bytes=len(result.audio),
        )
        success(
            _LOG,
            "tts_done",
            mode=req.mode,
            voice=req.voice,
            cache=cache_status,
            bytes=len(result.audio),
            seconds=round(total, 4),
        )
        return SynthesisOutcome(
            audio=result.audio,
            audio_format=result.audio_format,
            cache_status=cache_status,
            request_id=rid,
            total_seconds=total,
        )

    def dry_run(self, params: TTSParams, authorization: Optional[str] = None) -> Dict[str, Any]:
        """
        Validate and fingerprint without touching the cache or a backend.

        Raises:
            GatewayError: Validation failure.
        """
        try:
            req = self.validate(params, authorization)
        except BackendError as e:
            raise UpstreamError.from_backend(e) from e
        return {
            "mode": req.mode,
            "voice": req.voice,
            "speaking_rate": req.speaking_rate,
            "preferred_format": req.preferred_format.value if req.preferred_format else None,
            "translation_lang": req.translation_lang,
            "chars": len(req.text),
            "fingerprint": fingerprint(req),
            "cache_enabled": self._cache.enabled,
        }

    # =========================================================================
    # Health Check
    # =========================================================================

    def health_info(self) -> Dict[str, Any]:
        """Service status for /health."""
        return {
            "ok": True,
            "version": __version__,
            "modes": self.list_modes(),
            "cache": self._cache.summary(),
            "inflight": self._cache.inflight.inflight_count,
            "egress_rotation": self._rotator.enabled,
            "translation": self._translator.enabled,
            "auth_required": bool(self._config.auth.key),
        }

    def shutdown(self) -> None:
        self._cache.shutdown()


# =============================================================================
# Global Service Singleton
# =============================================================================

_service: Optional[GatewayService] = None
_service_lock = threading.Lock()


def get_service(settings: Settings) -> GatewayService:
    """
    Get or create the global GatewayService instance.

    Thread-safe lazy singleton.
    """
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = GatewayService(settings.get_gateway_config())
    return _service


def reset_service() -> None:
    """Reset the global service instance (for testing)."""
    global _service
    with _service_lock:
        if _service is not None:
            _service.shutdown()
        _service = None
