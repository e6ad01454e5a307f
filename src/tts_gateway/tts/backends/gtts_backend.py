"""
gTTS Backend (Google Translate TTS endpoint).

The endpoint is unauthenticated, returns MP3 and accepts at most 200
characters per query, so text is split with split_text() and the MP3
responses are concatenated (MP3 frames are self-delimiting).

Request:
    GET https://translate.google.com/translate_tts
        ?ie=UTF-8&total=1&idx=0&client=tw-ob&tl=<voice>&q=<chunk>&textlen=<n>

Rate Limiting:
    Google answers 429 once a source address sends too much. Every call
    binds to an address from the EgressRotator; on 429 the call is retried
    from a fresh address, up to max_attempts. With no egress pool a 429
    fails immediately with RateLimited.

    All chunks and retries of one call share a single budget of
    timeout_s * max_attempts, the timeout the descriptor advertises.

The voice is a language code (en, de, pt, zh-CN, ...). Speaking rate is
not supported by the endpoint and is ignored.
"""
from __future__ import annotations

import time
from typing import Callable, Dict, Optional, Set, Union

import httpx

from tts_gateway.core.config import GttsConfig
from tts_gateway.core.logging import get_logger, verbose, warn
from tts_gateway.tts.backend import (
    AudioFormat,
    BackendDescriptor,
    BackendTimeout,
    BaseBackend,
    ProviderError,
    RateLimited,
    SynthResult,
    Unreachable,
)
from tts_gateway.tts.chunker import GTTS_MAX_CHARS, split_text
from tts_gateway.tts.egress import EgressRotator
from tts_gateway.utils.timeit import timeit

_LOG = get_logger("tts-gateway.gtts")

TransportFactory = Callable[[], httpx.BaseTransport]

# Languages accepted by the translate_tts endpoint
GTTS_VOICES = frozenset({
    "af", "am", "ar", "bg", "bn", "bs", "ca", "cs", "cy", "da", "de", "el",
    "en", "es", "et", "eu", "fi", "fr", "fr-CA", "gl", "gu", "ha", "hi",
    "hr", "hu", "id", "is", "it", "iw", "ja", "jw", "km", "kn", "ko", "la",
    "lt", "lv", "ml", "mr", "ms", "my", "ne", "nl", "no", "pa", "pl", "pt",
    "pt-PT", "ro", "ru", "si", "sk", "sq", "sr", "su", "sv", "sw", "ta",
    "te", "th", "tl", "tr", "uk", "ur", "vi", "yue", "zh-CN", "zh-TW",
})


class GttsBackend(BaseBackend):
    """Google Translate TTS with per-call source address rotation."""

    def __init__(
        self,
        config: GttsConfig,
        rotator: Optional[EgressRotator] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        self._config = config
        self._rotator = rotator or EgressRotator()
        self._transport_factory = transport_factory or self._rotator.transport
        self.descriptor = BackendDescriptor(
            mode="gTTS",
            native_format=AudioFormat.MP3,
            uses_egress_rotation=True,
            default_voice="en",
            timeout_s=config.timeout_s * config.max_attempts,
        )

    def supported_voices(self) -> Set[str]:
        return set(GTTS_VOICES)

    @staticmethod
    def _params(chunk: str, voice: str) -> Dict[str, Union[str, int]]:
        return {
            "ie": "UTF-8",
            "total": 1,
            "idx": 0,
            "client": "tw-ob",
            "tl": voice,
            "q": chunk,
            "textlen": len(chunk),
        }

    def _fetch_chunk(self, chunk: str, voice: str, deadline: float) -> bytes:
        attempts = self._config.max_attempts if self._rotator.enabled else 1

        for attempt in range(1, attempts + 1):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise BackendTimeout(self.mode, f"synthesis budget of {self.descriptor.timeout_s}s spent")
            try:
                with httpx.Client(
                    transport=self._transport_factory(),
                    timeout=min(self._config.timeout_s, remaining),
                ) as client:
                    resp = client.get(self._config.endpoint, params=self._params(chunk, voice))
            except httpx.TimeoutException as e:
                raise BackendTimeout(self.mode, str(e) or "request timed out") from e
            except httpx.TransportError as e:
                raise Unreachable(self.mode, str(e)) from e

            if resp.status_code == 429:
                warn(_LOG, "rate_limited", attempt=attempt, attempts=attempts)
                continue
            if resp.status_code >= 400:
                raise ProviderError(self.mode, "translate_tts rejected the request", status=resp.status_code)
            return resp.content

        raise RateLimited(self.mode, f"too many requests after {attempts} attempt(s)")

    def synthesize(
        self,
        text: str,
        voice: str,
        rate: float = 1.0,
        preferred_format: Optional[AudioFormat] = None,
    ) -> SynthResult:
        """
        Synthesize text as MP3. rate and preferred_format are ignored.

        Raises:
            RateLimited: 429 on every attempt.
            Unreachable: Connection failure.
            BackendTimeout: Read or connect timeout, or the call budget is spent.
            ProviderError: Any other HTTP error status.
        """
        chunks = split_text(text, GTTS_MAX_CHARS)
        deadline = time.monotonic() + self.descriptor.timeout_s
        audio = bytearray()

        with timeit("gtts") as t:
            for chunk in chunks:
                audio.extend(self._fetch_chunk(chunk, voice, deadline))

        verbose(
            _LOG,
            "synth_done",
            voice=voice,
            chunks=len(chunks),
            bytes=len(audio),
            seconds=t.timing.seconds if t.timing else None,
        )
        return SynthResult(audio=bytes(audio), audio_format=AudioFormat.MP3)
