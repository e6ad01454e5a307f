"""
Amazon Polly Backend (boto3).

Uses the Standard engine. A speaking rate other than 1.0 is expressed as
SSML prosody:

    <speak><prosody rate="150%">...</prosody></speak>

with the text XML-escaped. Rate bounds are 0.2 to 5.0 (20% to 500%).

Output formats:
    preferred_format mp3 -> mp3, pcm -> pcm, ogg -> ogg_vorbis (default)

Credentials:
    Either an explicit key pair (backends.polly.access_key_id /
    secret_access_key) or use_default_credentials, which defers to the
    boto3 credential chain. With neither, from_config() returns None and
    the mode stays disabled.
"""
from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional, Set
from xml.sax.saxutils import escape

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, ReadTimeoutError

from tts_gateway.core.config import PollyConfig
from tts_gateway.core.logging import get_logger, info, verbose
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
from tts_gateway.utils.timeit import timeit

_LOG = get_logger("tts-gateway.polly")

_OUTPUT_FORMATS = {
    AudioFormat.MP3: "mp3",
    AudioFormat.PCM: "pcm",
    AudioFormat.OGG: "ogg_vorbis",
}

_THROTTLING_CODES = {"ThrottlingException", "Throttling", "TooManyRequestsException"}


def build_ssml(text: str, rate: float) -> str:
    """Wrap text in a prosody element for the given rate multiplier."""
    percent = int(round(rate * 100))
    return f'<speak><prosody rate="{percent}%">{escape(text)}</prosody></speak>'


class PollyBackend(BaseBackend):
    """Amazon Polly, Standard engine."""

    def __init__(self, client: Any, timeout_s: float = 10.0):
        self._client = client
        self.descriptor = BackendDescriptor(
            mode="Polly",
            native_format=AudioFormat.OGG,
            min_rate=0.2,
            max_rate=5.0,
            requires_credentials=True,
            default_voice="Joanna",
            timeout_s=timeout_s,
        )
        self._voices: Optional[List[Dict[str, Any]]] = None
        self._voices_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: PollyConfig) -> Optional["PollyBackend"]:
        """
        Build the adapter if credentials resolve, else return None.
        """
        boto_config = BotoConfig(
            connect_timeout=config.timeout_s,
            read_timeout=config.timeout_s,
            retries={"max_attempts": 1},
        )

        if config.access_key_id and config.secret_access_key:
            client = boto3.client(
                "polly",
                region_name=config.region,
                aws_access_key_id=config.access_key_id,
                aws_secret_access_key=config.secret_access_key,
                config=boto_config,
            )
        elif config.use_default_credentials:
            session = boto3.Session(region_name=config.region)
            if session.get_credentials() is None:
                info(_LOG, "polly_no_default_credentials")
                return None
            client = session.client("polly", config=boto_config)
        else:
            return None

        info(_LOG, "polly_ready", region=config.region)
        return cls(client, timeout_s=config.timeout_s)

    # =========================================================================
    # Error mapping
    # =========================================================================

    def _map_error(self, e: Exception) -> Exception:
        if isinstance(e, ClientError):
            err = e.response.get("Error", {})
            code = err.get("Code", "")
            message = err.get("Message", str(e))
            if code in _THROTTLING_CODES:
                return RateLimited(self.mode, message)
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            return ProviderError(self.mode, f"{code}: {message}", status=status or code)
        if isinstance(e, ReadTimeoutError):
            return BackendTimeout(self.mode, str(e))
        return Unreachable(self.mode, str(e))

    # =========================================================================
    # Voices
    # =========================================================================

    def _fetch_voices(self) -> List[Dict[str, Any]]:
        voices: List[Dict[str, Any]] = []
        kwargs: Dict[str, Any] = {}
        while True:
            resp = self._client.describe_voices(**kwargs)
            for voice in resp.get("Voices", []):
                if "standard" in voice.get("SupportedEngines", []):
                    voices.append(voice)
            token = resp.get("NextToken")
            if not token:
                return voices
            kwargs = {"NextToken": token}

    def list_voices_raw(self) -> List[Dict[str, Any]]:
        """Polly voice descriptions (Standard engine only), fetched once."""
        if self._voices is None:
            with self._voices_lock:
                if self._voices is None:
                    try:
                        self._voices = self._fetch_voices()
                    except (ClientError, BotoCoreError) as e:
                        raise self._map_error(e) from e
                    verbose(_LOG, "voices_loaded", count=len(self._voices))
        return self._voices

    def supported_voices(self) -> Set[str]:
        return {v["Id"] for v in self.list_voices_raw() if "Id" in v}

    # =========================================================================
    # Synthesis
    # =========================================================================

    def synthesize(
        self,
        text: str,
        voice: str,
        rate: float = 1.0,
        preferred_format: Optional[AudioFormat] = None,
    ) -> SynthResult:
        """
        Synthesize with Polly.

        Raises:
            ProviderError, RateLimited, Unreachable, BackendTimeout
        """
        audio_format = preferred_format if preferred_format in _OUTPUT_FORMATS else AudioFormat.OGG

        params: Dict[str, Any] = {
            "Engine": "standard",
            "VoiceId": voice,
            "OutputFormat": _OUTPUT_FORMATS[audio_format],
        }
        if rate != 1.0:
            params["TextType"] = "ssml"
            params["Text"] = build_ssml(text, rate)
        else:
            params["TextType"] = "text"
            params["Text"] = text

        with timeit("polly") as t:
            try:
                resp = self._client.synthesize_speech(**params)
                stream = resp["AudioStream"]
                try:
                    audio = stream.read()
                finally:
                    stream.close()
            except (ClientError, BotoCoreError) as e:
                raise self._map_error(e) from e

        verbose(
            _LOG,
            "synth_done",
            voice=voice,
            format=audio_format.value,
            bytes=len(audio),
            seconds=t.timing.seconds if t.timing else None,
        )
        return SynthResult(audio=audio, audio_format=audio_format)
