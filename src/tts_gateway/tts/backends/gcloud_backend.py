"""
Google Cloud Text-to-Speech Backend (REST).

Authentication uses a service-account JSON (client_email, private_key).
Instead of an OAuth exchange the adapter self-signs an RS256 JWT for the
API audience, valid for one hour and re-signed when less than a minute
remains.

Voice ids are "<languageCode> <variant>", e.g. "en-US A", which maps to
the Standard voice named "en-US-Standard-A".

Output formats (preferred_format -> audioEncoding):
    wav -> LINEAR16, mp3 -> MP3, ogg/opus -> OGG_OPUS (default),
    mulaw -> MULAW, alaw -> ALAW

Speaking rate bounds are 0.25 to 4.0.
"""
from __future__ import annotations

import base64
import json
import threading
import time
from typing import Any, Dict, List, Optional, Set

import httpx
import jwt

from tts_gateway.core.config import GcloudConfig
from tts_gateway.core.logging import debug, get_logger, info, verbose
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

_LOG = get_logger("tts-gateway.gcloud")

TOKEN_AUDIENCE = "https://texttospeech.googleapis.com/"
TOKEN_LIFETIME_S = 3600
TOKEN_REFRESH_MARGIN_S = 60

_ENCODINGS = {
    AudioFormat.WAV: "LINEAR16",
    AudioFormat.MP3: "MP3",
    AudioFormat.OPUS: "OGG_OPUS",
    AudioFormat.OGG: "OGG_OPUS",
    AudioFormat.MULAW: "MULAW",
    AudioFormat.ALAW: "ALAW",
}

# Format actually returned for each encoding
_RESULT_FORMATS = {
    "LINEAR16": AudioFormat.WAV,
    "MP3": AudioFormat.MP3,
    "OGG_OPUS": AudioFormat.OPUS,
    "MULAW": AudioFormat.MULAW,
    "ALAW": AudioFormat.ALAW,
}


class ServiceAccountSigner:
    """Issues and caches self-signed JWTs for one service account."""

    def __init__(self, client_email: str, private_key: str):
        self.client_email = client_email
        self._private_key = private_key
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: str) -> "ServiceAccountSigner":
        """
        Raises:
            OSError: File unreadable.
            ValueError: Not JSON.
            KeyError: client_email or private_key missing.
        """
        with open(path, "r", encoding="utf-8") as f:
            doc = json.load(f)
        return cls(client_email=doc["client_email"], private_key=doc["private_key"])

    def token(self) -> str:
        now = time.time()
        with self._lock:
            if self._token is None or self._expires_at - now < TOKEN_REFRESH_MARGIN_S:
                iat = int(now)
                exp = iat + TOKEN_LIFETIME_S
                payload = {
                    "iss": self.client_email,
                    "sub": self.client_email,
                    "aud": TOKEN_AUDIENCE,
                    "iat": iat,
                    "exp": exp,
                }
                self._token = jwt.encode(payload, self._private_key, algorithm="RS256")
                self._expires_at = float(exp)
                debug(_LOG, "jwt_signed", expires_at=exp)
            return self._token


def parse_voice(voice: str) -> tuple[str, str]:
    """Split "en-US A" into ("en-US", "A")."""
    lang, sep, variant = voice.partition(" ")
    if not sep or not lang or not variant:
        raise ValueError(f"{voice!r} cannot be parsed into language and variant")
    return lang, variant


class GcloudBackend(BaseBackend):
    """Google Cloud Text-to-Speech, Standard voices."""

    def __init__(
        self,
        config: GcloudConfig,
        signer: ServiceAccountSigner,
        client: Optional[httpx.Client] = None,
    ):
        self._config = config
        self._signer = signer
        self._client = client or httpx.Client(timeout=config.timeout_s)
        self.descriptor = BackendDescriptor(
            mode="gCloud",
            native_format=AudioFormat.OPUS,
            min_rate=0.25,
            max_rate=4.0,
            requires_credentials=True,
            default_voice="en-US A",
            timeout_s=config.timeout_s,
        )
        self._voices: Optional[List[Dict[str, Any]]] = None
        self._voices_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: GcloudConfig) -> Optional["GcloudBackend"]:
        """Build the adapter when a credentials file is configured, else None."""
        if not config.credentials_path:
            return None
        signer = ServiceAccountSigner.from_file(config.credentials_path)
        info(_LOG, "gcloud_ready", account=signer.client_email)
        return cls(config, signer)

    # =========================================================================
    # HTTP
    # =========================================================================

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._signer.token()}"}
        url = f"{self._config.api_url}/{path}"
        try:
            resp = self._client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise BackendTimeout(self.mode, str(e) or "request timed out") from e
        except httpx.TransportError as e:
            raise Unreachable(self.mode, str(e)) from e

        if resp.status_code == 429:
            raise RateLimited(self.mode, "quota exceeded")
        if resp.status_code >= 400:
            try:
                message = resp.json()["error"]["message"]
            except (ValueError, KeyError, TypeError):
                message = resp.text[:200]
            raise ProviderError(self.mode, message, status=resp.status_code)
        return resp

    # =========================================================================
    # Voices
    # =========================================================================

    def list_voices_raw(self) -> List[Dict[str, Any]]:
        """Voice dicts from GET v1/voices, fetched once."""
        if self._voices is None:
            with self._voices_lock:
                if self._voices is None:
                    resp = self._request("GET", "voices")
                    try:
                        self._voices = list(resp.json().get("voices", []))
                    except ValueError as e:
                        raise ProviderError(self.mode, f"unexpected response: {e}") from e
                    verbose(_LOG, "voices_loaded", count=len(self._voices))
        return self._voices

    def supported_voices(self) -> Set[str]:
        voices: Set[str] = set()
        for voice in self.list_voices_raw():
            # "en-US-Standard-A" -> ("en-US", "Standard", "A")
            parts = str(voice.get("name", "")).split("-", 2)
            if len(parts) < 3:
                continue
            kind, _, variant = parts[2].partition("-")
            if kind != "Standard" or not variant:
                continue
            codes = voice.get("languageCodes") or [f"{parts[0]}-{parts[1]}"]
            voices.add(f"{codes[0]} {variant}")
        return voices

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
        Synthesize with a Standard voice.

        Raises:
            ProviderError, RateLimited, Unreachable, BackendTimeout
        """
        try:
            lang, variant = parse_voice(voice)
        except ValueError as e:
            raise ProviderError(self.mode, str(e)) from e

        encoding = _ENCODINGS.get(preferred_format, "OGG_OPUS") if preferred_format else "OGG_OPUS"
        body = {
            "input": {"text": text},
            "voice": {"languageCode": lang, "name": f"{lang}-Standard-{variant}"},
            "audioConfig": {"audioEncoding": encoding, "speakingRate": rate},
        }

        with timeit("gcloud") as t:
            resp = self._request("POST", "text:synthesize", json=body)
            try:
                audio = base64.b64decode(resp.json()["audioContent"])
            except (ValueError, KeyError, TypeError) as e:
                raise ProviderError(self.mode, f"unexpected response: {e}") from e

        verbose(
            _LOG,
            "synth_done",
            voice=voice,
            encoding=encoding,
            bytes=len(audio),
            seconds=t.timing.seconds if t.timing else None,
        )
        return SynthResult(audio=audio, audio_format=_RESULT_FORMATS[encoding])
