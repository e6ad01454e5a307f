"""
DeepL Translation Client.

Optionally translates request text before synthesis (the `translation_lang`
query parameter). When the detected source language already equals the
target, the original text is used unchanged.

Uses the official `deepl` SDK. Failures are raised as backend errors under
the pseudo-mode "DeepL" so the router maps them like any other upstream
failure (code 0, 502/503/504/500):

    deepl.TooManyRequestsException  -> RateLimited
    deepl.ConnectionException       -> Unreachable (BackendTimeout if it timed out)
    deepl.QuotaExceededException    -> ProviderError (456)
    deepl.AuthorizationException    -> ProviderError (403)
    deepl.DeepLException            -> ProviderError
"""
from __future__ import annotations

import threading
from typing import Any, List, Optional, Tuple

import deepl

from tts_gateway.core.config import TranslationConfig
from tts_gateway.core.logging import get_logger, verbose
from tts_gateway.tts.backend import BackendError, BackendTimeout, ProviderError, RateLimited, Unreachable

_LOG = get_logger("tts-gateway.translation")

_MODE = "DeepL"


def map_deepl_error(e: deepl.DeepLException) -> BackendError:
    """Translate an SDK exception into the gateway's backend error types."""
    message = str(e) or type(e).__name__
    if isinstance(e, deepl.TooManyRequestsException):
        return RateLimited(_MODE, message)
    if isinstance(e, deepl.ConnectionException):
        if "timed out" in message.lower():
            return BackendTimeout(_MODE, message)
        return Unreachable(_MODE, message)
    if isinstance(e, deepl.QuotaExceededException):
        return ProviderError(_MODE, message, status=456)
    if isinstance(e, deepl.AuthorizationException):
        return ProviderError(_MODE, message, status=403)
    return ProviderError(_MODE, message, status=getattr(e, "http_status_code", None))


class Translator:
    """
    Wraps one deepl.Translator. Thread-safe.

    The SDK client is built on first use; tests pass a stand-in client.
    """

    def __init__(self, config: TranslationConfig, client: Optional[Any] = None):
        self._config = config
        self._client = client
        self._languages: Optional[List[Tuple[str, str]]] = None
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def _sdk(self) -> Any:
        if self._client is None:
            with self._lock:
                if self._client is None:
                    self._client = deepl.Translator(
                        self._config.deepl_key,
                        server_url=self._config.server_url,
                    )
        return self._client

    def translate(self, text: str, target_lang: str) -> Optional[str]:
        """
        Translate text into target_lang.

        Returns:
            The translation, or None when the text is already in target_lang.
        """
        try:
            result = self._sdk().translate_text(text, target_lang=target_lang, preserve_formatting=True)
        except deepl.DeepLException as e:
            raise map_deepl_error(e) from e

        detected = str(getattr(result, "detected_source_lang", "") or "")
        verbose(_LOG, "translated", source=detected, target=target_lang, chars=len(text))
        # "EN" detected vs "EN-GB" requested is still a translation
        if detected.upper() == target_lang.upper():
            return None
        return str(result.text)

    def languages(self) -> List[Tuple[str, str]]:
        """Target languages as (code, name) pairs, fetched once."""
        if self._languages is not None:
            return self._languages

        sdk = self._sdk()
        with self._lock:
            if self._languages is None:
                try:
                    self._languages = [(str(lang.code), str(lang.name)) for lang in sdk.get_target_languages()]
                except deepl.DeepLException as e:
                    raise map_deepl_error(e) from e
        return self._languages
