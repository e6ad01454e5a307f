"""Tests for the DeepL translation client (SDK client mocked)."""
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import deepl
import pytest

from tts_gateway.core.config import TranslationConfig
from tts_gateway.services.translation import Translator, map_deepl_error
from tts_gateway.tts.backend import BackendTimeout, ProviderError, RateLimited, Unreachable

CONFIG = TranslationConfig(deepl_key="dk:fx")


def _result(text: str, detected: str):
    return SimpleNamespace(text=text, detected_source_lang=detected)


@pytest.fixture
def sdk():
    return MagicMock()


class TestTranslate:

    def test_translated_text(self, sdk):
        sdk.translate_text.return_value = _result("Hallo Welt", "EN")

        assert Translator(CONFIG, client=sdk).translate("Hello world", "DE") == "Hallo Welt"
        sdk.translate_text.assert_called_once_with("Hello world", target_lang="DE", preserve_formatting=True)

    def test_same_language_returns_none(self, sdk):
        sdk.translate_text.return_value = _result("Hallo", "DE")
        assert Translator(CONFIG, client=sdk).translate("Hallo", "de") is None

    def test_regional_target_still_translates(self, sdk):
        sdk.translate_text.return_value = _result("Colour", "EN")
        assert Translator(CONFIG, client=sdk).translate("Color", "EN-GB") == "Colour"

    def test_sdk_built_lazily_from_config(self):
        config = TranslationConfig(deepl_key="dk", server_url="https://deepl.example")
        with patch("tts_gateway.services.translation.deepl.Translator") as make_sdk:
            make_sdk.return_value.translate_text.return_value = _result("Bonjour", "EN")
            translator = Translator(config)
            make_sdk.assert_not_called()
            assert translator.translate("Hello", "FR") == "Bonjour"
            translator.translate("Hello", "FR")
        make_sdk.assert_called_once_with("dk", server_url="https://deepl.example")

    def test_sdk_error_mapped(self, sdk):
        sdk.translate_text.side_effect = deepl.TooManyRequestsException("too many requests")
        with pytest.raises(RateLimited) as exc_info:
            Translator(CONFIG, client=sdk).translate("x", "DE")
        assert exc_info.value.mode == "DeepL"


class TestErrorMapping:

    def test_rate_limited(self):
        assert isinstance(map_deepl_error(deepl.TooManyRequestsException("slow down")), RateLimited)

    def test_connection(self):
        assert isinstance(map_deepl_error(deepl.ConnectionException("connection refused")), Unreachable)

    def test_connection_timeout(self):
        assert isinstance(map_deepl_error(deepl.ConnectionException("Request timed out")), BackendTimeout)

    def test_quota(self):
        err = map_deepl_error(deepl.QuotaExceededException("quota exceeded"))
        assert isinstance(err, ProviderError)
        assert err.status == 456

    def test_authorization(self):
        err = map_deepl_error(deepl.AuthorizationException("bad key"))
        assert isinstance(err, ProviderError)
        assert err.status == 403

    def test_generic(self):
        assert isinstance(map_deepl_error(deepl.DeepLException("boom")), ProviderError)


class TestLanguages:

    def test_languages_fetched_once(self, sdk):
        sdk.get_target_languages.return_value = [
            SimpleNamespace(code="DE", name="German"),
            SimpleNamespace(code="EN-GB", name="English (British)"),
        ]
        translator = Translator(CONFIG, client=sdk)

        assert translator.languages() == [("DE", "German"), ("EN-GB", "English (British)")]
        assert translator.languages() == [("DE", "German"), ("EN-GB", "English (British)")]
        assert sdk.get_target_languages.call_count == 1

    def test_languages_error(self, sdk):
        sdk.get_target_languages.side_effect = deepl.ConnectionException("connection refused")
        with pytest.raises(Unreachable):
            Translator(CONFIG, client=sdk).languages()

    def test_enabled(self):
        assert Translator(CONFIG).enabled is True
        assert Translator(TranslationConfig()).enabled is False
