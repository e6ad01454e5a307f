"""Tests for the numeric-level logging system."""
from __future__ import annotations

import json
import logging

import pytest

from tts_gateway.core.logging import (
    ColoredConsoleFormatter,
    JsonlFormatter,
    LogLevel,
    coerce_level,
    configure_logging,
    get_level,
    get_logger,
    get_request_id,
    info,
    set_level,
    set_request_id,
    verbose,
    warn,
)
from tts_gateway.core.logging.colors import supports_color


class TestLogLevelEnum:
    """Test LogLevel enum values."""

    def test_level_enum_values(self):
        assert LogLevel.MINIMAL == 1
        assert LogLevel.NORMAL == 2
        assert LogLevel.VERBOSE == 3
        assert LogLevel.DEBUG == 4

    def test_level_enum_ordering(self):
        assert LogLevel.MINIMAL < LogLevel.NORMAL < LogLevel.VERBOSE < LogLevel.DEBUG


class TestLevelCoercion:
    """Test level coercion from various input types."""

    def test_level_from_int(self):
        assert coerce_level(1) == LogLevel.MINIMAL
        assert coerce_level(4) == LogLevel.DEBUG

    def test_level_from_names(self):
        assert coerce_level("minimal") == LogLevel.MINIMAL
        assert coerce_level("VERBOSE") == LogLevel.VERBOSE
        assert coerce_level("warn") == LogLevel.MINIMAL
        assert coerce_level("INFO") == LogLevel.NORMAL
        assert coerce_level("trace") == LogLevel.DEBUG

    def test_level_from_numeric_string(self):
        assert coerce_level("3") == LogLevel.VERBOSE

    def test_python_levels(self):
        assert coerce_level(logging.WARNING) == LogLevel.MINIMAL
        assert coerce_level(logging.INFO) == LogLevel.NORMAL
        assert coerce_level(logging.DEBUG) == LogLevel.DEBUG

    def test_invalid_defaults_to_normal(self):
        assert coerce_level("invalid") == LogLevel.NORMAL
        assert coerce_level(None) == LogLevel.NORMAL
        assert coerce_level(True) == LogLevel.NORMAL


class TestRequestId:

    def test_default_and_set(self):
        set_request_id("abc123def456")
        assert get_request_id() == "abc123def456"


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("tts-gateway.test", logging.INFO, __file__, 1, "cache_hit", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:

    def test_jsonl_fields(self):
        line = JsonlFormatter().format(
            _record(tag="INFO", request_id="rid1", numeric_level=2, seconds=0.25, extra_data={"fp": "5a2b"})
        )
        payload = json.loads(line)

        assert payload["message"] == "cache_hit"
        assert payload["tag"] == "INFO"
        assert payload["level"] == 2
        assert payload["request_id"] == "rid1"
        assert payload["seconds"] == 0.25
        assert payload["extra"] == {"fp": "5a2b"}

    def test_console_contains_fields(self):
        line = ColoredConsoleFormatter().format(
            _record(tag="WARN", request_id="rid2", extra_data={"mode": "gTTS"})
        )
        assert "cache_hit" in line
        assert "rid2" in line
        assert "mode=gTTS" in line

    def test_no_color_env(self, monkeypatch):
        monkeypatch.setenv("TTS_GW_NO_COLOR", "1")
        assert supports_color() is False


class TestPersistence:
    """JSONL file output configured through the environment."""

    @pytest.fixture
    def log_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TTS_GW_LOG_DIR", str(tmp_path))
        monkeypatch.setenv("TTS_GW_JSONL_FILE", "test.jsonl")
        monkeypatch.setenv("TTS_GW_LOG_LEVEL", "2")
        configure_logging(force=True)
        yield tmp_path
        for handler in logging.getLogger().handlers:
            handler.close()
        monkeypatch.delenv("TTS_GW_LOG_DIR")
        monkeypatch.delenv("TTS_GW_JSONL_FILE")
        monkeypatch.delenv("TTS_GW_LOG_LEVEL")
        configure_logging(force=True)

    def test_jsonl_written(self, log_dir):
        log = get_logger("tts-gateway.test")
        set_request_id("persist01")
        info(log, "cache_miss", fp="abcd1234")
        verbose(log, "hidden_at_normal")
        warn(log, "slow_request", stage="cache")
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = (log_dir / "test.jsonl").read_text(encoding="utf-8").strip().splitlines()
        messages = [json.loads(line)["message"] for line in lines]

        assert "cache_miss" in messages
        assert "slow_request" in messages
        assert "hidden_at_normal" not in messages
        first = json.loads(lines[messages.index("cache_miss")])
        assert first["request_id"] == "persist01"
        assert first["extra"] == {"fp": "abcd1234"}

    def test_level_from_env(self, log_dir):
        assert get_level() == LogLevel.NORMAL


def test_set_level_roundtrip():
    previous = get_level()
    try:
        set_level(LogLevel.DEBUG)
        assert get_level() == LogLevel.DEBUG
    finally:
        set_level(previous)
