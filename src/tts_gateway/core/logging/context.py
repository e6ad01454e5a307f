"""
Request Context and Configuration State for Logging.

The request id lives in a ContextVar so every log line written while
handling a request carries it. Detached synthesis jobs are started in a
copy of the submitting context (see tts/singleflight.py), so their log
lines keep the id of the request that became the owner.

Environment Variables:
    - TTS_GW_LOG_LEVEL: Override log level (1-4 or name)
    - TTS_GW_LOG_DIR: Directory for the JSONL log file
    - TTS_GW_JSONL_FILE: JSONL filename
    - TTS_GW_LOG_ROTATE_BYTES: Max log file size before rotation
    - TTS_GW_LOG_ROTATE_BACKUP: Number of rotated files to keep
    - TTS_GW_SETTINGS: Settings file to read the logging section from
"""
from __future__ import annotations

import os
from contextvars import ContextVar
from typing import Any, Dict

import yaml

from .levels import LEVEL_NAMES, LogLevel

# "-" marks log lines written outside a request
_request_id: ContextVar[str] = ContextVar("request_id", default="-")

_configured: bool = False
_log_config: Dict[str, Any] = {}
_current_level: LogLevel = LogLevel.NORMAL


def get_request_id() -> str:
    """Get current request ID from context, or "-" if not set."""
    return _request_id.get()


def set_request_id(rid: str) -> None:
    """Set request ID in context for log correlation."""
    _request_id.set(rid)


def get_level() -> LogLevel:
    return _current_level


def set_level(level: LogLevel) -> None:
    global _current_level
    _current_level = level


def get_level_name() -> str:
    """Get current log level as a name ("NORMAL", "DEBUG", ...)."""
    return LEVEL_NAMES.get(_current_level, "NORMAL")


def is_configured() -> bool:
    return _configured


def set_configured(value: bool) -> None:
    global _configured
    _configured = value


def get_log_config() -> Dict[str, Any]:
    return _log_config


def set_log_config(config: Dict[str, Any]) -> None:
    global _log_config
    _log_config = config


def _env_int(name: str) -> int | None:
    value = os.getenv(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def read_logging_config() -> Dict[str, Any]:
    """
    Read logging configuration from the settings file and environment.

    Configuration priority (highest to lowest):
        1. Environment variables (TTS_GW_LOG_LEVEL, etc.)
        2. settings.yaml logging section
        3. Default values

    A missing or unreadable settings file is not an error here; logging
    must come up before configuration problems can be reported.
    """
    cfg: Dict[str, Any] = {}

    settings_path = os.getenv("TTS_GW_SETTINGS", "config/settings.yaml")
    try:
        from tts_gateway.core.config import load_settings
        settings = load_settings(settings_path)
        section = settings.raw.get("logging")
        if isinstance(section, dict):
            cfg.update(section)
    except (OSError, ValueError, yaml.YAMLError):
        pass

    if os.getenv("TTS_GW_LOG_LEVEL"):
        cfg["level"] = os.environ["TTS_GW_LOG_LEVEL"]
    if os.getenv("TTS_GW_LOG_DIR"):
        cfg["log_dir"] = os.environ["TTS_GW_LOG_DIR"]
    if os.getenv("TTS_GW_JSONL_FILE"):
        cfg["jsonl_file"] = os.environ["TTS_GW_JSONL_FILE"]

    rotate_bytes = _env_int("TTS_GW_LOG_ROTATE_BYTES")
    if rotate_bytes is not None:
        cfg["rotate_max_bytes"] = rotate_bytes
    rotate_backup = _env_int("TTS_GW_LOG_ROTATE_BACKUP")
    if rotate_backup is not None:
        cfg["rotate_backup_count"] = rotate_backup

    return cfg
