"""
Log Formatters for JSON and Console Output.

    JsonlFormatter: one JSON object per line, for the rotating log file
    ColoredConsoleFormatter: human-readable line for the terminal

Output Examples:
    JSONL (file):
        {"ts":"2026-01-15T14:30:05+00:00","level":2,"tag":"INFO","message":"cache_hit","request_id":"abc123","extra":{"fp":"5a2b9c1e"}}

    Console (colored):
        14:30:05 [ INFO  ] (abc123) cache_hit fp=5a2b9c1e mode=eSpeak 0.002s
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict

from . import colors
from .colors import Colors, get_tag_color

# Fields that get a fixed color on the console regardless of value
_FIELD_COLORS = {
    "mode": Colors.MAGENTA,
    "voice": Colors.MAGENTA,
    "fp": Colors.CYAN,
    "cache": Colors.BLUE,
    "status": Colors.BLUE,
}


def _paint(text: str, color: str) -> str:
    # Read the flag at call time; configure_logging() and tests may flip it.
    if not colors.USE_COLORS:
        return text
    return f"{color}{text}{Colors.RESET}"


class JsonlFormatter(logging.Formatter):
    """
    Format log records as JSON Lines for file output.

    Output Format:
        {
            "ts": "...",            # ISO timestamp with timezone
            "level": 2,             # Numeric level (1-4)
            "tag": "INFO",
            "message": "cache_hit",
            "request_id": "abc123",
            "seconds": 0.5,         # Optional timing
            "extra": {...}          # Optional structured fields
        }
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).astimezone().isoformat()

        payload: Dict[str, Any] = {
            "ts": ts,
            "level": getattr(record, "numeric_level", 2),
            "tag": getattr(record, "tag", record.levelname),
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }

        event = getattr(record, "event", None)
        if event:
            payload["event"] = event

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            payload["seconds"] = seconds

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            payload["extra"] = extra_data

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """
    Format log records with ANSI colors for console output.

    Output Format:
        HH:MM:SS [ TAG   ] (rid) message key=value 0.123s
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tag = getattr(record, "tag", record.levelname)
        rid = getattr(record, "request_id", "-")

        parts = [
            _paint(ts, Colors.DIM),
            _paint(f"[{tag:^7}]", get_tag_color(tag)),
        ]
        if rid != "-":
            parts.append(_paint(f"({rid})", Colors.DIM + Colors.CYAN))
        parts.append(record.getMessage())

        event = getattr(record, "event", None)
        if event:
            parts.append(_paint(f"event={event}", Colors.BLUE))

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            for key, value in extra_data.items():
                parts.append(_paint(f"{key}={value}", _FIELD_COLORS.get(key, Colors.DIM)))

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            parts.append(_paint(f"{seconds:.3f}s", self._timing_color(seconds)))

        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line

    @staticmethod
    def _timing_color(seconds: float) -> str:
        # Cache hits land well under 0.1s; cloud synthesis usually under 1s
        if seconds < 0.1:
            return Colors.GREEN
        if seconds < 1.0:
            return Colors.YELLOW
        return Colors.RED
