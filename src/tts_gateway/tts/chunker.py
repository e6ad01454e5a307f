"""
Text Chunking for the gTTS Endpoint.

The Google Translate TTS endpoint rejects queries longer than 200
characters, so longer text is split and the MP3 responses concatenated.
Splitting prefers natural boundaries so each chunk is spoken with a
sensible intonation:

    1. Sentence endings (. ! ? …)
    2. Clause boundaries (, ; :)
    3. Whitespace
    4. Hard split at max_chars as a last resort

Adjacent short pieces are packed back together up to max_chars to keep
the number of outbound requests low.

Example:
    >>> split_text("Hello there. How are you today?", max_chars=20)
    ['Hello there.', 'How are you today?']
"""
from __future__ import annotations

import re
from typing import List

from tts_gateway.core.logging import get_logger, verbose

_LOG = get_logger("tts-gateway.chunker")

GTTS_MAX_CHARS = 200

# Keeps the delimiter with the sentence
_SENT_SPLIT = re.compile(r"([^.!?…]+[.!?…]+|[^.!?…]+$)", re.UNICODE)

# Used when a single sentence is too long
_SOFT_SPLIT = re.compile(r"([^,;:]+[,;:]+|[^,;:]+$)", re.UNICODE)


def _hard_split(piece: str, max_chars: int) -> List[str]:
    """Split at the last whitespace before max_chars, or exactly at max_chars."""
    out: List[str] = []
    rest = piece
    while len(rest) > max_chars:
        cut = rest.rfind(" ", 0, max_chars + 1)
        if cut <= 0:
            cut = max_chars
        head = rest[:cut].strip()
        if head:
            out.append(head)
        rest = rest[cut:].strip()
    if rest:
        out.append(rest)
    return out


def _pieces(text: str, max_chars: int) -> List[str]:
    pieces: List[str] = []
    for match in _SENT_SPLIT.finditer(text):
        sentence = match.group(0).strip()
        if not sentence:
            continue
        if len(sentence) <= max_chars:
            pieces.append(sentence)
            continue

        for soft in _SOFT_SPLIT.finditer(sentence):
            part = soft.group(0).strip()
            if not part:
                continue
            if len(part) <= max_chars:
                pieces.append(part)
            else:
                pieces.extend(_hard_split(part, max_chars))
    return pieces


def split_text(text: str, max_chars: int = GTTS_MAX_CHARS) -> List[str]:
    """
    Split text into chunks of at most max_chars characters.

    Args:
        text: Input text.
        max_chars: Maximum characters per chunk (default 200).

    Returns:
        Non-empty chunks in reading order. Empty input gives an empty list.
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")

    text = text.strip()
    if not text:
        return []
    if len(text) <= max_chars:
        return [text]

    chunks: List[str] = []
    current = ""
    for piece in _pieces(text, max_chars):
        candidate = f"{current} {piece}" if current else piece
        if len(candidate) <= max_chars:
            current = candidate
        else:
            chunks.append(current)
            current = piece
    if current:
        chunks.append(current)

    verbose(_LOG, "chunked", chunks=len(chunks), max_chars=max_chars)
    return chunks
