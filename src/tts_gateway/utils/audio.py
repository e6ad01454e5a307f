"""
Audio Container Helpers.

mbrola writes WAV to a pipe, so it cannot seek back and fill in the RIFF
chunk size and the data chunk size once synthesis is done. Both fields are
left as placeholders; fix_wav_header() rewrites them from the actual byte
count so players accept the file.

Canonical 44-byte header layout used here:
    [0:4]   "RIFF"
    [4:8]   RIFF chunk size = total length - 8     (little-endian uint32)
    [8:12]  "WAVE"
    ...
    [36:40] "data"
    [40:44] data chunk size = total length - 44    (little-endian uint32)
"""
from __future__ import annotations

import struct

WAV_HEADER_SIZE = 44


def is_header_only(wav: bytes) -> bool:
    """True when the output carries a header but no samples."""
    return len(wav) <= WAV_HEADER_SIZE


def fix_wav_header(wav: bytes) -> bytes:
    """
    Rewrite the RIFF and data sizes of a streamed WAV.

    Args:
        wav: WAV bytes with a canonical 44-byte header.

    Returns:
        The same audio with correct size fields.

    Raises:
        ValueError: If the input is not a RIFF/WAVE stream.
    """
    if len(wav) < WAV_HEADER_SIZE or wav[0:4] != b"RIFF" or wav[8:12] != b"WAVE":
        raise ValueError("not a RIFF/WAVE stream")

    buf = bytearray(wav)
    struct.pack_into("<I", buf, 4, len(buf) - 8)
    struct.pack_into("<I", buf, 40, len(buf) - WAV_HEADER_SIZE)
    return bytes(buf)
