"""Tests for cache fingerprints."""
from __future__ import annotations

from dataclasses import replace

from tts_gateway.services.gateway_service import SynthesisRequest
from tts_gateway.tts.backend import AudioFormat
from tts_gateway.tts.fingerprint import canonical_fields, fingerprint, hash_bytes, hash_dict


def _req(**overrides) -> SynthesisRequest:
    base = SynthesisRequest(text="Hello world", voice="en1", mode="eSpeak")
    return replace(base, **overrides)


class TestHashHelpers:

    def test_hash_bytes_is_sha256_hex(self):
        h = hash_bytes(b"")
        assert h == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

    def test_hash_dict_ignores_key_order(self):
        assert hash_dict({"a": 1, "b": 2}) == hash_dict({"b": 2, "a": 1})

    def test_hash_dict_sensitive_to_values(self):
        assert hash_dict({"a": 1}) != hash_dict({"a": 2})


class TestFingerprint:
    """Fingerprints are deterministic and cover every audio-changing field."""

    def test_deterministic(self):
        assert fingerprint(_req()) == fingerprint(_req())
        assert len(fingerprint(_req())) == 64

    def test_each_field_changes_fingerprint(self):
        base = fingerprint(_req())
        variants = [
            _req(text="Hello world!"),
            _req(voice="en2"),
            _req(mode="gTTS"),
            _req(speaking_rate=1.5),
            _req(preferred_format=AudioFormat.MP3),
            _req(translation_lang="DE"),
        ]
        prints = {fingerprint(r) for r in variants}
        assert base not in prints
        assert len(prints) == len(variants)

    def test_max_length_not_part_of_fingerprint(self):
        assert fingerprint(_req(max_length=10)) == fingerprint(_req(max_length=None))

    def test_rate_int_and_float_equal(self):
        assert fingerprint(_req(speaking_rate=1)) == fingerprint(_req(speaking_rate=1.0))

    def test_canonical_fields(self):
        fields = canonical_fields(_req(preferred_format=AudioFormat.OGG))
        assert fields == {
            "text": "Hello world",
            "voice": "en1",
            "mode": "eSpeak",
            "speaking_rate": 1.0,
            "preferred_format": "ogg",
            "translation_lang": None,
        }
