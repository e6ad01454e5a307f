"""Tests for the encrypted deduplicating cache engine."""
from __future__ import annotations

import time
from unittest.mock import MagicMock

import pytest

from conftest import make_cache
from tts_gateway.core.config import CacheConfig
from tts_gateway.services.gateway_service import SynthesisRequest
from tts_gateway.tts.backend import AudioFormat, BackendTimeout, EngineFailure, SynthResult
from tts_gateway.tts.cache import CacheDedupEngine, CacheEntry
from tts_gateway.tts.fingerprint import fingerprint
from tts_gateway.tts.store import MemoryStore, StoreError

REQ = SynthesisRequest(text="Hello", voice="v1", mode="Fake")


class Synth:
    def __init__(self, audio=b"mp3-bytes"):
        self.calls = 0
        self.audio = audio

    def __call__(self, req):
        self.calls += 1
        return SynthResult(audio=self.audio, audio_format=AudioFormat.MP3)


class TestCacheEntry:

    def test_json_roundtrip(self):
        entry = CacheEntry(fingerprint="f", ciphertext=b"token", audio_format=AudioFormat.OGG, created_at=1.5)
        parsed = CacheEntry.from_json("f", entry.to_json())
        assert parsed == entry

    @pytest.mark.parametrize("raw", [b"not json", b"{}", b'{"format": "flac", "ciphertext": "x"}', b"[]"])
    def test_malformed(self, raw):
        with pytest.raises(ValueError):
            CacheEntry.from_json("f", raw)


class TestResolve:
    """Hit, miss and bypass paths."""

    def test_miss_then_hit(self):
        engine = make_cache()
        synth = Synth()

        result, status = engine.resolve(REQ, synth)
        assert status == "miss"
        assert result.audio == b"mp3-bytes"

        result, status = engine.resolve(REQ, synth)
        assert status == "hit"
        assert result.audio == b"mp3-bytes"
        assert result.audio_format == AudioFormat.MP3
        assert synth.calls == 1
        engine.shutdown()

    def test_bypass_when_disabled(self):
        engine = CacheDedupEngine()
        synth = Synth()

        assert engine.enabled is False
        for _ in range(2):
            result, status = engine.resolve(REQ, synth)
            assert status == "bypass"
        assert synth.calls == 2
        engine.shutdown()

    def test_from_config_without_key_is_bypass(self):
        engine = CacheDedupEngine.from_config(CacheConfig(store_url="memory://"))
        assert engine.enabled is False
        assert engine.summary()["store"] is None
        engine.shutdown()

    def test_from_config_memory(self):
        engine = CacheDedupEngine.from_config(CacheConfig(store_url="memory://", encryption_key="k"))
        assert engine.enabled is True
        assert engine.summary()["store"] == "MemoryStore"
        engine.shutdown()

    def test_stored_payload_is_encrypted(self):
        store = MemoryStore()
        engine = make_cache(store=store)
        engine.resolve(REQ, Synth(audio=b"PLAINTEXT-AUDIO"))

        raw = store.get(engine.key_prefix + fingerprint(REQ))
        assert raw is not None
        assert b"PLAINTEXT-AUDIO" not in raw
        engine.shutdown()

    def test_backend_failure_not_cached(self):
        engine = make_cache()

        def failing(req):
            raise EngineFailure("Fake", "boom")

        with pytest.raises(EngineFailure):
            engine.resolve(REQ, failing)

        synth = Synth()
        _, status = engine.resolve(REQ, synth)
        assert status == "miss"
        assert synth.calls == 1
        engine.shutdown()


class TestDegradation:
    """Cache failures never reach the caller."""

    def test_wrong_key_is_miss(self):
        store = MemoryStore()
        first = make_cache(secret="old", store=store)
        first.resolve(REQ, Synth())

        second = make_cache(secret="new", store=store)
        synth = Synth()
        result, status = second.resolve(REQ, synth)

        assert status == "miss"
        assert synth.calls == 1
        assert result.audio == b"mp3-bytes"

        # The rewrite under the new key is readable
        _, status = second.resolve(REQ, synth)
        assert status == "hit"
        first.shutdown()
        second.shutdown()

    def test_malformed_entry_is_miss(self):
        store = MemoryStore()
        engine = make_cache(store=store)
        store.set(engine.key_prefix + fingerprint(REQ), b"garbage")

        assert engine.lookup(fingerprint(REQ)) is None
        _, status = engine.resolve(REQ, Synth())
        assert status == "miss"
        engine.shutdown()

    def test_store_read_error_is_miss(self):
        store = MagicMock()
        store.get.side_effect = StoreError("down")
        engine = make_cache(store=store)
        synth = Synth()

        result, status = engine.resolve(REQ, synth)
        assert status == "miss"
        assert result.audio == b"mp3-bytes"
        engine.shutdown()

    def test_store_write_error_skipped(self):
        store = MagicMock()
        store.get.return_value = None
        store.set.side_effect = StoreError("read-only")
        engine = make_cache(store=store)

        assert engine.write("ab" * 32, SynthResult(b"x", AudioFormat.MP3)) is False
        result, status = engine.resolve(REQ, Synth())
        assert status == "miss"
        assert result.audio == b"mp3-bytes"
        engine.shutdown()

    def test_ttl_passed_to_store(self):
        store = MagicMock()
        store.get.return_value = None
        engine = make_cache(store=store)
        engine.write("ab" * 32, SynthResult(b"x", AudioFormat.MP3))

        key, _, ttl = store.set.call_args[0]
        assert key == engine.key_prefix + "ab" * 32
        assert ttl == 60
        engine.shutdown()


class TestBypassTimeout:
    """The pass-through path is bounded by the same timeout as a miss."""

    @staticmethod
    def _slow(req):
        time.sleep(0.5)
        return SynthResult(audio=b"late", audio_format=AudioFormat.MP3)

    def test_bypass_times_out(self):
        engine = CacheDedupEngine()
        with pytest.raises(BackendTimeout):
            engine.resolve(REQ, self._slow, timeout=0.1)
        engine.shutdown()

    def test_bypass_and_cached_fail_alike(self):
        bypass, cached = CacheDedupEngine(), make_cache()
        for engine in (bypass, cached):
            with pytest.raises(BackendTimeout, match="synthesis exceeded"):
                engine.resolve(REQ, self._slow, timeout=0.1)
            engine.shutdown()
