"""Tests for the key-value stores behind the audio cache."""
from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import redis

from tts_gateway.core.config import CacheConfig
from tts_gateway.tts.store import MemoryStore, RedisStore, StoreError, open_store


class TestMemoryStore:
    """In-process LRU with per-entry TTL."""

    def test_set_get(self):
        store = MemoryStore(max_items=4)
        store.set("k", b"v")
        assert store.get("k") == b"v"
        assert store.get("missing") is None
        assert "k" in store
        assert len(store) == 1

    def test_lru_eviction(self):
        store = MemoryStore(max_items=2)
        store.set("a", b"1")
        store.set("b", b"2")
        store.get("a")          # a becomes most recently used
        store.set("c", b"3")

        assert store.get("b") is None
        assert store.get("a") == b"1"
        assert store.get("c") == b"3"

    def test_ttl_expiry(self):
        store = MemoryStore()
        with patch("tts_gateway.tts.store.time.time", return_value=1000.0):
            store.set("k", b"v", ttl_seconds=10)
        with patch("tts_gateway.tts.store.time.time", return_value=1009.0):
            assert store.get("k") == b"v"
        with patch("tts_gateway.tts.store.time.time", return_value=1010.0):
            assert store.get("k") is None
        assert store.stats()["expirations"] == 1

    def test_zero_ttl_never_expires(self):
        store = MemoryStore()
        store.set("k", b"v", ttl_seconds=0)
        with patch("tts_gateway.tts.store.time.time", return_value=1e12):
            assert store.get("k") == b"v"

    def test_cleanup_expired(self):
        store = MemoryStore()
        with patch("tts_gateway.tts.store.time.time", return_value=100.0):
            store.set("old", b"1", ttl_seconds=1)
            store.set("keep", b"2", ttl_seconds=0)
        with patch("tts_gateway.tts.store.time.time", return_value=200.0):
            assert store.cleanup_expired() == 1
        assert "old" not in store
        assert "keep" in store

    def test_delete_and_clear(self):
        store = MemoryStore()
        store.set("a", b"1")
        store.set("b", b"2")
        assert store.delete("a") is True
        assert store.delete("a") is False
        assert store.clear() == 1
        assert len(store) == 0

    def test_stats(self):
        store = MemoryStore(max_items=5)
        store.set("a", b"1")
        store.get("a")
        store.get("b")
        stats = store.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["size"] == 1
        assert stats["max_items"] == 5


class TestRedisStore:
    """RedisStore against a mocked client."""

    def test_set_with_ttl_uses_setex(self):
        client = MagicMock()
        store = RedisStore("redis://localhost:6379/0", client=client)
        store.set("k", b"v", ttl_seconds=30)
        client.setex.assert_called_once_with("k", 30, b"v")
        client.set.assert_not_called()

    def test_set_without_ttl(self):
        client = MagicMock()
        store = RedisStore("redis://localhost", client=client)
        store.set("k", b"v")
        client.set.assert_called_once_with("k", b"v")

    def test_get(self):
        client = MagicMock()
        client.get.return_value = b"payload"
        store = RedisStore("redis://localhost", client=client)
        assert store.get("k") == b"payload"

    def test_errors_wrapped(self):
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("down")
        client.setex.side_effect = redis.TimeoutError("slow")
        store = RedisStore("redis://localhost", client=client)

        with pytest.raises(StoreError):
            store.get("k")
        with pytest.raises(StoreError):
            store.set("k", b"v", ttl_seconds=1)

    def test_ping_failure_is_false(self):
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("down")
        assert RedisStore("redis://localhost", client=client).ping() is False


class TestOpenStore:

    def test_no_url(self):
        assert open_store(CacheConfig()) is None

    def test_memory(self):
        store = open_store(CacheConfig(store_url="memory://", max_items=7))
        assert isinstance(store, MemoryStore)
        assert store.max_items == 7

    def test_redis(self):
        with patch("tts_gateway.tts.store.redis.from_url") as from_url:
            store = open_store(CacheConfig(store_url="redis://cache:6379/1"))
        assert isinstance(store, RedisStore)
        from_url.assert_called_once_with("redis://cache:6379/1")

    def test_unknown_scheme(self):
        with pytest.raises(ValueError):
            open_store(CacheConfig(store_url="memcached://x"))
