"""
Key-Value Stores for the Audio Cache.

The cache engine talks to a store through a two-method interface:

    get(key) -> Optional[bytes]
    set(key, value, ttl_seconds)

Implementations:
    - RedisStore: External Redis (redis:// or rediss://). Shared across
      processes and restarts. Every entry is written with one SETEX so a
      reader never sees a partial value.
    - MemoryStore: In-process LRU with per-entry TTL (memory://). Useful
      for single-process deployments and tests.

Both raise StoreError on backend trouble; the cache engine turns that
into a miss (read) or a skipped write.

Usage:
    store = open_store(config.cache)
    if store is not None:
        store.set("tts-gateway:audio:5a2b...", payload, ttl_seconds=86400)
"""
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Optional, TYPE_CHECKING

import redis

from tts_gateway.core.config import Defaults
from tts_gateway.core.logging import get_logger, info, verbose

if TYPE_CHECKING:
    from tts_gateway.core.config import CacheConfig

_LOG = get_logger("tts-gateway.store")


class StoreError(Exception):
    """The store could not complete an operation."""


class BaseStore:
    """Interface shared by all stores."""

    url: str = ""

    def get(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    def set(self, key: str, value: bytes, ttl_seconds: int = 0) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def ping(self) -> bool:
        return True


# =============================================================================
# Redis
# =============================================================================

class RedisStore(BaseStore):
    """Store backed by a Redis server."""

    def __init__(self, url: str, client: Optional["redis.Redis"] = None):
        self.url = url
        self._client = client if client is not None else redis.from_url(url)

    def get(self, key: str) -> Optional[bytes]:
        try:
            return self._client.get(key)
        except redis.RedisError as e:
            raise StoreError(f"redis get failed: {e}") from e

    def set(self, key: str, value: bytes, ttl_seconds: int = 0) -> None:
        try:
            if ttl_seconds > 0:
                self._client.setex(key, ttl_seconds, value)
            else:
                self._client.set(key, value)
        except redis.RedisError as e:
            raise StoreError(f"redis set failed: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            return bool(self._client.delete(key))
        except redis.RedisError as e:
            raise StoreError(f"redis delete failed: {e}") from e

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False


# =============================================================================
# In-process LRU
# =============================================================================

@dataclass
class _MemoryItem:
    value: bytes
    expires_at: float = 0.0         # 0 = never
    created_at: float = field(default_factory=time.time)


class MemoryStore(BaseStore):
    """
    Thread-safe LRU store with per-entry TTL.

    When capacity is exceeded the least recently used entry is evicted.
    Expired entries are dropped on access.

    Attributes:
        max_items: Maximum number of entries to keep.
    """

    def __init__(self, max_items: int = Defaults.CACHE_MAX_ITEMS):
        self.url = "memory://"
        self.max_items = int(max_items)

        # OrderedDict keeps LRU order: oldest first
        self._d: "OrderedDict[str, _MemoryItem]" = OrderedDict()
        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._expirations = 0

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            item = self._d.get(key)
            if item is None:
                self._misses += 1
                return None

            if item.expires_at and time.time() >= item.expires_at:
                del self._d[key]
                self._expirations += 1
                self._misses += 1
                verbose(_LOG, "expired", key=key[-8:])
                return None

            self._d.move_to_end(key)
            self._hits += 1
            return item.value

    def set(self, key: str, value: bytes, ttl_seconds: int = 0) -> None:
        expires_at = time.time() + ttl_seconds if ttl_seconds > 0 else 0.0
        with self._lock:
            self._d[key] = _MemoryItem(value=value, expires_at=expires_at)
            self._d.move_to_end(key)

            while len(self._d) > self.max_items:
                self._d.popitem(last=False)

    def delete(self, key: str) -> bool:
        with self._lock:
            if key in self._d:
                del self._d[key]
                return True
            return False

    def clear(self) -> int:
        with self._lock:
            count = len(self._d)
            self._d.clear()
            return count

    def cleanup_expired(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = time.time()
        with self._lock:
            expired = [k for k, item in self._d.items() if item.expires_at and item.expires_at <= now]
            for k in expired:
                del self._d[k]
            self._expirations += len(expired)

        if expired:
            verbose(_LOG, "cleanup", removed=len(expired))
        return len(expired)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "size": len(self._d),
                "max_items": self.max_items,
                "expirations": self._expirations,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._d)

    def __contains__(self, key: str) -> bool:
        """Membership only; does not check expiry."""
        with self._lock:
            return key in self._d


# =============================================================================
# Factory
# =============================================================================

def open_store(config: "CacheConfig") -> Optional[BaseStore]:
    """
    Open the store named by config.store_url.

    Returns:
        A store, or None when no URL is configured.

    Raises:
        ValueError: If the URL scheme is not supported.
    """
    url = config.store_url
    if not url:
        return None

    scheme = url.split("://", 1)[0].lower()
    if scheme in ("redis", "rediss", "unix"):
        store: BaseStore = RedisStore(url)
    elif scheme == "memory":
        store = MemoryStore(max_items=config.max_items)
    else:
        raise ValueError(f"unsupported store url scheme: {scheme!r}")

    info(_LOG, "store_opened", kind=type(store).__name__, scheme=scheme)
    return store
