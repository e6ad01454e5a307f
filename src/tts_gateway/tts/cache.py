"""
Encrypted, Deduplicating Audio Cache.

CacheDedupEngine sits between the request router and the backends:

    1. fp = fingerprint(req)
    2. Store lookup: a decryptable entry is returned as a hit, the
       backend is not called
    3. Miss: the singleflight table makes one requester the owner; its
       detached job re-checks the store, calls the backend, encrypts and
       writes the entry, then resolves the claim for every waiter

Cache failures never reach the caller. A store error, an undecryptable
token (wrong key, tampering) or a malformed envelope on read is a miss; a
store error on write is logged and skipped.

Pass-through Mode:
    With no store URL or no encryption key the engine is disabled: every
    request synthesizes, with no singleflight. The call still runs on a
    worker slot under the backend timeout, so a slow backend fails the
    same way with or without the cache. `enabled` is False and the
    X-Cache header reads "bypass".

Entry Format:
    Each entry is one JSON document written with one store command:

        {"format": "mp3", "created_at": 1718000000.0, "ciphertext": "<fernet token>"}

Example:
    engine = CacheDedupEngine.from_config(config.cache)
    result, status = engine.resolve(req, synthesize, timeout=10.0)
    # status in ("hit", "miss", "bypass")
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple, TYPE_CHECKING

from tts_gateway.core.config import Defaults
from tts_gateway.core.logging import get_logger, info, verbose, warn
from tts_gateway.core.metrics import metrics
from tts_gateway.tts.backend import AudioFormat, BackendTimeout, SynthResult
from tts_gateway.tts.crypto import InvalidToken, PayloadCipher
from tts_gateway.tts.fingerprint import fingerprint
from tts_gateway.tts.singleflight import InFlightTable
from tts_gateway.tts.store import BaseStore, StoreError, open_store
from tts_gateway.utils.timeit import DeadlineMonitor, timeit

if TYPE_CHECKING:
    from tts_gateway.core.config import CacheConfig
    from tts_gateway.services.gateway_service import SynthesisRequest

_LOG = get_logger("tts-gateway.cache")

Synthesize = Callable[["SynthesisRequest"], SynthResult]


@dataclass(frozen=True)
class CacheEntry:
    """
    One cached synthesis result.

    Attributes:
        fingerprint: Fingerprint the entry is stored under.
        ciphertext: Fernet token of the audio bytes.
        audio_format: Encoding of the decrypted audio.
        created_at: Unix timestamp of the write.
    """
    fingerprint: str
    ciphertext: bytes
    audio_format: AudioFormat
    created_at: float = field(default_factory=time.time)

    def to_json(self) -> bytes:
        return json.dumps(
            {
                "format": self.audio_format.value,
                "created_at": self.created_at,
                "ciphertext": self.ciphertext.decode("ascii"),
            },
            separators=(",", ":"),
        ).encode("utf-8")

    @classmethod
    def from_json(cls, fp: str, raw: bytes) -> "CacheEntry":
        """
        Parse a stored envelope.

        Raises:
            ValueError: If the envelope is malformed.
        """
        try:
            doc = json.loads(raw)
            return cls(
                fingerprint=fp,
                ciphertext=str(doc["ciphertext"]).encode("ascii"),
                audio_format=AudioFormat(doc["format"]),
                created_at=float(doc.get("created_at", 0.0)),
            )
        except (TypeError, KeyError, UnicodeError, json.JSONDecodeError) as e:
            raise ValueError(f"malformed cache entry: {e}") from e


class CacheDedupEngine:
    """
    Content-addressed encrypted cache with singleflight deduplication.

    Thread-safe. One instance is shared by all requests in a process.
    """

    def __init__(
        self,
        store: Optional[BaseStore] = None,
        cipher: Optional[PayloadCipher] = None,
        ttl_seconds: int = Defaults.CACHE_TTL_SECONDS,
        key_prefix: str = Defaults.CACHE_KEY_PREFIX,
        inflight: Optional[InFlightTable] = None,
    ):
        self._store = store
        self._cipher = cipher
        self.ttl_seconds = int(ttl_seconds)
        self.key_prefix = key_prefix
        self._inflight = inflight if inflight is not None else InFlightTable()

    @classmethod
    def from_config(cls, config: "CacheConfig") -> "CacheDedupEngine":
        """Build the engine; a missing URL or key yields pass-through mode."""
        if not config.enabled:
            info(_LOG, "cache_disabled", store=bool(config.store_url), key=bool(config.encryption_key))
            return cls(inflight=InFlightTable(workers=config.workers))

        return cls(
            store=open_store(config),
            cipher=PayloadCipher(config.encryption_key or ""),
            ttl_seconds=config.ttl_seconds,
            key_prefix=config.key_prefix,
            inflight=InFlightTable(workers=config.workers),
        )

    @property
    def enabled(self) -> bool:
        return self._store is not None and self._cipher is not None

    @property
    def inflight(self) -> InFlightTable:
        return self._inflight

    def summary(self) -> Dict[str, Any]:
        """Cache state for /health."""
        return {
            "enabled": self.enabled,
            "store": type(self._store).__name__ if self._store is not None else None,
            "ttl_seconds": self.ttl_seconds,
            "inflight": self._inflight.inflight_count,
        }

    def _key(self, fp: str) -> str:
        return f"{self.key_prefix}{fp}"

    # =========================================================================
    # Store access
    # =========================================================================

    def lookup(self, fp: str) -> Optional[SynthResult]:
        """Read and decrypt an entry. Any failure is a miss."""
        if self._store is None or self._cipher is None:
            return None

        with timeit("store_get") as t:
            try:
                raw = self._store.get(self._key(fp))
            except StoreError as e:
                metrics.record_cache_lookup("error")
                warn(_LOG, "cache_read_failed", fp=fp[:8], error=str(e))
                return None

        if raw is None:
            metrics.record_cache_lookup("miss")
            return None

        try:
            entry = CacheEntry.from_json(fp, raw)
            audio = self._cipher.decrypt(entry.ciphertext)
        except (ValueError, InvalidToken) as e:
            metrics.record_cache_lookup("error")
            warn(_LOG, "cache_entry_unreadable", fp=fp[:8], error=type(e).__name__)
            return None

        metrics.record_cache_lookup("hit")
        verbose(_LOG, "store_hit", fp=fp[:8], bytes=len(audio), seconds=t.timing.seconds if t.timing else None)
        return SynthResult(audio=audio, audio_format=entry.audio_format)

    def write(self, fp: str, result: SynthResult) -> bool:
        """Encrypt and store a result. Failures are logged and skipped."""
        if self._store is None or self._cipher is None:
            return False

        entry = CacheEntry(
            fingerprint=fp,
            ciphertext=self._cipher.encrypt(result.audio),
            audio_format=result.audio_format,
        )
        try:
            self._store.set(self._key(fp), entry.to_json(), self.ttl_seconds)
        except StoreError as e:
            metrics.record_cache_write("error")
            warn(_LOG, "cache_write_failed", fp=fp[:8], error=str(e))
            return False

        metrics.record_cache_write("ok")
        verbose(_LOG, "store_write", fp=fp[:8], bytes=len(result.audio))
        return True

    # =========================================================================
    # Resolution
    # =========================================================================

    def resolve(
        self,
        req: "SynthesisRequest",
        synthesize: Synthesize,
        timeout: float = 30.0,
        deadline: Optional[DeadlineMonitor] = None,
    ) -> Tuple[SynthResult, str]:
        """
        Return audio for req from the cache or a (shared) synthesis.

        Args:
            req: Validated request.
            synthesize: Calls the backend for req.
            timeout: Claim timeout, normally the backend's timeout.
            deadline: Optional monitor timing the cache lookup stage.

        Returns:
            Tuple of (SynthResult, cache_status).

        Raises:
            BackendError: When the shared synthesis fails or times out.
        """
        def timed_out() -> BackendTimeout:
            return BackendTimeout(req.mode, f"synthesis exceeded {timeout}s")

        if not self.enabled:
            metrics.record_cache_lookup("bypass")
            result = self._inflight.run_unshared(lambda: synthesize(req), timeout=timeout, on_timeout=timed_out)
            return result, "bypass"

        fp = fingerprint(req)

        if deadline is not None:
            with deadline.stage("cache"):
                cached = self.lookup(fp)
        else:
            cached = self.lookup(fp)
        if cached is not None:
            info(_LOG, "cache_hit", fp=fp[:8], mode=req.mode)
            return cached, "hit"

        info(_LOG, "cache_miss", fp=fp[:8], mode=req.mode)

        def job() -> SynthResult:
            again = self.lookup(fp)
            if again is not None:
                return again
            result = synthesize(req)
            self.write(fp, result)
            return result

        result, _ = self._inflight.run(
            fp,
            job,
            timeout=timeout,
            on_timeout=timed_out,
        )
        return result, "miss"

    def shutdown(self) -> None:
        self._inflight.shutdown()
