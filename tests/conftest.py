"""Shared fixtures: a scriptable in-process backend and service builders."""
from __future__ import annotations

import threading
import time
from typing import Callable, Optional, Set

import pytest

from tts_gateway.core.config import GatewayConfig, Settings
from tts_gateway.services.gateway_service import GatewayService
from tts_gateway.tts.backend import AudioFormat, BackendDescriptor, BaseBackend, SynthResult
from tts_gateway.tts.cache import CacheDedupEngine
from tts_gateway.tts.crypto import PayloadCipher
from tts_gateway.tts.singleflight import InFlightTable
from tts_gateway.tts.store import MemoryStore


class FakeBackend(BaseBackend):
    """Counts calls; output depends on text, voice and rate."""

    def __init__(
        self,
        mode: str = "Fake",
        voices: Optional[Set[str]] = None,
        min_rate: Optional[float] = 0.5,
        max_rate: Optional[float] = 2.0,
        audio_format: AudioFormat = AudioFormat.MP3,
        timeout_s: float = 5.0,
    ):
        self.descriptor = BackendDescriptor(
            mode=mode,
            native_format=audio_format,
            min_rate=min_rate,
            max_rate=max_rate,
            default_voice="v1",
            timeout_s=timeout_s,
        )
        self._voices = voices if voices is not None else {"v1", "v2"}
        self._lock = threading.Lock()
        self.calls = 0
        self.texts = []
        self.gate: Optional[threading.Event] = None
        self.error: Optional[Callable[[], Exception]] = None
        self.delay = 0.0

    def supported_voices(self) -> Set[str]:
        return set(self._voices)

    def synthesize(self, text, voice, rate=1.0, preferred_format=None):
        with self._lock:
            self.calls += 1
            self.texts.append(text)
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error()
        audio = f"{self.mode}|{voice}|{rate}|{text}".encode("utf-8")
        return SynthResult(audio=audio, audio_format=self.descriptor.native_format)


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll until predicate() is true or timeout elapses."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def make_config(raw: Optional[dict] = None) -> GatewayConfig:
    return Settings(raw=raw or {}).get_gateway_config()


def make_cache(secret: str = "test-secret", store: Optional[MemoryStore] = None) -> CacheDedupEngine:
    return CacheDedupEngine(
        store=store if store is not None else MemoryStore(max_items=100),
        cipher=PayloadCipher(secret),
        ttl_seconds=60,
        inflight=InFlightTable(workers=8),
    )


def make_service(
    backends=None,
    cache: Optional[CacheDedupEngine] = None,
    raw: Optional[dict] = None,
    translator=None,
) -> GatewayService:
    if backends is None:
        backends = {"Fake": FakeBackend()}
    if cache is None:
        cache = CacheDedupEngine(inflight=InFlightTable(workers=8))
    return GatewayService(make_config(raw), backends=backends, cache=cache, translator=translator)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def cached_service(fake_backend):
    service = make_service(backends={"Fake": fake_backend}, cache=make_cache())
    yield service
    service.shutdown()


@pytest.fixture
def bypass_service(fake_backend):
    service = make_service(backends={"Fake": fake_backend})
    yield service
    service.shutdown()
