"""Tests for the singleflight claim table."""
from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import wait_for
from tts_gateway.tts.backend import BackendTimeout, EngineFailure
from tts_gateway.tts.fingerprint import hash_bytes
from tts_gateway.tts.singleflight import InFlightTable


def _timeout():
    return BackendTimeout("Fake", "timed out")


@pytest.fixture
def table():
    t = InFlightTable(workers=4)
    yield t
    t.shutdown()


class TestDedup:
    """Concurrent identical work runs once."""

    def test_concurrent_callers_share_one_job(self, table):
        fp = hash_bytes(b"same")
        gate = threading.Event()
        calls = []

        def job():
            calls.append(1)
            gate.wait(timeout=5)
            return b"audio"

        n = 5
        with ThreadPoolExecutor(max_workers=n) as pool:
            futures = [pool.submit(table.run, fp, job, 5.0, _timeout) for _ in range(n)]
            assert wait_for(lambda: table.stats().total_joins == n - 1)
            gate.set()
            results = [f.result(timeout=5) for f in futures]

        assert len(calls) == 1
        assert [r for r, _ in results] == [b"audio"] * n
        assert sorted(joined for _, joined in results) == [False] + [True] * (n - 1)
        assert table.inflight_count == 0

    def test_different_fingerprints_run_separately(self, table):
        calls = []

        def job():
            calls.append(1)
            return len(calls)

        table.run(hash_bytes(b"a"), job, 5.0, _timeout)
        table.run(hash_bytes(b"b"), job, 5.0, _timeout)
        assert len(calls) == 2


class TestRelease:
    """Claims are released on every path."""

    def test_failure_shared_and_released(self, table):
        fp = hash_bytes(b"fail")

        def failing():
            raise EngineFailure("Fake", "boom")

        with pytest.raises(EngineFailure):
            table.run(fp, failing, 5.0, _timeout)
        assert table.inflight_count == 0

        result, joined = table.run(fp, lambda: b"ok", 5.0, _timeout)
        assert result == b"ok"
        assert joined is False

    def test_timeout_resolves_claim(self, table):
        fp = hash_bytes(b"slow")
        gate = threading.Event()

        def slow():
            gate.wait(timeout=5)
            return b"late"

        with pytest.raises(BackendTimeout):
            table.run(fp, slow, 0.1, _timeout)

        assert table.inflight_count == 0
        assert wait_for(lambda: table.stats().total_timeouts == 1)

        # The late job cannot re-resolve the claim; a new request starts fresh
        gate.set()
        result, joined = table.run(fp, lambda: b"fresh", 5.0, _timeout)
        assert result == b"fresh"
        assert joined is False

    def test_stats(self, table):
        table.run(hash_bytes(b"s"), lambda: 1, 5.0, _timeout)
        stats = table.stats()
        assert stats.shards == 64
        assert stats.total_claims == 1
        assert stats.inflight == 0


class TestWorkerSlots:
    """Timed-out jobs give their slot back; queued jobs get their full budget."""

    def test_timed_out_job_does_not_starve_new_claims(self):
        table = InFlightTable(workers=1)
        gate = threading.Event()

        def hung():
            gate.wait(timeout=5)
            return b"late"

        with pytest.raises(BackendTimeout):
            table.run(hash_bytes(b"hung"), hung, 0.1, _timeout)
        assert wait_for(lambda: table.stats().active_jobs == 0)

        result, _ = table.run(hash_bytes(b"fast"), lambda: b"fast", 0.3, _timeout)
        assert result == b"fast"
        gate.set()
        table.shutdown()

    def test_timer_starts_when_job_starts(self):
        table = InFlightTable(workers=1)
        gate = threading.Event()

        def blocking():
            gate.wait(timeout=5)
            return b"first"

        with ThreadPoolExecutor(max_workers=2) as pool:
            first = pool.submit(table.run, hash_bytes(b"first"), blocking, 5.0, _timeout)
            assert wait_for(lambda: table.stats().active_jobs == 1)
            second = pool.submit(table.run, hash_bytes(b"second"), lambda: b"second", 0.2, _timeout)
            assert wait_for(lambda: table.stats().queued_jobs == 1)

            time.sleep(0.3)
            gate.set()

            assert first.result(timeout=5)[0] == b"first"
            assert second.result(timeout=5)[0] == b"second"
        assert table.stats().total_timeouts == 0
        table.shutdown()

    def test_shutdown_fails_queued_jobs(self):
        table = InFlightTable(workers=1)
        gate = threading.Event()

        with ThreadPoolExecutor(max_workers=2) as pool:
            pool.submit(table.run, hash_bytes(b"busy"), lambda: gate.wait(timeout=5), 5.0, _timeout)
            assert wait_for(lambda: table.stats().active_jobs == 1)
            queued = pool.submit(table.run, hash_bytes(b"queued"), lambda: b"never", 5.0, _timeout)
            assert wait_for(lambda: table.stats().queued_jobs == 1)

            table.shutdown()
            with pytest.raises(RuntimeError, match="shut down"):
                queued.result(timeout=5)
            gate.set()
        assert table.inflight_count == 0


class TestUnshared:
    """run_unshared: same slots and timeout, no deduplication."""

    def test_result(self, table):
        assert table.run_unshared(lambda: b"ok", 5.0, _timeout) == b"ok"
        assert table.stats().total_claims == 0

    def test_timeout(self, table):
        with pytest.raises(BackendTimeout):
            table.run_unshared(lambda: time.sleep(0.5), 0.1, _timeout)

    def test_error_propagates(self, table):
        def failing():
            raise EngineFailure("Fake", "boom")

        with pytest.raises(EngineFailure):
            table.run_unshared(failing, 5.0, _timeout)

    def test_identical_work_not_deduplicated(self, table):
        calls = []
        table.run_unshared(lambda: calls.append(1), 5.0, _timeout)
        table.run_unshared(lambda: calls.append(1), 5.0, _timeout)
        assert len(calls) == 2
