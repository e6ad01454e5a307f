"""
Singleflight: At Most One Synthesis per Fingerprint.

When N identical requests miss the cache at the same time, only the first
one (the owner) starts a synthesis job; the others join its claim and
receive the identical outcome, success or failure.

Architecture:
    The claim table is split into 64 shards keyed by fingerprint, each
    with its own threading.Lock, so unrelated fingerprints never contend
    on a global lock.

    Jobs run on daemon worker threads, detached from the request thread,
    inside a copy of the caller's contextvars context so log lines keep
    the request id. Requesters only subscribe to the claim's Future; a
    caller that disconnects does not cancel the job.

Worker Slots:
    At most `workers` jobs hold a slot at once; further jobs wait in a
    FIFO queue. A slot is given back when its job finishes or when its
    claim times out, whichever comes first. A hung backend call therefore
    keeps its thread but not its slot, and queued claims still get to run.

Claim Lifecycle:
    1. First requester on a miss creates the claim and queues the job
    2. Later requesters with the same fingerprint join (waiters += 1)
    3. When the job takes a slot, the timeout Timer starts
    4. The claim is resolved exactly once, by whichever comes first:
         - the job returning (result)
         - the job raising (exception, shared by every waiter)
         - the timeout Timer firing (timeout error)
    5. The claim is removed from its shard before the Future is set, so
       the next request after a failure starts a fresh attempt

    A job that finishes after its claim timed out still runs to the end
    (and may populate the cache) but cannot re-resolve the claim.

Usage:
    table = InFlightTable(workers=16)
    result, joined = table.run(fp, job, timeout=10.0,
                               on_timeout=lambda: BackendTimeout("gTTS", "timed out"))

    # Same slots and timeout, no deduplication
    result = table.run_unshared(job, timeout=10.0, on_timeout=...)
"""
from __future__ import annotations

import contextvars
import threading
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Optional, Tuple

from tts_gateway.core.config import Defaults
from tts_gateway.core.logging import get_logger, verbose, warn
from tts_gateway.core.metrics import metrics

_LOG = get_logger("tts-gateway.singleflight")

SHARD_COUNT = 64

Job = Callable[[], Any]
ErrorFactory = Callable[[], BaseException]


@dataclass
class InFlightStats:
    """Statistics for the claim table."""
    shards: int
    inflight: int
    total_claims: int
    total_joins: int
    total_timeouts: int
    active_jobs: int
    queued_jobs: int


@dataclass
class InFlightClaim:
    """
    One synthesis in flight.

    Attributes:
        fingerprint: Cache fingerprint being computed ("" when unshared).
        future: Resolved once with the job's result or exception.
        waiters: Requesters subscribed, owner included.
        shared: False for run_unshared() claims, which live in no shard.
        holds_slot: True while the claim's job counts against the slots.
    """
    fingerprint: str
    future: Future = field(default_factory=Future)
    waiters: int = 1
    shared: bool = True
    resolved: bool = False
    holds_slot: bool = False
    timer: Optional[threading.Timer] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


@dataclass
class _QueuedJob:
    claim: InFlightClaim
    job: Job
    timeout: float
    on_timeout: ErrorFactory
    ctx: contextvars.Context


class _Shard:
    __slots__ = ("lock", "claims")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.claims: Dict[str, InFlightClaim] = {}


class InFlightTable:
    """
    Sharded table of in-flight claims plus the worker slots running jobs.

    One instance is built with the gateway service and shared by every
    request in the process.
    """

    def __init__(self, workers: int = Defaults.CACHE_WORKERS, shards: int = SHARD_COUNT):
        self._shards = [_Shard() for _ in range(shards)]
        self._workers = max(1, int(workers))

        self._slot_lock = threading.Lock()
        self._active = 0
        self._queue: Deque[_QueuedJob] = deque()
        self._closed = False

        self._count_lock = threading.Lock()
        self._inflight = 0
        self._total_claims = 0
        self._total_joins = 0
        self._total_timeouts = 0

    def _shard(self, fp: str) -> _Shard:
        return self._shards[int(fp[:8], 16) % len(self._shards)]

    @property
    def inflight_count(self) -> int:
        with self._count_lock:
            return self._inflight

    def stats(self) -> InFlightStats:
        with self._slot_lock:
            active, queued = self._active, len(self._queue)
        with self._count_lock:
            return InFlightStats(
                shards=len(self._shards),
                inflight=self._inflight,
                total_claims=self._total_claims,
                total_joins=self._total_joins,
                total_timeouts=self._total_timeouts,
                active_jobs=active,
                queued_jobs=queued,
            )

    def _adjust_inflight(self, delta: int) -> None:
        with self._count_lock:
            self._inflight += delta
            if delta > 0:
                self._total_claims += 1
            count = self._inflight
        metrics.set_inflight_claims(count)

    # =========================================================================
    # Resolution
    # =========================================================================

    def _resolve(
        self,
        claim: InFlightClaim,
        result: Any = None,
        exc: Optional[BaseException] = None,
    ) -> bool:
        """
        Resolve a claim once. Later calls are no-ops.

        Returns:
            True if this call resolved the claim.
        """
        with claim.lock:
            if claim.resolved:
                return False
            claim.resolved = True

        waiters = 1
        if claim.shared:
            shard = self._shard(claim.fingerprint)
            with shard.lock:
                if shard.claims.get(claim.fingerprint) is claim:
                    del shard.claims[claim.fingerprint]
                waiters = claim.waiters
            self._adjust_inflight(-1)

        if claim.timer is not None:
            claim.timer.cancel()

        if exc is not None:
            claim.future.set_exception(exc)
        else:
            claim.future.set_result(result)

        verbose(_LOG, "claim_resolved", fp=claim.fingerprint[:8], waiters=waiters, ok=exc is None)
        return True

    def _on_timeout(self, claim: InFlightClaim, make_error: ErrorFactory) -> None:
        if self._resolve(claim, exc=make_error()):
            with self._count_lock:
                self._total_timeouts += 1
            warn(_LOG, "claim_timeout", fp=claim.fingerprint[:8], waiters=claim.waiters)
        # The job may still be running; its thread no longer counts as a slot
        self._release_slot(claim)

    # =========================================================================
    # Worker slots
    # =========================================================================

    def _enqueue(self, claim: InFlightClaim, job: Job, timeout: float, on_timeout: ErrorFactory) -> None:
        queued = _QueuedJob(claim, job, timeout, on_timeout, contextvars.copy_context())
        with self._slot_lock:
            closed = self._closed
            if not closed:
                self._queue.append(queued)
        if closed:
            self._resolve(claim, exc=RuntimeError("claim table is shut down"))
            return
        self._dispatch()

    def _dispatch(self) -> None:
        starting = []
        with self._slot_lock:
            while self._active < self._workers and self._queue:
                queued = self._queue.popleft()
                if queued.claim.resolved:
                    continue
                queued.claim.holds_slot = True
                self._active += 1
                starting.append(queued)

        for queued in starting:
            self._start(queued)

    def _start(self, queued: _QueuedJob) -> None:
        claim = queued.claim
        claim.timer = threading.Timer(queued.timeout, self._on_timeout, args=(claim, queued.on_timeout))
        claim.timer.daemon = True
        claim.timer.start()

        worker = threading.Thread(
            target=queued.ctx.run,
            args=(self._run_job, claim, queued.job),
            name=f"tts-synth-{claim.fingerprint[:8] or 'direct'}",
            daemon=True,
        )
        try:
            worker.start()
        except RuntimeError as e:
            self._resolve(claim, exc=e)
            self._release_slot(claim)

    def _release_slot(self, claim: InFlightClaim) -> None:
        with self._slot_lock:
            if not claim.holds_slot:
                return
            claim.holds_slot = False
            self._active -= 1
        self._dispatch()

    def _run_job(self, claim: InFlightClaim, job: Job) -> None:
        try:
            result = job()
        except Exception as e:
            self._resolve(claim, exc=e)
        except BaseException as e:
            self._resolve(claim, exc=RuntimeError(f"synthesis job aborted: {type(e).__name__}"))
            raise
        else:
            if not self._resolve(claim, result=result):
                verbose(_LOG, "late_result", fp=claim.fingerprint[:8])
        finally:
            self._release_slot(claim)

    # =========================================================================
    # Public API
    # =========================================================================

    def run(
        self,
        fp: str,
        job: Job,
        timeout: float,
        on_timeout: ErrorFactory,
    ) -> Tuple[Any, bool]:
        """
        Run job for fp, or join the job already running for it.

        Args:
            fp: Fingerprint identifying the work.
            job: Zero-argument callable, run on a worker thread by the owner.
            timeout: Seconds, from the moment the job starts, before the
                claim resolves with on_timeout().
            on_timeout: Builds the exception delivered on timeout.

        Returns:
            Tuple of (job result, joined) where joined is True for
            requesters that subscribed to another owner's claim.

        Raises:
            Whatever the job raised, or on_timeout()'s exception.
        """
        shard = self._shard(fp)
        with shard.lock:
            claim = shard.claims.get(fp)
            if claim is not None:
                claim.waiters += 1
                owner = False
            else:
                claim = InFlightClaim(fingerprint=fp)
                shard.claims[fp] = claim
                owner = True

        if owner:
            self._adjust_inflight(1)
            verbose(_LOG, "claim_owner", fp=fp[:8])
            self._enqueue(claim, job, timeout, on_timeout)
        else:
            with self._count_lock:
                self._total_joins += 1
            metrics.inc_singleflight_joins()
            verbose(_LOG, "singleflight_join", fp=fp[:8], waiters=claim.waiters)

        return claim.future.result(), not owner

    def run_unshared(self, job: Job, timeout: float, on_timeout: ErrorFactory) -> Any:
        """
        Run job on a worker slot under the same timeout, without deduplication.

        Raises:
            Whatever the job raised, or on_timeout()'s exception.
        """
        claim = InFlightClaim(fingerprint="", shared=False)
        self._enqueue(claim, job, timeout, on_timeout)
        return claim.future.result()

    def shutdown(self) -> None:
        """Stop accepting jobs and fail queued ones. Running jobs finish in the background."""
        with self._slot_lock:
            self._closed = True
            queued = list(self._queue)
            self._queue.clear()
        for item in queued:
            self._resolve(item.claim, exc=RuntimeError("claim table is shut down"))
