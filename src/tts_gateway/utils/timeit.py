"""
Timing Utilities.

Two tools are provided:
    1. timeit: Context manager measuring one code block
    2. DeadlineMonitor: Per-request stage budgets with a single
       slow-request warning

Precision:
    Uses time.perf_counter() for high-resolution timing.

Example Usage:
    with timeit("synthesis") as t:
        result = backend.synthesize(text, voice)
    print(f"Took {t.timing.seconds:.3f}s")

    with DeadlineMonitor(total_ms=5000, stages={"cache": 50}) as dl:
        with dl.stage("cache"):
            entry = engine.lookup(fp)
"""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Dict, Iterator, Optional

from tts_gateway.core.logging import get_logger, warn

_LOG = get_logger("tts-gateway.deadline")


@dataclass
class Timing:
    """
    Timing measurement result.

    Attributes:
        name: Identifier for what was timed (e.g., "synthesis", "cache").
        seconds: Duration in seconds.
        meta: Optional metadata dictionary for additional context.
    """
    name: str
    seconds: float
    meta: Optional[Dict[str, Any]] = None


class timeit:
    """
    Context manager for timing code blocks.

    Example:
        with timeit("store_get") as t:
            raw = store.get(key)
        print(f"Lookup took {t.timing.seconds:.3f}s")
    """

    def __init__(self, name: str, meta: Optional[Dict[str, Any]] = None):
        self.name = name
        self.meta = meta
        self._t0: float | None = None
        self.timing: Timing | None = None

    def __enter__(self) -> "timeit":
        self._t0 = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        t1 = perf_counter()
        assert self._t0 is not None
        self.timing = Timing(name=self.name, seconds=(t1 - self._t0), meta=self.meta)


class DeadlineMonitor:
    """
    Watches one request against a total budget and per-stage budgets.

    At most one warning is emitted per request: the first stage that
    overruns its budget, or the total budget when the request closes.
    Monitoring never raises; slow requests still complete.

    Attributes:
        total_ms: Budget for the whole request.
        stages: Budget per named stage, in milliseconds.
        durations: Measured stage durations, in milliseconds.
        warned: True once the warning has been emitted.
    """

    def __init__(self, total_ms: float, stages: Optional[Dict[str, float]] = None, **fields: Any):
        self.total_ms = total_ms
        self.stages = dict(stages or {})
        self.durations: Dict[str, float] = {}
        self.warned = False
        self._fields = fields
        self._t0: float | None = None

    def __enter__(self) -> "DeadlineMonitor":
        self._t0 = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        elapsed = self.elapsed_ms()
        if elapsed > self.total_ms:
            self._warn("total", elapsed, self.total_ms)

    def elapsed_ms(self) -> float:
        if self._t0 is None:
            return 0.0
        return (perf_counter() - self._t0) * 1000.0

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        """Time one stage; warn if it exceeds its budget."""
        t0 = perf_counter()
        try:
            yield
        finally:
            ms = (perf_counter() - t0) * 1000.0
            self.durations[name] = self.durations.get(name, 0.0) + ms
            budget = self.stages.get(name)
            if budget is not None and ms > budget:
                self._warn(name, ms, budget)

    def _warn(self, stage: str, ms: float, budget: float) -> None:
        if self.warned:
            return
        self.warned = True
        warn(
            _LOG,
            "slow_request",
            stage=stage,
            ms=round(ms, 1),
            budget_ms=budget,
            **self._fields,
        )
