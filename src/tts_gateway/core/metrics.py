"""
Prometheus Metrics for the Gateway.

Metrics Exposed:
    tts_gateway_requests_total            - /tts requests by mode and status
    tts_gateway_request_duration_seconds  - /tts latency by mode and cache status
    tts_gateway_audio_bytes_total         - Audio bytes returned to callers
    tts_gateway_cache_lookups_total       - Store lookups by result (hit/miss/error/bypass)
    tts_gateway_cache_writes_total        - Store writes by result (ok/error)
    tts_gateway_singleflight_joins_total  - Requests that waited on another owner
    tts_gateway_inflight_claims           - Claims currently held
    tts_gateway_backend_calls_total       - Backend invocations by mode and outcome
    tts_gateway_backend_duration_seconds  - Backend latency by mode

Usage:
    from tts_gateway.core.metrics import metrics

    metrics.record_request("eSpeak", "success", 0.42, cache_status="miss", audio_bytes=8812)
    metrics.record_cache_lookup("hit")
    content, content_type = metrics.get_metrics_response()

All metrics live in a private CollectorRegistry so tests can create fresh
GatewayMetrics instances without "duplicated timeseries" errors.
"""
from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class GatewayMetrics:
    """
    Gateway metrics collection.

    The module-level `metrics` instance is what application code uses.
    Prometheus metric operations are thread-safe.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self._registry = registry or CollectorRegistry()

        self._requests_total = Counter(
            "tts_gateway_requests_total",
            "Total /tts requests",
            ["mode", "status"],
            registry=self._registry,
        )
        self._request_duration = Histogram(
            "tts_gateway_request_duration_seconds",
            "/tts request duration in seconds",
            ["mode", "cache_status"],
            buckets=(0.005, 0.025, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self._registry,
        )
        self._audio_bytes_total = Counter(
            "tts_gateway_audio_bytes_total",
            "Total audio bytes returned",
            registry=self._registry,
        )
        self._cache_lookups = Counter(
            "tts_gateway_cache_lookups_total",
            "Audio cache lookups",
            ["result"],
            registry=self._registry,
        )
        self._cache_writes = Counter(
            "tts_gateway_cache_writes_total",
            "Audio cache writes",
            ["result"],
            registry=self._registry,
        )
        self._singleflight_joins = Counter(
            "tts_gateway_singleflight_joins_total",
            "Requests that joined an in-flight synthesis instead of starting one",
            registry=self._registry,
        )
        self._inflight_claims = Gauge(
            "tts_gateway_inflight_claims",
            "Fingerprints with a synthesis currently in flight",
            registry=self._registry,
        )
        self._backend_calls = Counter(
            "tts_gateway_backend_calls_total",
            "Backend synthesize invocations",
            ["mode", "outcome"],
            registry=self._registry,
        )
        self._backend_duration = Histogram(
            "tts_gateway_backend_duration_seconds",
            "Backend synthesize duration in seconds",
            ["mode"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_request(
        self,
        mode: str,
        status: str,
        duration: float,
        cache_status: str = "miss",
        audio_bytes: int = 0,
    ) -> None:
        """
        Record a completed /tts request.

        Args:
            mode: Mode id, or "unknown" when the mode failed validation.
            status: "success" or an error label ("unknown_voice", ...).
            duration: Request duration in seconds.
            cache_status: "hit", "miss" or "bypass".
            audio_bytes: Size of returned audio in bytes.
        """
        self._requests_total.labels(mode=mode, status=status).inc()
        self._request_duration.labels(mode=mode, cache_status=cache_status).observe(duration)
        if audio_bytes > 0:
            self._audio_bytes_total.inc(audio_bytes)

    def record_cache_lookup(self, result: str) -> None:
        """result: "hit", "miss", "error" or "bypass"."""
        self._cache_lookups.labels(result=result).inc()

    def record_cache_write(self, result: str) -> None:
        """result: "ok" or "error"."""
        self._cache_writes.labels(result=result).inc()

    def inc_singleflight_joins(self) -> None:
        self._singleflight_joins.inc()

    def set_inflight_claims(self, count: int) -> None:
        self._inflight_claims.set(count)

    def record_backend_call(self, mode: str, outcome: str, duration: float) -> None:
        """outcome: "ok" or the BackendError class name."""
        self._backend_calls.labels(mode=mode, outcome=outcome).inc()
        self._backend_duration.labels(mode=mode).observe(duration)

    def get_metrics_response(self) -> tuple[bytes, str]:
        """
        Get metrics in Prometheus format.

        Returns:
            Tuple of (content_bytes, content_type)
        """
        return generate_latest(self._registry), CONTENT_TYPE_LATEST


# Import this to record metrics: from tts_gateway.core.metrics import metrics
metrics = GatewayMetrics()
