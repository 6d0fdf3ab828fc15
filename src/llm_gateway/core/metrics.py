"""
Gateway Metrics — in-process counters and latency histograms.

No external dependencies. Served as JSON from /metrics.

Usage:
    from llm_gateway.core.metrics import metrics

    metrics.inc("gateway.exchanges", labels={"state": "completed"})
    metrics.observe("gateway.first_chunk_ms", 342.1, labels={"provider": "openai"})

    snapshot = metrics.snapshot()  # -> dict for JSON response
"""

from __future__ import annotations

import time
from collections import defaultdict, deque


class MetricsCollector:
    """Counters plus rolling-window histograms with percentile summaries."""

    # Rolling window size for histograms, keeps memory bounded
    HISTOGRAM_MAX_SAMPLES = 1000

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._histograms: dict[str, deque[float]] = defaultdict(
            lambda: deque(maxlen=self.HISTOGRAM_MAX_SAMPLES)
        )
        self._started_at = time.time()

    def inc(self, name: str, value: int = 1, labels: dict | None = None) -> None:
        """Increment a counter."""
        self._counters[self._key(name, labels)] += value

    def observe(self, name: str, value: float, labels: dict | None = None) -> None:
        """Record one observation (e.g. latency in ms); oldest drops when full."""
        self._histograms[self._key(name, labels)].append(value)

    def counter(self, name: str, labels: dict | None = None) -> int:
        return self._counters.get(self._key(name, labels), 0)

    def reset(self) -> None:
        self._counters.clear()
        self._histograms.clear()

    def snapshot(self) -> dict:
        """Counters and histogram summaries (count/min/max/p50/p95/p99)."""
        histograms: dict[str, dict] = {}
        for key, samples in self._histograms.items():
            if not samples:
                continue
            ordered = sorted(samples)
            n = len(ordered)
            histograms[key] = {
                "count": n,
                "min": ordered[0],
                "max": ordered[-1],
                "p50": ordered[n // 2],
                "p95": ordered[min(int(n * 0.95), n - 1)],
                "p99": ordered[min(int(n * 0.99), n - 1)],
            }

        return {
            "uptime_seconds": round(time.time() - self._started_at, 1),
            "counters": dict(self._counters),
            "histograms": histograms,
        }

    def _key(self, name: str, labels: dict | None) -> str:
        """Metric key with a sorted label suffix, e.g. ``x{provider=openai}``."""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


# Process-wide singleton: import this directly
metrics = MetricsCollector()
