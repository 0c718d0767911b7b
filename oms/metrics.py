"""
Observability metrics for the order service.

Tracks:
- Latency percentiles (p50, p95, p99) per service operation
- Cache hit / miss / degraded counts
- Request and error counts per operation
- How often the local fallback store served a call
"""

import statistics
import threading
from collections import defaultdict, deque
from datetime import datetime
from typing import Dict, Optional


class MetricsCollector:
    """
    In-memory metrics collector.

    For production, this would integrate with Prometheus/StatsD.
    """

    def __init__(self, window_size: int = 1000):
        """
        Args:
            window_size: Number of recent samples to keep for percentiles
        """
        self.window_size = window_size
        self._lock = threading.Lock()

        # Latency tracking (sliding window)
        self.latencies: Dict[str, deque] = defaultdict(lambda: deque(maxlen=window_size))

        # Cache metrics
        self.cache_hits = 0
        self.cache_misses = 0
        self.cache_degraded: Dict[str, int] = defaultdict(int)

        # Request counters
        self.request_counts: Dict[str, int] = defaultdict(int)
        self.error_counts: Dict[str, int] = defaultdict(int)
        self.fallback_counts: Dict[str, int] = defaultdict(int)

        self.start_time = datetime.utcnow()
        self.last_reset = datetime.utcnow()

    def record_latency(self, operation: str, latency_ms: float):
        """Record a latency sample for an operation."""
        with self._lock:
            self.latencies[operation].append(latency_ms)
            self.request_counts[operation] += 1

    def record_cache_hit(self):
        with self._lock:
            self.cache_hits += 1

    def record_cache_miss(self):
        with self._lock:
            self.cache_misses += 1

    def record_cache_degraded(self, reason: str):
        with self._lock:
            self.cache_degraded[reason] += 1

    def record_error(self, operation: str):
        with self._lock:
            self.error_counts[operation] += 1

    def record_fallback(self, operation: str):
        """Record that the local fallback store served an operation."""
        with self._lock:
            self.fallback_counts[operation] += 1

    def get_percentile(self, operation: str, percentile: float) -> Optional[float]:
        """
        Get a latency percentile for an operation.

        Returns:
            Latency in ms, or None if insufficient data
        """
        values = sorted(self.latencies.get(operation, ()))
        if len(values) < 10:  # Need at least 10 samples for meaningful percentiles
            return None
        index = min(int(len(values) * (percentile / 100.0)), len(values) - 1)
        return values[index]

    def get_cache_hit_rate(self) -> float:
        """Get the cache hit rate as a percentage."""
        total = self.cache_hits + self.cache_misses
        if total == 0:
            return 0.0
        return (self.cache_hits / total) * 100.0

    def get_error_rate(self, operation: str) -> float:
        total_requests = self.request_counts.get(operation, 0)
        if total_requests == 0:
            return 0.0
        return (self.error_counts.get(operation, 0) / total_requests) * 100.0

    def get_summary(self) -> Dict:
        """Get a summary of all metrics (served at GET /metrics)."""
        uptime_seconds = (datetime.utcnow() - self.start_time).total_seconds()

        summary = {
            "uptime_seconds": round(uptime_seconds, 2),
            "cache": {
                "hit_rate_pct": round(self.get_cache_hit_rate(), 2),
                "total_hits": self.cache_hits,
                "total_misses": self.cache_misses,
                "degraded": dict(self.cache_degraded),
            },
            "fallback": dict(self.fallback_counts),
            "operations": {},
        }

        for operation in list(self.request_counts.keys()):
            metrics = {
                "total_requests": self.request_counts[operation],
                "total_errors": self.error_counts.get(operation, 0),
                "error_rate_pct": round(self.get_error_rate(operation), 2),
            }
            for pct in (50, 95, 99):
                value = self.get_percentile(operation, pct)
                if value is not None:
                    metrics[f"latency_p{pct}_ms"] = round(value, 2)
            if self.latencies[operation]:
                metrics["latency_avg_ms"] = round(statistics.mean(self.latencies[operation]), 2)
            summary["operations"][operation] = metrics

        return summary

    def reset(self):
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self.latencies.clear()
            self.cache_hits = 0
            self.cache_misses = 0
            self.cache_degraded.clear()
            self.request_counts.clear()
            self.error_counts.clear()
            self.fallback_counts.clear()
            self.last_reset = datetime.utcnow()


# Global metrics collector instance
metrics_collector = MetricsCollector()
