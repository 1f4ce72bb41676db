"""
Metrics counters and histograms implementation.

Provides thread-safe counters for:
- Tag read ingestion (reads in, queued, shed)
- Drop reasons (insufficient data, degenerate geometry, persistence, ...)
- Position engine tier usage
- Timing histograms (batch latency, residuals, finding time)

Every dropped read or skipped estimate is counted against a reason code.
"""

import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class CounterSnapshot:
    """Snapshot of counter state at a point in time."""

    timestamp: float
    counters: Dict[str, int]
    drop_reasons: Dict[str, int]
    histograms: Dict[str, List[float]]

    def total_dropped(self) -> int:
        """Total items dropped across all reasons."""
        return sum(self.drop_reasons.values())

    def drop_rate(self, total_reads: int) -> float:
        """Drop rate as a percentage of total_reads."""
        if total_reads == 0:
            return 0.0
        return (self.total_dropped() / total_reads) * 100.0


class MetricsCollector:
    """
    Thread-safe metrics collection.

    Usage:
        collector = MetricsCollector()
        collector.increment('tag_reads_in')
        collector.increment_drop('insufficient_data')
        collector.record_histogram('batch_latency_ms', 1.23)

        snapshot = collector.snapshot()
        logger.info("dropped=%d", snapshot.total_dropped())
    """

    DROP_REASONS = {
        'insufficient_data': 'No recent measurements for position estimate',
        'degenerate_geometry': 'Trilateration system singular, fell back a tier',
        'no_fingerprint_match': 'No fingerprint within match distance',
        'queue_full': 'Bounded event queue shed its oldest event',
        'stale': 'Measurement older than the recency window',
        'unknown_reader': 'Tag read from an unregistered reader',
        'persistence_failed': 'Batch write failed, batch re-queued',
        'session_timeout': 'Finding session exceeded its timeout',
        'gateway_command_failed': 'Reader command rejected by the gateway',
    }

    def __init__(self):
        """Initialize metrics collector."""
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = defaultdict(int)
        self._drop_reasons: Dict[str, int] = defaultdict(int)
        self._histograms: Dict[str, List[float]] = defaultdict(list)
        self._start_time = time.time()

        self._init_standard_counters()

    def _init_standard_counters(self):
        """Initialize standard counter keys so reports are stable."""
        standard_counters = [
            'tag_reads_in',
            'tag_reads_processed',
            'position_estimates',
            'batches_persisted',
            'finding_sessions_started',
            'finding_sessions_found',
            'tags_lost',
            'metadata_lookup_failures',
        ]

        with self._lock:
            for counter in standard_counters:
                if counter not in self._counters:
                    self._counters[counter] = 0

            for reason in self.DROP_REASONS:
                if reason not in self._drop_reasons:
                    self._drop_reasons[reason] = 0

    def increment(self, counter_name: str, value: int = 1):
        """
        Increment a counter by value.

        Args:
            counter_name: Name of counter to increment
            value: Amount to increment (default 1)
        """
        with self._lock:
            self._counters[counter_name] += value

    def increment_drop(self, reason: str, value: int = 1):
        """
        Increment drop counter for a specific reason.

        Args:
            reason: Drop reason code (should be in DROP_REASONS)
            value: Amount to increment (default 1)
        """
        if reason not in self.DROP_REASONS:
            logger.warning("Unknown drop reason '%s'", reason)

        with self._lock:
            self._drop_reasons[reason] += value
            self._counters['items_dropped'] += value

    def get_counter(self, counter_name: str) -> int:
        """Current value of a counter (0 if never incremented)."""
        with self._lock:
            return self._counters.get(counter_name, 0)

    def get_drop_count(self, reason: str) -> int:
        """Current drop count for a reason code."""
        with self._lock:
            return self._drop_reasons.get(reason, 0)

    def record_histogram(self, histogram_name: str, value: float, max_samples: int = 10000):
        """
        Record a value in a histogram.

        Args:
            histogram_name: Name of histogram
            value: Value to record
            max_samples: Maximum samples to keep (prevents unbounded growth)
        """
        with self._lock:
            samples = self._histograms[histogram_name]
            samples.append(value)

            if len(samples) > max_samples:
                self._histograms[histogram_name] = samples[-max_samples // 2:]

    def get_histogram_stats(self, histogram_name: str) -> Optional[Dict[str, float]]:
        """
        Get statistics for a histogram.

        Returns:
            Dict with min, max, mean, median, p95, p99, count;
            None if the histogram is empty
        """
        with self._lock:
            samples = list(self._histograms.get(histogram_name, []))

        if not samples:
            return None

        values = np.asarray(samples, dtype=float)
        return {
            'count': int(values.size),
            'min': float(values.min()),
            'max': float(values.max()),
            'mean': float(values.mean()),
            'median': float(np.median(values)),
            'p95': float(np.percentile(values, 95)),
            'p99': float(np.percentile(values, 99)),
        }

    def snapshot(self) -> CounterSnapshot:
        """Copy of the current metrics state."""
        with self._lock:
            return CounterSnapshot(
                timestamp=time.time(),
                counters=dict(self._counters),
                drop_reasons=dict(self._drop_reasons),
                histograms={k: list(v) for k, v in self._histograms.items()},
            )

    def reset(self):
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._counters.clear()
            self._drop_reasons.clear()
            self._histograms.clear()
            self._start_time = time.time()
        self._init_standard_counters()

    def get_uptime(self) -> float:
        """Seconds since initialization or last reset."""
        return time.time() - self._start_time

    def format_summary(self) -> str:
        """Human-readable metrics summary."""
        snapshot = self.snapshot()
        lines = ["=" * 70, f"  METRICS SUMMARY (uptime: {self.get_uptime():.1f}s)", "=" * 70]

        lines.append("COUNTERS:")
        for name, value in sorted(snapshot.counters.items()):
            lines.append(f"  {name:30s}: {value:8d}")

        total_dropped = snapshot.total_dropped()
        if total_dropped > 0:
            lines.append("DROP REASONS:")
            for reason, count in sorted(snapshot.drop_reasons.items()):
                if count > 0:
                    pct = (count / total_dropped) * 100
                    lines.append(f"  {reason:30s}: {count:8d} ({pct:5.1f}%)")

        if snapshot.histograms:
            lines.append("HISTOGRAMS:")
            for name in sorted(snapshot.histograms):
                stats = self.get_histogram_stats(name)
                if stats:
                    lines.append(
                        f"  {name}: count={stats['count']}, mean={stats['mean']:.3f}, "
                        f"p95={stats['p95']:.3f}, p99={stats['p99']:.3f}"
                    )

        lines.append("=" * 70)
        return "\n".join(lines)

    def log_summary(self, level: int = logging.INFO):
        """Write the summary to the module logger."""
        logger.log(level, "\n%s", self.format_summary())
