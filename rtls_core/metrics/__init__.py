"""
Metrics Module: Diagnostics, counters, histograms.

Usage:
    from rtls_core.metrics import get_metrics

    metrics = get_metrics()
    metrics.increment('tag_reads_in')
    metrics.increment_drop('insufficient_data')
    metrics.record_histogram('batch_latency_ms', 1.23)
"""

from .counters import CounterSnapshot, MetricsCollector

# Process-wide collector shared by all components
_global_metrics = None


def get_metrics() -> MetricsCollector:
    """Get the process-wide metrics collector."""
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = MetricsCollector()
    return _global_metrics


def reset_metrics():
    """Reset global metrics (for testing)."""
    global _global_metrics
    _global_metrics = MetricsCollector()


__all__ = ['CounterSnapshot', 'MetricsCollector', 'get_metrics', 'reset_metrics']
