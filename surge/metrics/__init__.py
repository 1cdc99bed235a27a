"""
Append-only metric sinks and per-scenario metric sets.

Provides:
- Counter, Rate, Trend: concurrency-safe sinks with read-time aggregation
- MetricSet: the named sinks owned by one scenario for one run

Usage:
    from surge.metrics import MetricSet

    metrics = MetricSet("order_load")
    metrics.observe(outcome)
    print(metrics.trend("latency").percentile(0.95))
"""

from surge.metrics.sinks import Counter, Rate, Trend, nearest_rank
from surge.metrics.registry import MetricSet

__all__ = [
    "Counter",
    "Rate",
    "Trend",
    "nearest_rank",
    "MetricSet",
]
