"""
Metric sinks: Counter, Rate and Trend.

All sinks are append-only. Each one guards its state with its own lock, so
virtual users running as coroutines (or threads, for synchronous callers)
can record concurrently without losing or double-counting samples.

Aggregates that depend on the full sample set (percentiles, averages) are
derived only at read time, when the summary is built.
"""

from __future__ import annotations

import math
import threading
from typing import List, Optional, Sequence


def nearest_rank(sorted_samples: Sequence[float], p: float) -> Optional[float]:
    """
    Nearest-rank percentile.

    Returns the value at 1-based rank ceil(p * N) of the ascending samples.

    Args:
        sorted_samples: Samples sorted ascending.
        p: Fraction in [0, 1] (0.95 for p95).

    Returns:
        The sample at that rank, or None when there are no samples.
    """
    if not 0.0 <= p <= 1.0:
        raise ValueError(f"percentile fraction must be within [0, 1], got {p}")
    n = len(sorted_samples)
    if n == 0:
        return None
    rank = math.ceil(p * n)
    rank = min(max(rank, 1), n)
    return sorted_samples[rank - 1]


class _Sink:
    """Shared freeze bookkeeping."""

    kind = "sink"

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._frozen = False
        self._dropped = 0

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        with self._lock:
            return self._frozen

    @property
    def dropped(self) -> int:
        """Adds that arrived after freeze()."""
        with self._lock:
            return self._dropped


class Counter(_Sink):
    """Monotonically increasing integer total."""

    kind = "counter"

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._value = 0

    def add(self, n: int = 1) -> None:
        if n < 0:
            raise ValueError(f"counter {self.name!r} increment must be >= 0, got {n}")
        with self._lock:
            if self._frozen:
                self._dropped += 1
                return
            self._value += n

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class Rate(_Sink):
    """Running (passes, total) tally of boolean outcomes."""

    kind = "rate"

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._passes = 0
        self._total = 0

    def add(self, flag: bool) -> None:
        with self._lock:
            if self._frozen:
                self._dropped += 1
                return
            self._total += 1
            if flag:
                self._passes += 1

    @property
    def passes(self) -> int:
        with self._lock:
            return self._passes

    @property
    def total(self) -> int:
        with self._lock:
            return self._total

    @property
    def rate(self) -> Optional[float]:
        with self._lock:
            if self._total == 0:
                return None
            return self._passes / self._total


class Trend(_Sink):
    """
    Unbounded multiset of samples (latencies in milliseconds).

    Percentiles use the nearest-rank method over a sorted copy, so the
    result does not depend on insertion order.
    """

    kind = "trend"

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._samples: List[float] = []

    def add(self, value: float) -> None:
        with self._lock:
            if self._frozen:
                self._dropped += 1
                return
            self._samples.append(float(value))

    def samples(self) -> List[float]:
        """Copy of the raw samples in insertion order."""
        with self._lock:
            return list(self._samples)

    def sorted_samples(self) -> List[float]:
        with self._lock:
            return sorted(self._samples)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._samples)

    @property
    def avg(self) -> Optional[float]:
        with self._lock:
            if not self._samples:
                return None
            return math.fsum(self._samples) / len(self._samples)

    @property
    def min(self) -> Optional[float]:
        with self._lock:
            return min(self._samples) if self._samples else None

    @property
    def max(self) -> Optional[float]:
        with self._lock:
            return max(self._samples) if self._samples else None

    def percentile(self, p: float) -> Optional[float]:
        return nearest_rank(self.sorted_samples(), p)
