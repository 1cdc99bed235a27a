"""
MetricSet: the sinks owned by one scenario for one run.

A MetricSet is created by the run context, handed to every virtual user of
its scenario and drained into the summary report when the run ends. It is
never module-global and never shared between scenarios.
"""

from __future__ import annotations

import threading
from typing import Dict, Optional, TypeVar

from surge.metrics.sinks import Counter, Rate, Trend, _Sink
from surge.models import Classification, RequestOutcome

REQUESTS = "requests"
ITERATIONS = "iterations"
TRANSPORT_ERRORS = "transport_errors"
SUCCESS_RATE = "success_rate"
ACCEPTABLE_RATE = "acceptable_rate"
FAILURE_RATE = "failure_rate"
CACHE_HIT_ESTIMATE = "cache_hit_estimate"
LATENCY = "latency"
VUS = "vus"

_S = TypeVar("_S", bound=_Sink)


def outcome_metric(classification: Classification) -> str:
    return f"outcome.{classification.value}"


def signature_metric(label: str) -> str:
    return f"signature.{label}"


def endpoint_latency_metric(endpoint: str) -> str:
    return f"{LATENCY}.{endpoint}"


class MetricSet:
    """
    Named Counter/Rate/Trend sinks for one scenario.

    Built-in metrics are created up front so they appear in the summary even
    when zero; per-signature and per-endpoint metrics are created lazily.

    Example:
        metrics = MetricSet("coupon_rush")
        metrics.observe(outcome)
        metrics.counter("signature.coupon_sold_out").value
    """

    def __init__(
        self,
        scenario_name: str,
        *,
        cache_hit_threshold_ms: Optional[float] = None,
    ) -> None:
        self.scenario_name = scenario_name
        self.cache_hit_threshold_ms = cache_hit_threshold_ms
        self._counters: Dict[str, Counter] = {}
        self._rates: Dict[str, Rate] = {}
        self._trends: Dict[str, Trend] = {}
        self._lock = threading.Lock()
        self._frozen = False

        for name in (REQUESTS, ITERATIONS, TRANSPORT_ERRORS):
            self.counter(name)
        for classification in Classification:
            self.counter(outcome_metric(classification))
        for name in (SUCCESS_RATE, ACCEPTABLE_RATE, FAILURE_RATE):
            self.rate(name)
        if cache_hit_threshold_ms is not None:
            self.rate(CACHE_HIT_ESTIMATE)
        self.trend(LATENCY)
        self.trend(VUS)

    def _get(self, table: Dict[str, _S], name: str, factory: type) -> _S:
        with self._lock:
            sink = table.get(name)
            if sink is None:
                sink = factory(name)
                if self._frozen:
                    sink.freeze()
                table[name] = sink
            return sink

    def counter(self, name: str) -> Counter:
        return self._get(self._counters, name, Counter)

    def rate(self, name: str) -> Rate:
        return self._get(self._rates, name, Rate)

    def trend(self, name: str) -> Trend:
        return self._get(self._trends, name, Trend)

    def observe(self, outcome: RequestOutcome) -> None:
        """
        Record one classified request.

        Args:
            outcome: RequestOutcome from a virtual user iteration.
        """
        self.counter(REQUESTS).add(1)
        self.counter(outcome_metric(outcome.classification)).add(1)
        if outcome.signature:
            self.counter(signature_metric(outcome.signature)).add(1)
        if outcome.transport_error:
            self.counter(TRANSPORT_ERRORS).add(1)

        self.rate(SUCCESS_RATE).add(outcome.is_success)
        self.rate(ACCEPTABLE_RATE).add(outcome.is_acceptable)
        self.rate(FAILURE_RATE).add(not outcome.is_acceptable)

        if outcome.latency_ms is not None:
            self.trend(LATENCY).add(outcome.latency_ms)
            self.trend(endpoint_latency_metric(outcome.endpoint)).add(outcome.latency_ms)

        if self.cache_hit_threshold_ms is not None:
            # Heuristic: a fast successful response is assumed to be a cache hit.
            hit = (
                outcome.is_success
                and outcome.latency_ms is not None
                and outcome.latency_ms < self.cache_hit_threshold_ms
            )
            self.rate(CACHE_HIT_ESTIMATE).add(hit)

    def record_iteration(self) -> None:
        self.counter(ITERATIONS).add(1)

    def sample_vus(self, active: int) -> None:
        self.trend(VUS).add(active)

    def freeze(self) -> None:
        """Make every sink read-only; later adds are dropped."""
        with self._lock:
            self._frozen = True
            sinks = [*self._counters.values(), *self._rates.values(), *self._trends.values()]
        for sink in sinks:
            sink.freeze()

    @property
    def frozen(self) -> bool:
        with self._lock:
            return self._frozen

    def counters(self) -> Dict[str, Counter]:
        with self._lock:
            return dict(self._counters)

    def rates(self) -> Dict[str, Rate]:
        with self._lock:
            return dict(self._rates)

    def trends(self) -> Dict[str, Trend]:
        with self._lock:
            return dict(self._trends)
