"""Tests for metric sinks and the per-scenario MetricSet."""

import random
from concurrent.futures import ThreadPoolExecutor

import pytest

from surge.metrics import Counter, MetricSet, Rate, Trend
from surge.metrics.registry import (
    ACCEPTABLE_RATE,
    CACHE_HIT_ESTIMATE,
    FAILURE_RATE,
    ITERATIONS,
    LATENCY,
    REQUESTS,
    SUCCESS_RATE,
    TRANSPORT_ERRORS,
    VUS,
    endpoint_latency_metric,
    outcome_metric,
    signature_metric,
)
from surge.metrics.sinks import nearest_rank
from surge.models import Classification, RequestOutcome


def make_outcome(
    classification: Classification = Classification.SUCCESS,
    latency_ms=10.0,
    signature=None,
    endpoint="default",
    transport_error=None,
) -> RequestOutcome:
    return RequestOutcome(
        classification=classification,
        latency_ms=latency_ms,
        raw_status=200 if classification is Classification.SUCCESS else 409,
        scenario_tag="test",
        endpoint=endpoint,
        signature=signature,
        transport_error=transport_error,
    )


class TestNearestRank:
    def test_p95_of_one_to_hundred(self):
        samples = [float(i) for i in range(1, 101)]
        assert nearest_rank(samples, 0.95) == 95.0
        assert nearest_rank(samples, 0.99) == 99.0
        assert nearest_rank(samples, 0.5) == 50.0

    def test_single_sample(self):
        assert nearest_rank([42.0], 0.95) == 42.0
        assert nearest_rank([42.0], 0.0) == 42.0

    def test_empty_is_none(self):
        assert nearest_rank([], 0.95) is None

    def test_rank_rounds_up(self):
        # ceil(0.9 * 4) = 4
        assert nearest_rank([1.0, 2.0, 3.0, 4.0], 0.9) == 4.0
        # ceil(0.5 * 5) = 3
        assert nearest_rank([1.0, 2.0, 3.0, 4.0, 5.0], 0.5) == 3.0

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            nearest_rank([1.0], 1.5)


class TestCounter:
    def test_add(self):
        counter = Counter("requests")
        counter.add()
        counter.add(4)
        assert counter.value == 5

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            Counter("requests").add(-1)

    def test_concurrent_adds_are_exact(self):
        counter = Counter("requests")

        def work():
            for _ in range(1000):
                counter.add(1)

        with ThreadPoolExecutor(max_workers=8) as pool:
            for _ in range(8):
                pool.submit(work)

        assert counter.value == 8000

    def test_frozen_drops_adds(self):
        counter = Counter("requests")
        counter.add(3)
        counter.freeze()
        counter.add(2)
        assert counter.frozen
        assert counter.value == 3
        assert counter.dropped == 1


class TestRate:
    def test_rate(self):
        rate = Rate("success_rate")
        for flag in (True, True, False, True):
            rate.add(flag)
        assert rate.passes == 3
        assert rate.total == 4
        assert rate.rate == 0.75

    def test_empty_rate_is_none(self):
        assert Rate("success_rate").rate is None

    def test_concurrent_adds(self):
        rate = Rate("success_rate")

        def work(flag):
            for _ in range(500):
                rate.add(flag)

        with ThreadPoolExecutor(max_workers=4) as pool:
            for flag in (True, False, True, False):
                pool.submit(work, flag)

        assert rate.total == 2000
        assert rate.passes == 1000
        assert rate.rate == 0.5


class TestTrend:
    def test_aggregates(self):
        trend = Trend("latency")
        for value in (30.0, 10.0, 20.0):
            trend.add(value)
        assert trend.count == 3
        assert trend.min == 10.0
        assert trend.max == 30.0
        assert trend.avg == pytest.approx(20.0)
        assert trend.percentile(0.5) == 20.0

    def test_empty(self):
        trend = Trend("latency")
        assert trend.count == 0
        assert trend.avg is None
        assert trend.min is None
        assert trend.percentile(0.95) is None

    def test_percentile_independent_of_order(self):
        values = [float(i) for i in range(1, 201)]
        shuffled = list(values)
        random.Random(3).shuffle(shuffled)

        ordered, scrambled = Trend("a"), Trend("b")
        for v in values:
            ordered.add(v)
        for v in shuffled:
            scrambled.add(v)

        for p in (0.5, 0.9, 0.95, 0.99):
            assert ordered.percentile(p) == scrambled.percentile(p)

    def test_samples_keep_insertion_order(self):
        trend = Trend("latency")
        trend.add(5)
        trend.add(1)
        assert trend.samples() == [5.0, 1.0]
        assert trend.sorted_samples() == [1.0, 5.0]


class TestMetricSet:
    def test_builtins_exist_when_empty(self):
        metrics = MetricSet("coupon_rush")
        counters = metrics.counters()
        for name in (REQUESTS, ITERATIONS, TRANSPORT_ERRORS):
            assert counters[name].value == 0
        for classification in Classification:
            assert outcome_metric(classification) in counters
        assert set(metrics.rates()) == {SUCCESS_RATE, ACCEPTABLE_RATE, FAILURE_RATE}
        assert set(metrics.trends()) == {LATENCY, VUS}

    def test_cache_hit_rate_only_when_configured(self):
        assert CACHE_HIT_ESTIMATE not in MetricSet("a").rates()
        assert CACHE_HIT_ESTIMATE in MetricSet("a", cache_hit_threshold_ms=50).rates()

    def test_observe_success(self):
        metrics = MetricSet("s")
        metrics.observe(make_outcome(latency_ms=12.0, endpoint="issue"))

        assert metrics.counter(REQUESTS).value == 1
        assert metrics.counter(outcome_metric(Classification.SUCCESS)).value == 1
        assert metrics.rate(SUCCESS_RATE).rate == 1.0
        assert metrics.rate(FAILURE_RATE).rate == 0.0
        assert metrics.trend(LATENCY).samples() == [12.0]
        assert metrics.trend(endpoint_latency_metric("issue")).samples() == [12.0]

    def test_expected_failure_is_acceptable(self):
        metrics = MetricSet("s")
        metrics.observe(
            make_outcome(
                Classification.EXPECTED_BUSINESS_FAILURE, signature="coupon_sold_out"
            )
        )
        assert metrics.counter(signature_metric("coupon_sold_out")).value == 1
        assert metrics.rate(SUCCESS_RATE).rate == 0.0
        assert metrics.rate(ACCEPTABLE_RATE).rate == 1.0
        assert metrics.rate(FAILURE_RATE).rate == 0.0

    def test_transport_failure_has_no_latency_sample(self):
        metrics = MetricSet("s")
        metrics.observe(
            make_outcome(
                Classification.UNEXPECTED_FAILURE,
                latency_ms=None,
                transport_error="timeout",
            )
        )
        assert metrics.counter(TRANSPORT_ERRORS).value == 1
        assert metrics.trend(LATENCY).count == 0
        assert metrics.rate(FAILURE_RATE).rate == 1.0

    def test_cache_hit_heuristic(self):
        metrics = MetricSet("s", cache_hit_threshold_ms=50)
        metrics.observe(make_outcome(latency_ms=10.0))
        metrics.observe(make_outcome(latency_ms=80.0))
        metrics.observe(
            make_outcome(Classification.EXPECTED_BUSINESS_FAILURE, latency_ms=5.0)
        )
        hits = metrics.rate(CACHE_HIT_ESTIMATE)
        assert hits.passes == 1
        assert hits.total == 3

    def test_freeze_covers_lazy_sinks(self):
        metrics = MetricSet("s")
        metrics.freeze()
        metrics.observe(make_outcome(signature="late"))

        assert metrics.frozen
        assert metrics.counter(REQUESTS).value == 0
        assert metrics.counter(signature_metric("late")).value == 0
        assert metrics.counter(REQUESTS).dropped == 1

    def test_sample_vus_and_iterations(self):
        metrics = MetricSet("s")
        metrics.sample_vus(3)
        metrics.sample_vus(7)
        metrics.record_iteration()
        assert metrics.trend(VUS).max == 7
        assert metrics.counter(ITERATIONS).value == 1
