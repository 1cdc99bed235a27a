"""
Pass/fail thresholds over scenario metrics.

Expressions use the k6 syntax: an aggregation, an operator and a number.

    latency:          ["p(95)<500", "p(99)<2000", "avg<200"]
    failure_rate:     ["rate<0.01"]
    signature.coupon_sold_out: ["count>0"]
    outcome.success:  ["count<=500"]

Which aggregations apply depends on the metric kind:
- Counter: count
- Rate: rate, count (number of samples)
- Trend: count, avg, min, max, med, p(N)

An aggregation that does not apply to the metric, a metric that was never
created, or an empty trend all evaluate as failed with observed=None.
"""

from __future__ import annotations

import math
import operator
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from surge.exceptions import SurgeConfigError
from surge.metrics.registry import MetricSet
from surge.metrics.sinks import Counter, Rate, Trend

_EXPRESSION = re.compile(
    r"^\s*(?P<agg>count|rate|avg|min|max|med|p\((?P<pct>\d+(?:\.\d+)?)\))"
    r"\s*(?P<op><=|>=|==|!=|<|>)\s*(?P<limit>-?\d+(?:\.\d+)?)\s*$"
)

_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

# k6 built-in metric names accepted as aliases.
METRIC_ALIASES = {
    "http_req_duration": "latency",
    "http_req_failed": "failure_rate",
    "http_reqs": "requests",
}


@dataclass(frozen=True)
class Threshold:
    """
    A parsed threshold expression.

    Attributes:
        expression: Original text, e.g. "p(95)<500".
        aggregation: "count", "rate", "avg", "min", "max", "med" or "p".
        op: Comparison operator.
        limit: Right-hand side.
        percentile: Fraction for "p" aggregations (0.95 for p(95)).
    """

    expression: str
    aggregation: str
    op: str
    limit: float
    percentile: Optional[float] = None

    def check(self, observed: float) -> bool:
        return _OPERATORS[self.op](observed, self.limit)


def parse_threshold(expression: str) -> Threshold:
    """
    Parse a k6-style threshold expression.

    Raises:
        SurgeConfigError: If the expression is malformed or the percentile
            is above 100.
    """
    match = _EXPRESSION.match(expression)
    if match is None:
        raise SurgeConfigError(
            f"Invalid threshold expression: {expression!r}",
            code="invalid_threshold",
            details={"expression": expression},
        )
    aggregation = match.group("agg")
    percentile = None
    if match.group("pct") is not None:
        pct = float(match.group("pct"))
        if pct > 100:
            raise SurgeConfigError(
                f"Percentile out of range: {expression!r}",
                code="invalid_threshold",
                details={"expression": expression},
            )
        aggregation = "p"
        percentile = pct / 100.0
    return Threshold(
        expression=expression.strip(),
        aggregation=aggregation,
        op=match.group("op"),
        limit=float(match.group("limit")),
        percentile=percentile,
    )


def parse_thresholds(thresholds: Mapping[str, Sequence[str]]) -> Dict[str, List[Threshold]]:
    """Parse a metric -> expressions mapping, resolving k6 aliases."""
    parsed: Dict[str, List[Threshold]] = {}
    for metric, expressions in thresholds.items():
        if isinstance(expressions, str):
            expressions = [expressions]
        name = METRIC_ALIASES.get(metric, metric)
        parsed.setdefault(name, []).extend(parse_threshold(e) for e in expressions)
    return parsed


class ThresholdResult(BaseModel):
    """Outcome of one threshold check."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    metric: str
    expression: str
    observed: Optional[float] = None
    passed: bool


def _observe(metrics: MetricSet, metric: str, threshold: Threshold) -> Optional[float]:
    agg = threshold.aggregation
    counter: Optional[Counter] = metrics.counters().get(metric)
    if counter is not None:
        return float(counter.value) if agg == "count" else None

    rate: Optional[Rate] = metrics.rates().get(metric)
    if rate is not None:
        if agg == "rate":
            return rate.rate
        if agg == "count":
            return float(rate.total)
        return None

    trend: Optional[Trend] = metrics.trends().get(metric)
    if trend is None:
        return None
    if agg == "count":
        return float(trend.count)
    if agg == "avg":
        return trend.avg
    if agg == "min":
        return trend.min
    if agg == "max":
        return trend.max
    if agg == "med":
        return trend.percentile(0.5)
    if agg == "p" and threshold.percentile is not None:
        return trend.percentile(threshold.percentile)
    return None


def evaluate_thresholds(
    metrics: MetricSet,
    thresholds: Mapping[str, Iterable[Threshold]],
) -> List[ThresholdResult]:
    """
    Evaluate thresholds against one scenario's (frozen) metrics.

    Args:
        metrics: The scenario's MetricSet.
        thresholds: Metric name -> parsed thresholds.

    Returns:
        One result per threshold, in declaration order.
    """
    results: List[ThresholdResult] = []
    for metric, items in thresholds.items():
        for threshold in items:
            observed = _observe(metrics, metric, threshold)
            passed = (
                observed is not None
                and not math.isnan(observed)
                and threshold.check(observed)
            )
            results.append(
                ThresholdResult(
                    metric=metric,
                    expression=threshold.expression,
                    observed=observed,
                    passed=passed,
                )
            )
    return results
