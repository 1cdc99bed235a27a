"""
SummaryReport: the terminal record of one run.

Built once, after every scenario has stopped and every sink is frozen, by a
pure function over the frozen metrics. Delivered to report sinks (console,
JSON file) exactly once.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, TextIO, Union

from pydantic import BaseModel, ConfigDict, Field

from surge.metrics import MetricSet
from surge.metrics.registry import (
    CACHE_HIT_ESTIMATE,
    ITERATIONS,
    LATENCY,
    REQUESTS,
    TRANSPORT_ERRORS,
    VUS,
    outcome_metric,
)
from surge.metrics.sinks import Rate, Trend, nearest_rank
from surge.models import Classification, ScenarioStatus
from surge.scenario import Scenario
from surge.thresholds import ThresholdResult, evaluate_thresholds

logger = logging.getLogger(__name__)


class RateSummary(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    passes: int = Field(..., ge=0)
    total: int = Field(..., ge=0)
    rate: Optional[float] = None


class TrendSummary(BaseModel):
    """Read-time aggregates of one trend (latencies in milliseconds)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    count: int = Field(..., ge=0)
    avg: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    med: Optional[float] = None
    p90: Optional[float] = None
    p95: Optional[float] = None
    p99: Optional[float] = None


class HeuristicSummary(BaseModel):
    """
    A derived estimate that is not a measurement.

    cache_hit_estimate counts successful responses faster than a latency
    threshold. It says nothing certain about the target's cache.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    description: str
    passes: int = Field(..., ge=0)
    total: int = Field(..., ge=0)
    rate: Optional[float] = None


class ScenarioSummary(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    executor: str
    status: ScenarioStatus
    start_time: float = Field(..., ge=0)
    elapsed_seconds: float = Field(..., ge=0)
    vus_peak: int = Field(default=0, ge=0)
    iterations: int = Field(default=0, ge=0)
    requests: int = Field(default=0, ge=0)
    counters: Dict[str, int] = Field(default_factory=dict)
    rates: Dict[str, RateSummary] = Field(default_factory=dict)
    trends: Dict[str, TrendSummary] = Field(default_factory=dict)
    heuristics: Dict[str, HeuristicSummary] = Field(default_factory=dict)
    thresholds: List[ThresholdResult] = Field(default_factory=list)
    dropped_samples: int = Field(default=0, ge=0)
    tags: Dict[str, str] = Field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return all(t.passed for t in self.thresholds)

    def outcome_count(self, classification: Classification) -> int:
        return self.counters.get(outcome_metric(classification), 0)


class SummaryReport(BaseModel):
    """
    Canonical run summary.

    Attributes:
        run_id: Unique identifier of the run.
        started_at: When the scenarios started (after setup).
        finished_at: When the last scenario stopped.
        elapsed_seconds: Wall-clock time between the two.
        budget_seconds: Global run budget, if one was set.
        budget_exceeded: True if the budget expired before every scenario
            finished. The report is still complete for what ran.
        scenarios: One summary per scenario, in declaration order.
        totals: Counters summed over all scenarios.
        passed: True when every threshold of every scenario passed.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    run_id: str
    started_at: datetime
    finished_at: datetime
    elapsed_seconds: float = Field(..., ge=0)
    budget_seconds: Optional[float] = None
    budget_exceeded: bool = False
    scenarios: List[ScenarioSummary] = Field(default_factory=list)
    totals: Dict[str, int] = Field(default_factory=dict)
    passed: bool = True

    def scenario(self, name: str) -> ScenarioSummary:
        for summary in self.scenarios:
            if summary.name == name:
                return summary
        raise KeyError(name)

    def to_log_dict(self) -> Dict[str, Any]:
        """
        Serialize to a dict suitable for JSON logging.

        {"type": "surge.summary.v1", ...fields...}
        """
        data = self.model_dump(mode="json")
        data["type"] = "surge.summary.v1"
        return data


@dataclass(frozen=True)
class ScenarioResult:
    """What the coordinator knows about a scenario once it stopped."""

    scenario: Scenario
    status: ScenarioStatus
    elapsed_seconds: float = 0.0


def summarize_rate(rate: Rate) -> RateSummary:
    return RateSummary(passes=rate.passes, total=rate.total, rate=rate.rate)


def summarize_trend(trend: Trend) -> TrendSummary:
    ordered = trend.sorted_samples()
    if not ordered:
        return TrendSummary(count=0)
    return TrendSummary(
        count=len(ordered),
        avg=trend.avg,
        min=ordered[0],
        max=ordered[-1],
        med=nearest_rank(ordered, 0.5),
        p90=nearest_rank(ordered, 0.9),
        p95=nearest_rank(ordered, 0.95),
        p99=nearest_rank(ordered, 0.99),
    )


def summarize_scenario(result: ScenarioResult, metrics: MetricSet) -> ScenarioSummary:
    scenario = result.scenario
    counters = {name: c.value for name, c in sorted(metrics.counters().items())}
    dropped = sum(
        sink.dropped
        for table in (metrics.counters(), metrics.rates(), metrics.trends())
        for sink in table.values()
    )

    rates: Dict[str, RateSummary] = {}
    heuristics: Dict[str, HeuristicSummary] = {}
    for name, rate in sorted(metrics.rates().items()):
        if name == CACHE_HIT_ESTIMATE:
            heuristics[name] = HeuristicSummary(
                description=(
                    f"successful responses faster than "
                    f"{scenario.cache_hit_threshold_ms:g} ms (heuristic)"
                ),
                passes=rate.passes,
                total=rate.total,
                rate=rate.rate,
            )
        else:
            rates[name] = summarize_rate(rate)

    trends: Dict[str, TrendSummary] = {}
    vus_peak = 0
    for name, trend in sorted(metrics.trends().items()):
        if name == VUS:
            vus_peak = int(trend.max or 0)
            continue
        trends[name] = summarize_trend(trend)

    return ScenarioSummary(
        name=scenario.name,
        executor=scenario.executor,
        status=result.status,
        start_time=scenario.start_time,
        elapsed_seconds=max(0.0, result.elapsed_seconds),
        vus_peak=vus_peak,
        iterations=counters.get(ITERATIONS, 0),
        requests=counters.get(REQUESTS, 0),
        counters=counters,
        rates=rates,
        trends=trends,
        heuristics=heuristics,
        thresholds=evaluate_thresholds(metrics, scenario.parsed_thresholds),
        dropped_samples=dropped,
        tags=dict(scenario.tags),
    )


def build_summary(
    results: Sequence[ScenarioResult],
    metrics: Mapping[str, MetricSet],
    *,
    run_id: str,
    started_at: datetime,
    finished_at: datetime,
    elapsed_seconds: float,
    budget_seconds: Optional[float] = None,
    budget_exceeded: bool = False,
) -> SummaryReport:
    """
    Build the run summary from frozen metric sets.

    Pure: reads the sinks, mutates nothing. Calling it twice over the same
    frozen metrics yields equal reports.
    """
    scenarios = [summarize_scenario(r, metrics[r.scenario.name]) for r in results]

    totals: Dict[str, int] = {
        REQUESTS: 0,
        ITERATIONS: 0,
        TRANSPORT_ERRORS: 0,
        **{outcome_metric(c): 0 for c in Classification},
    }
    for summary in scenarios:
        for name in totals:
            totals[name] += summary.counters.get(name, 0)

    return SummaryReport(
        run_id=run_id,
        started_at=started_at,
        finished_at=finished_at,
        elapsed_seconds=max(0.0, elapsed_seconds),
        budget_seconds=budget_seconds,
        budget_exceeded=budget_exceeded,
        scenarios=scenarios,
        totals=totals,
        passed=all(s.passed for s in scenarios),
    )


def _fmt(val: Optional[float], decimals: int = 1) -> str:
    """Format a value, handling None."""
    if val is None:
        return "N/A"
    return f"{val:.{decimals}f}"


def _pct(val: Optional[float]) -> str:
    if val is None:
        return "N/A"
    return f"{val * 100:.2f}%"


def format_summary(report: SummaryReport) -> str:
    """
    Format a summary report as human-readable text.

    Returns:
        Formatted string suitable for printing.
    """
    lines = []
    lines.append("=" * 60)
    lines.append(f"RUN: {report.run_id}")
    lines.append("=" * 60)
    budget = "none" if report.budget_seconds is None else f"{report.budget_seconds:g}s"
    lines.append(f"Elapsed: {report.elapsed_seconds:.1f}s  Budget: {budget}")
    if report.budget_exceeded:
        lines.append("Budget exceeded: unfinished scenarios were interrupted")
    lines.append(f"Result: {'PASS' if report.passed else 'FAIL'}")
    lines.append("")

    for s in report.scenarios:
        lines.append("-" * 60)
        lines.append(f"SCENARIO: {s.name} [{s.executor}] {s.status.value}")
        lines.append("-" * 60)
        lines.append(
            f"Start: +{s.start_time:g}s  Elapsed: {s.elapsed_seconds:.1f}s  "
            f"Peak VUs: {s.vus_peak}  Iterations: {s.iterations}"
        )
        lines.append("")

        lines.append("--- Outcomes ---")
        for classification in Classification:
            count = s.outcome_count(classification)
            share = count / s.requests * 100 if s.requests else 0.0
            lines.append(f"  {classification.value}: {count} ({share:.1f}%)")
        if s.counters.get(TRANSPORT_ERRORS):
            lines.append(f"  transport errors: {s.counters[TRANSPORT_ERRORS]}")

        signatures = {
            name.split(".", 1)[1]: value
            for name, value in s.counters.items()
            if name.startswith("signature.")
        }
        if signatures:
            lines.append("  Expected failures by signature:")
            for label, count in sorted(signatures.items()):
                lines.append(f"    {label}: {count}")

        lines.append("")
        lines.append("--- Rates ---")
        for name, rate in s.rates.items():
            lines.append(f"  {name}: {_pct(rate.rate)} ({rate.passes}/{rate.total})")

        lines.append("")
        lines.append("--- Latency (ms) ---")
        for name, t in s.trends.items():
            if not (name == LATENCY or name.startswith(f"{LATENCY}.")):
                continue
            lines.append(
                f"  {name}: avg={_fmt(t.avg)} min={_fmt(t.min)} med={_fmt(t.med)} "
                f"p95={_fmt(t.p95)} p99={_fmt(t.p99)} max={_fmt(t.max)} n={t.count}"
            )

        if s.heuristics:
            lines.append("")
            lines.append("--- Heuristics ---")
            for name, h in s.heuristics.items():
                lines.append(f"  {name}: {_pct(h.rate)} ({h.passes}/{h.total}), {h.description}")

        if s.thresholds:
            lines.append("")
            lines.append("--- Thresholds ---")
            for t in s.thresholds:
                mark = "PASS" if t.passed else "FAIL"
                lines.append(f"  [{mark}] {t.metric} {t.expression} observed={_fmt(t.observed, 3)}")

        if s.dropped_samples:
            lines.append(f"  ({s.dropped_samples} samples arrived after freeze and were dropped)")
        lines.append("")

    lines.append("--- Totals ---")
    for name, value in report.totals.items():
        lines.append(f"  {name}: {value}")

    return "\n".join(lines)


class ReportSink(Protocol):
    """Receives the finished report once per run."""

    def emit(self, report: SummaryReport, text: str) -> None: ...


class ConsoleSink:
    """Write the text rendering to a stream (stdout by default)."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream

    def emit(self, report: SummaryReport, text: str) -> None:
        stream = self._stream or sys.stdout
        stream.write(text)
        stream.write("\n")
        stream.flush()


class JsonFileSink:
    """Write the report as JSON to a file, creating parent directories."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def emit(self, report: SummaryReport, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(report.to_log_dict(), indent=2), encoding="utf-8")
        logger.info("Summary written to %s", self.path)
