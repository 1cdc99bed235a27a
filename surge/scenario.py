"""
Scenario: a named binding of schedule, request plan and classification rules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from surge.classify import NO_RULES, ClassificationRules
from surge.exceptions import SurgeConfigError
from surge.plan import RequestPlan
from surge.schedule import RampSchedule
from surge.thresholds import Threshold, parse_thresholds


@dataclass
class Scenario:
    """
    One workload within a run.

    Attributes:
        name: Unique within a run; tags every outcome the scenario produces.
        schedule: Ramp schedule (RampingVUs, ConstantVUs, PerVUIterations).
        plan: What each virtual user sends per iteration.
        rules: Expected-failure classification rules.
        start_time: Offset in seconds from the global run start.
        cache_hit_threshold_ms: When set, successes faster than this are
            counted in the heuristic cache_hit_estimate rate.
        thresholds: Metric name -> k6-style expressions ("p(95)<500").
        tags: Free-form labels copied into the report.

    Example:
        Scenario(
            name="order_load",
            schedule=ramping(("20s", 1000), ("40s", 2000), ("10s", 0)),
            plan=RequestPlan.single("create_order", "POST", "/api/orders", body=order_body),
            rules=ClassificationRules([STOCK_INSUFFICIENT]),
            thresholds={"latency": ["p(95)<2000"]},
        )
    """

    name: str
    schedule: RampSchedule
    plan: RequestPlan
    rules: ClassificationRules = NO_RULES
    start_time: float = 0.0
    cache_hit_threshold_ms: Optional[float] = None
    thresholds: Mapping[str, Sequence[str]] = field(default_factory=dict)
    tags: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            raise SurgeConfigError("Scenario name must not be empty")
        if self.start_time < 0:
            raise SurgeConfigError(
                "Scenario start_time must be non-negative",
                details={"scenario": self.name, "start_time": self.start_time},
            )
        if self.cache_hit_threshold_ms is not None and self.cache_hit_threshold_ms <= 0:
            raise SurgeConfigError(
                "cache_hit_threshold_ms must be positive",
                details={"scenario": self.name},
            )
        # Parse eagerly so a bad expression fails before the run starts.
        self._parsed_thresholds = parse_thresholds(self.thresholds)

    @property
    def parsed_thresholds(self) -> Dict[str, List[Threshold]]:
        return self._parsed_thresholds

    @property
    def executor(self) -> str:
        return self.schedule.executor

    @property
    def end_time(self) -> float:
        """Planned end offset from the run start (cutoff for per-VU iterations)."""
        return self.start_time + self.schedule.duration
