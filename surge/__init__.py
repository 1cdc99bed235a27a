"""
surge - Staged virtual-user load tests with outcome-aware metrics.

Quick start:
    import asyncio
    from surge import (
        RunCoordinator, Scenario, RequestPlan, ClassificationRules,
        HttpxClient, ConsoleSink, ramping,
    )
    from surge.classify import COUPON_SOLD_OUT

    scenario = Scenario(
        name="coupon_rush",
        schedule=ramping(("10s", 100), ("30s", 100), ("10s", 0)),
        plan=RequestPlan.single("issue", "POST", "/api/coupons/1/issue?userId=1"),
        rules=ClassificationRules([COUPON_SOLD_OUT]),
        thresholds={"failure_rate": ["rate<0.01"]},
    )

    async def main():
        async with HttpxClient("http://localhost:8081") as client:
            coordinator = RunCoordinator(client, sinks=[ConsoleSink()])
            return await coordinator.run([scenario], budget=120)

    report = asyncio.run(main())

Prebuilt workloads:
    from surge.scenarios import build_suite
    suite = build_suite("coupon")

Advanced usage via submodules:
    from surge.metrics import MetricSet, Counter, Rate, Trend
    from surge.faults import FaultInjectingClient, FaultProfile, rules
"""

# =============================================================================
# Core API - What most users need
# =============================================================================
from surge.coordinator import RunCoordinator  # noqa: F401
from surge.scenario import Scenario  # noqa: F401
from surge.plan import Endpoint, RequestPlan, ThinkTime  # noqa: F401
from surge.schedule import (  # noqa: F401
    ConstantVUs,
    PerVUIterations,
    RampingVUs,
    Stage,
    constant,
    parse_duration,
    per_vu_iterations,
    ramping,
)
from surge.classify import ClassificationRules, Signature  # noqa: F401
from surge.transport import HttpClient, HttpResponse, HttpxClient  # noqa: F401

# =============================================================================
# Reports
# =============================================================================
from surge.report import (  # noqa: F401
    ConsoleSink,
    JsonFileSink,
    ScenarioSummary,
    SummaryReport,
    format_summary,
)
from surge.models import Classification, RequestOutcome, ScenarioStatus  # noqa: F401

# =============================================================================
# Typed exceptions - For structured error handling
# =============================================================================
from surge.exceptions import (
    SurgeError,
    SurgeConfigError,
    SurgeSetupError,
    SurgeTransportError,
)

__all__ = [
    "RunCoordinator",
    "Scenario",
    "Endpoint",
    "RequestPlan",
    "ThinkTime",
    "ConstantVUs",
    "PerVUIterations",
    "RampingVUs",
    "Stage",
    "constant",
    "parse_duration",
    "per_vu_iterations",
    "ramping",
    "ClassificationRules",
    "Signature",
    "HttpClient",
    "HttpResponse",
    "HttpxClient",
    "ConsoleSink",
    "JsonFileSink",
    "ScenarioSummary",
    "SummaryReport",
    "format_summary",
    "Classification",
    "RequestOutcome",
    "ScenarioStatus",
    "SurgeError",
    "SurgeConfigError",
    "SurgeSetupError",
    "SurgeTransportError",
]
