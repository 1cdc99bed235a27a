"""
First-come-first-served coupon issuance.

The coupon has a fixed stock (500 in the reference setup). Every request
past the stock must be rejected as sold out, and a subject may hold at most
one coupon, so both rejections are expected business failures. The issued
count is checked against the stock with a threshold.
"""

from __future__ import annotations

from typing import List, Optional

from surge.classify import (
    COUPON_ALREADY_ISSUED,
    COUPON_DUPLICATE,
    COUPON_EXHAUSTED,
    COUPON_OUT_OF_STOCK,
    COUPON_SOLD_OUT,
    ClassificationRules,
)
from surge.config import Settings
from surge.plan import IterationContext, RequestPlan, ThinkTime
from surge.scenario import Scenario
from surge.scenarios.common import Stages, background_traffic, scaled_ramp

COUPON_RULES = ClassificationRules(
    [
        COUPON_SOLD_OUT,
        COUPON_EXHAUSTED,
        COUPON_OUT_OF_STOCK,
        COUPON_ALREADY_ISSUED,
        COUPON_DUPLICATE,
    ]
)

COUPON_STOCK = 500


def issue_plan(settings: Settings, max_users: int, think_time: ThinkTime) -> RequestPlan:
    coupon_id = settings.coupon_id

    def path(ctx: IterationContext) -> str:
        return f"/api/coupons/{coupon_id}/issue?userId={ctx.rng.randint(1, max_users)}"

    return RequestPlan.single("issue_coupon", "POST", path, think_time=think_time)


def coupon_rush(
    settings: Settings,
    *,
    stages: Optional[Stages] = None,
    start_time: float = 0.0,
) -> Scenario:
    """Ramp to 10,000 VUs competing for the coupon stock."""
    name = "coupon_rush"
    stages = stages or [("10s", 5000), ("20s", 10000), ("60s", 10000), ("30s", 0)]
    return Scenario(
        name=name,
        schedule=scaled_ramp(settings, name, stages),
        plan=issue_plan(settings, settings.users(10000), ThinkTime(0.1)),
        rules=COUPON_RULES,
        start_time=start_time,
        thresholds={
            "latency": ["p(99)<3000"],
            "failure_rate": ["rate<0.01"],
            "outcome.success": [f"count<={COUPON_STOCK}"],
        },
    )


def coupon_spike(settings: Settings) -> List[Scenario]:
    """
    A coupon spike landing on top of steady product browsing.

    Background browsing starts first; the spike begins 30 s later, once
    the background latency has settled.
    """
    name = "coupon_spike"
    spike = Scenario(
        name=name,
        schedule=scaled_ramp(settings, name, [("5s", 500), ("20s", 1000), ("30s", 1000), ("10s", 0)]),
        plan=issue_plan(settings, settings.users(10000), ThinkTime(0.1)),
        rules=COUPON_RULES,
        start_time=30.0,
        thresholds={
            "failure_rate": ["rate<0.01"],
            "outcome.success": [f"count<={COUPON_STOCK}"],
        },
    )
    return [background_traffic(settings, vus=30, duration="2m"), spike]
