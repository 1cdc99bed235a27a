"""
Read-heavy product traffic: popular/top products and a weighted dashboard.

The popular-product endpoints sit behind a cache, so these scenarios carry
a cache-hit heuristic: a success faster than the threshold is assumed to be
a cache hit.
"""

from __future__ import annotations

from typing import List, Optional

from surge.config import Settings
from surge.plan import Endpoint, RequestPlan, ThinkTime
from surge.scenario import Scenario
from surge.scenarios.common import (
    DEFAULT_THRESHOLDS,
    Stages,
    background_traffic,
    constant_vus,
    scaled_ramp,
)
from surge.schedule import RampSchedule


def popular_products(
    settings: Settings,
    *,
    stages: Optional[Stages] = None,
    schedule: Optional[RampSchedule] = None,
    start_time: float = 0.0,
) -> Scenario:
    """Ramp to 1,000 VUs reading the popular-products ranking."""
    name = "popular_products"
    if schedule is None:
        stages = stages or [("30s", 500), ("30s", 1000), ("180s", 1000), ("30s", 0)]
        schedule = scaled_ramp(settings, name, stages)
    return Scenario(
        name=name,
        schedule=schedule,
        plan=RequestPlan.single(
            "top_products", "GET", "/api/products/top", think_time=ThinkTime(0.5, 0.5)
        ),
        start_time=start_time,
        cache_hit_threshold_ms=50.0,
        thresholds={
            "latency": ["p(50)<50", "p(95)<200", "p(99)<500"],
            "failure_rate": ["rate<0.01"],
        },
    )


def top_products(settings: Settings) -> List[Scenario]:
    """Top-products peak over background browsing; cache hits under 10 ms."""
    name = "top_products"
    peak = Scenario(
        name=name,
        schedule=scaled_ramp(settings, name, [("10s", 100), ("30s", 300), ("20s", 300), ("10s", 0)]),
        plan=RequestPlan.single("top_products", "GET", "/api/products/top", think_time=ThinkTime(0.1)),
        start_time=10.0,
        cache_hit_threshold_ms=10.0,
        thresholds={"latency": ["p(95)<500"]},
    )
    background = background_traffic(
        settings,
        vus=30,
        duration="1m30s",
        paths=["/api/products"] + [f"/api/products/{i}" for i in range(1, 6)],
        think_time=ThinkTime(0.3, 0.3),
    )
    return [background, peak]


DASHBOARD_ENDPOINTS = [
    Endpoint("product_list", "GET", "/api/products", weight=40),
    Endpoint("product_1", "GET", "/api/products/1", weight=30),
    Endpoint("product_2", "GET", "/api/products/2", weight=15),
    Endpoint("product_3", "GET", "/api/products/3", weight=15),
]


def dashboard(settings: Settings) -> Scenario:
    """Weighted mix of product list and detail pages."""
    name = "dashboard"
    return Scenario(
        name=name,
        schedule=scaled_ramp(settings, name, [("10s", 50), ("30s", 100), ("10s", 0)]),
        plan=RequestPlan(DASHBOARD_ENDPOINTS, think_time=ThinkTime(0.1, 0.2)),
        thresholds={"latency": ["p(95)<2000"], "failure_rate": DEFAULT_THRESHOLDS["failure_rate"]},
    )


def product_flood(settings: Settings, *, vus: int = 500, duration: str = "60s", start_time: float = 0.0) -> Scenario:
    """Constant popular-products load, used by the combined suite."""
    return popular_products(
        settings,
        schedule=constant_vus(settings, "popular_products", vus, duration),
        start_time=start_time,
    )
