"""
Helpers shared by the workload catalog.
"""

from __future__ import annotations

import math
from typing import Sequence, Tuple, Union

from surge.config import Settings
from surge.plan import Endpoint, RequestPlan, ThinkTime
from surge.scenario import Scenario
from surge.schedule import ConstantVUs, RampingVUs, Stage, ramping

# Default thresholds of the target service (p50/p95/p99 latency, error rate).
DEFAULT_THRESHOLDS = {
    "latency": ["p(50)<100", "p(95)<500", "p(99)<2000"],
    "failure_rate": ["rate<0.01"],
}

Stages = Sequence[Tuple[Union[str, float], int]]

PRODUCT_PATHS = ("/api/products", "/api/products/1", "/api/products/2", "/api/products/3")


def product_endpoint_name(path: str) -> str:
    """Endpoint label for a product path: product_list, product_1, ..."""
    tail = path.rstrip("/").rsplit("/", 1)[-1]
    return "product_list" if tail == "products" else f"product_{tail}"


def scaled_ramp(
    settings: Settings,
    name: str,
    stages: Stages,
) -> RampingVUs:
    """
    Build a ramp, rescaled by SURGE_<NAME>_VUS (peak) and
    SURGE_<NAME>_DURATION (total length) when those are set.
    """
    base = ramping(*stages)
    peak = settings.scenario_vus(name, base.max_vus)
    total = settings.scenario_duration(name, base.duration)
    if peak == base.max_vus and total == base.duration:
        return base
    vu_factor = peak / base.max_vus if base.max_vus else 0.0
    time_factor = total / base.duration if base.duration else 0.0
    return RampingVUs(
        stages=[
            Stage(
                duration=s.duration * time_factor,
                target=int(math.floor(s.target * vu_factor + 0.5)),
            )
            for s in base.stages
        ],
        start_vus=base.start_vus,
    )


def constant_vus(
    settings: Settings, name: str, vus: int, duration: Union[str, float]
) -> ConstantVUs:
    return ConstantVUs(
        vus=settings.scenario_vus(name, vus),
        duration=settings.scenario_duration(name, duration),
    )


def background_traffic(
    settings: Settings,
    *,
    vus: int,
    duration: Union[str, float],
    paths: Sequence[str] = PRODUCT_PATHS,
    think_time: ThinkTime = ThinkTime(0.5, 0.5),
    name: str = "background_traffic",
) -> Scenario:
    """Steady product browsing that runs alongside a spike."""
    endpoints = [Endpoint(product_endpoint_name(path), "GET", path) for path in paths]
    return Scenario(
        name=name,
        schedule=constant_vus(settings, name, vus, duration),
        plan=RequestPlan(endpoints, think_time=think_time),
        thresholds={"latency": ["p(95)<1000"]},
        tags={"role": "background"},
    )
