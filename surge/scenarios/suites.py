"""
Named suites: the unit the CLI runs.

A suite is a list of scenarios plus optional setup/teardown hooks and a
default budget. Suites are built from Settings when requested, so
environment overrides apply per invocation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from surge.config import Settings, get_settings
from surge.coordinator import Hook, TeardownHook
from surge.exceptions import SurgeConfigError
from surge.scenario import Scenario
from surge.scenarios.coupons import coupon_rush, coupon_spike
from surge.scenarios.orders import order_load, order_surge, payment_stress, seed_orders
from surge.scenarios.points import point_charge, point_contention, verify_balances
from surge.scenarios.products import dashboard, popular_products, product_flood, top_products


@dataclass
class Suite:
    """
    Attributes:
        name: CLI name.
        description: One-line summary for `surge list`.
        scenarios: Scenarios run concurrently (each after its start offset).
        setup: Optional pre-run hook.
        teardown: Optional post-run hook.
        budget: Default global budget in seconds (None = unbounded).
    """

    name: str
    description: str
    scenarios: List[Scenario] = field(default_factory=list)
    setup: Optional[Hook] = None
    teardown: Optional[TeardownHook] = None
    budget: Optional[float] = None


ScenarioFactory = Callable[[Settings], List[Scenario]]


@dataclass(frozen=True)
class SuiteEntry:
    description: str
    factory: ScenarioFactory
    setup: Optional[Hook] = None
    teardown: Optional[TeardownHook] = None
    budget: Optional[float] = None


SUITES: Dict[str, SuiteEntry] = {}


def suite(
    name: str,
    description: str,
    *,
    setup: Optional[Hook] = None,
    teardown: Optional[TeardownHook] = None,
    budget: Optional[float] = None,
) -> Callable[[ScenarioFactory], ScenarioFactory]:
    """Register a scenario factory under a suite name."""

    def register(factory: ScenarioFactory) -> ScenarioFactory:
        SUITES[name] = SuiteEntry(description, factory, setup, teardown, budget)
        return factory

    return register


@suite("coupon", "coupon issuance rush, 500 stock vs 10,000 VUs")
def _coupon(settings: Settings) -> List[Scenario]:
    return [coupon_rush(settings)]


@suite("coupon-spike", "coupon spike on top of steady product browsing")
def _coupon_spike(settings: Settings) -> List[Scenario]:
    return coupon_spike(settings)


@suite("order", "order creation against limited stock")
def _order(settings: Settings) -> List[Scenario]:
    return [order_load(settings)]


@suite("order-stress", "order ramp over five products alongside product browsing")
def _order_stress(settings: Settings) -> List[Scenario]:
    return order_surge(settings)


@suite("payment", "create and pay an order per iteration, with points and coupons", setup=seed_orders)
def _payment(settings: Settings) -> List[Scenario]:
    return [payment_stress(settings)]


@suite("popular", "popular products ranking, cache-hit heuristic under 50 ms")
def _popular(settings: Settings) -> List[Scenario]:
    return [popular_products(settings)]


@suite("top", "top products peak over background browsing, cache-hit under 10 ms")
def _top(settings: Settings) -> List[Scenario]:
    return top_products(settings)


@suite("dashboard", "weighted product list and detail mix")
def _dashboard(settings: Settings) -> List[Scenario]:
    return [dashboard(settings)]


@suite("point", "per-user point charging, balances read back afterwards", teardown=verify_balances)
def _point(settings: Settings) -> List[Scenario]:
    return [point_charge(settings)]


@suite("point-stress", "point charging contention on 20 shared users")
def _point_stress(settings: Settings) -> List[Scenario]:
    return point_contention(settings)


@suite("all", "coupon, order, popular and point workloads, staggered", teardown=verify_balances)
def _all(settings: Settings) -> List[Scenario]:
    # Staggered so each workload runs mostly alone.
    return [
        coupon_rush(settings, stages=[("10s", 2000), ("20s", 5000), ("30s", 5000), ("10s", 0)]),
        order_load(settings, stages=[("20s", 1000), ("40s", 2000), ("10s", 0)], start_time=80.0),
        product_flood(settings, vus=500, duration="60s", start_time=160.0),
        point_charge(settings, max_duration="2m", start_time=230.0),
    ]


def list_suites() -> List[Tuple[str, str]]:
    """(name, description) pairs in registration order."""
    return [(name, entry.description) for name, entry in SUITES.items()]


def build_suite(name: str, settings: Optional[Settings] = None) -> Suite:
    """
    Build a suite by name.

    Raises:
        SurgeConfigError: Unknown suite name.
    """
    entry = SUITES.get(name)
    if entry is None:
        raise SurgeConfigError(
            f"Unknown suite: {name}",
            code="unknown_suite",
            details={"available": sorted(SUITES)},
        )
    return Suite(
        name=name,
        description=entry.description,
        scenarios=entry.factory(settings or get_settings()),
        setup=entry.setup,
        teardown=entry.teardown,
        budget=entry.budget,
    )
