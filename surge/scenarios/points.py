"""
Point charging under lock contention.

Each user's balance is guarded by a lock on the target service. Lock
contention and lock timeouts are expected under load; a charge must never
fail for any other reason. After the run the balances of the first users
are read back for inspection.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from surge.classify import LOCK_CONTENTION, LOCK_TIMEOUT, ClassificationRules
from surge.config import Settings
from surge.context import RunContext
from surge.plan import IterationContext, RequestPlan, ThinkTime
from surge.report import SummaryReport
from surge.scenario import Scenario
from surge.scenarios.common import background_traffic, scaled_ramp
from surge.schedule import per_vu_iterations

logger = logging.getLogger(__name__)

LOCK_RULES = ClassificationRules([LOCK_CONTENTION, LOCK_TIMEOUT])

VERIFIED_USERS = 10


def charge_plan(
    amount: int, user_for_vu: Callable[[int], int], think_time: ThinkTime
) -> RequestPlan:
    def path(ctx: IterationContext) -> str:
        return f"/api/points/users/{user_for_vu(ctx.vu_id)}/charge"

    def body(ctx: IterationContext) -> Dict[str, Any]:
        return {"userId": user_for_vu(ctx.vu_id), "amount": amount}

    return RequestPlan.single("charge_point", "POST", path, body=body, think_time=think_time)


def point_charge(
    settings: Settings,
    *,
    max_duration: str = "5m",
    start_time: float = 0.0,
) -> Scenario:
    """
    Every user charges a fixed number of times.

    VU n charges for user n, so each user's final balance should grow by
    charges_per_user * charge_amount.
    """
    name = "point_charge"
    users = settings.scenario_vus(name, settings.user_count)
    return Scenario(
        name=name,
        schedule=per_vu_iterations(
            users,
            settings.charges_per_user,
            max_duration=settings.scenario_duration(name, max_duration),
        ),
        plan=charge_plan(settings.charge_amount, lambda vu_id: vu_id, ThinkTime(0.1, 0.2)),
        rules=LOCK_RULES,
        start_time=start_time,
        thresholds={"latency": ["p(95)<3000"], "outcome.success": ["count>0"]},
        tags={"expected_increase": str(settings.charges_per_user * settings.charge_amount)},
    )


def point_contention(settings: Settings) -> List[Scenario]:
    """
    Up to 100 VUs hammering 20 users, alongside product browsing.

    Many VUs share a user, so waits on the balance lock are routine and a
    request timeout counts as expected contention.
    """
    name = "point_contention"
    rules = ClassificationRules(LOCK_RULES.signatures, timeouts_expected=True)
    contention = Scenario(
        name=name,
        schedule=scaled_ramp(settings, name, [("10s", 50), ("20s", 100), ("30s", 100), ("10s", 0)]),
        plan=charge_plan(settings.charge_amount, lambda vu_id: vu_id % 20 + 1, ThinkTime(0.1, 0.2)),
        rules=rules,
        start_time=10.0,
        thresholds={"latency": ["p(95)<5000"]},
    )
    background = background_traffic(
        settings,
        vus=20,
        duration="1m30s",
        paths=["/api/products"],
        think_time=ThinkTime(0.5),
    )
    return [background, contention]


def extract_balance(raw: bytes) -> Optional[int]:
    try:
        body = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    data = body.get("data") if isinstance(body.get("data"), dict) else body
    for key in ("balance", "point", "amount"):
        value = data.get(key)
        if isinstance(value, (int, float)):
            return int(value)
    return None


async def verify_balances(context: RunContext, report: SummaryReport) -> Dict[int, Optional[int]]:
    """Read back the balances of the first users after charging."""
    users = VERIFIED_USERS
    point_summary = next((s for s in report.scenarios if s.name == "point_charge"), None)
    if point_summary is not None:
        users = min(VERIFIED_USERS, point_summary.vus_peak or VERIFIED_USERS)

    balances: Dict[int, Optional[int]] = {}
    for user_id in range(1, users + 1):
        response = await context.client.send("GET", f"/api/points/users/{user_id}/balance")
        balance = extract_balance(response.raw_body) if response.status_code == 200 else None
        balances[user_id] = balance
        logger.info("User %d balance: %s", user_id, "unknown" if balance is None else balance)

    verified = sum(1 for b in balances.values() if b is not None)
    logger.info("Balance lookups: %d ok, %d failed", verified, len(balances) - verified)
    return balances
