"""
Order creation and payment.

Orders compete for limited product stock; a stock-insufficient rejection is
the expected outcome once the stock runs out. Each payment iteration creates
its own order and pays it, with a random mix of point and coupon usage;
point and coupon rejections are expected.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from surge.classify import (
    COUPON_REJECTED,
    POINT_REJECTED,
    PRODUCT_OUT_OF_STOCK,
    STOCK_INSUFFICIENT,
    ClassificationRules,
    Signature,
)
from surge.config import Settings
from surge.context import RunContext
from surge.exceptions import SurgeSetupError
from surge.plan import IterationContext, Prerequisite, RequestPlan, ThinkTime
from surge.scenario import Scenario
from surge.scenarios.common import Stages, background_traffic, scaled_ramp

logger = logging.getLogger(__name__)

STOCK_SIGNATURES = (
    STOCK_INSUFFICIENT,
    Signature("stock_insufficient", code="INSUFFICIENT_STOCK"),
    PRODUCT_OUT_OF_STOCK,
)
STOCK_RULES = ClassificationRules(STOCK_SIGNATURES)
# Order creation runs inside each payment iteration, so stock-outs show up here too.
PAYMENT_RULES = ClassificationRules([POINT_REJECTED, COUPON_REJECTED, *STOCK_SIGNATURES])

SEEDED_ORDERS = 100


def order_body(user_id: int, product_id: int, quantity: int = 1) -> Dict[str, Any]:
    return {"userId": user_id, "items": [{"productId": product_id, "quantity": quantity}]}


def order_plan(
    max_users: int,
    product_ids: Sequence[int],
    think_time: ThinkTime,
) -> RequestPlan:
    def body(ctx: IterationContext) -> Dict[str, Any]:
        return order_body(ctx.rng.randint(1, max_users), ctx.rng.choice(product_ids))

    return RequestPlan.single("create_order", "POST", "/api/orders", body=body, think_time=think_time)


def order_load(
    settings: Settings,
    *,
    stages: Optional[Stages] = None,
    start_time: float = 0.0,
) -> Scenario:
    """Ramp to 2,000 VUs ordering one unit of the same product."""
    name = "order_load"
    stages = stages or [("30s", 1000), ("30s", 2000), ("120s", 2000), ("30s", 0)]
    return Scenario(
        name=name,
        schedule=scaled_ramp(settings, name, stages),
        plan=order_plan(settings.users(2000), [settings.product_id], ThinkTime(0.5)),
        rules=STOCK_RULES,
        start_time=start_time,
        thresholds={"latency": ["p(95)<2000"], "failure_rate": ["rate<0.01"]},
    )


def order_surge(settings: Settings) -> List[Scenario]:
    """
    Orders spread over five products while browsing continues.

    Twenty browsing VUs run for the whole 2m30s; the order ramp starts 20 s
    in and peaks at 200 VUs.
    """
    name = "order_load"
    orders = Scenario(
        name=name,
        schedule=scaled_ramp(settings, name, [("20s", 50), ("30s", 150), ("40s", 200), ("20s", 0)]),
        plan=order_plan(settings.users(5000), range(1, 6), ThinkTime(0.2)),
        rules=STOCK_RULES,
        start_time=20.0,
        thresholds={"latency": ["p(95)<3000"]},
    )
    browsing = background_traffic(
        settings,
        vus=20,
        duration="2m30s",
        paths=("/api/products", "/api/products/1", "/api/products/2"),
        think_time=ThinkTime(0.3, 0.4),
    )
    return [browsing, orders]


def extract_order_id(raw: bytes) -> Optional[int]:
    """Order id from a create-order response ({"data": {"orderId": ..}} or flat)."""
    try:
        body = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    data = body.get("data") if isinstance(body.get("data"), dict) else body
    order_id = data.get("orderId") or data.get("id")
    return order_id if isinstance(order_id, int) else None


def _order_values(raw: bytes) -> Optional[Dict[str, int]]:
    order_id = extract_order_id(raw)
    return None if order_id is None else {"orderId": order_id}


async def seed_orders(context: RunContext, count: int = SEEDED_ORDERS) -> Dict[str, List[int]]:
    """
    Create one order for each of users 1..count before the load starts.

    Serves as a pre-flight check of the order endpoint. The ids are exposed
    as {"orders": [...]} in the shared state; the payment plan creates its
    own orders.

    Raises:
        SurgeSetupError: If no order could be created.
    """
    orders: List[int] = []
    for user_id in range(1, count + 1):
        response = await context.client.send(
            "POST",
            "/api/orders",
            order_body(user_id, 1),
            {"Content-Type": "application/json"},
        )
        if 200 <= response.status_code < 300:
            order_id = extract_order_id(response.raw_body)
            if order_id is not None:
                orders.append(order_id)
    logger.info("Seeded %d of %d orders before the payment run", len(orders), count)
    if not orders:
        raise SurgeSetupError("No orders could be created for the payment scenario")
    return {"orders": orders}


def payment_stress(settings: Settings) -> Scenario:
    """
    Create an order, then pay it: 50% with points, 30% with a coupon.

    Only the payment is measured. A failed order creation is recorded as
    the iteration's outcome under create_order.
    """
    name = "payment_stress"
    max_users = settings.users(1000)

    def create_body(ctx: IterationContext) -> Dict[str, Any]:
        return order_body(ctx.rng.randint(1, max_users), ctx.rng.randint(1, 10))

    def path(ctx: IterationContext) -> str:
        return f"/api/orders/{ctx.values['orderId']}/payment"

    def body(ctx: IterationContext) -> Dict[str, Any]:
        return {
            "usePoint": 1000 if ctx.rng.random() > 0.5 else 0,
            "userCouponId": 1 if ctx.rng.random() > 0.7 else None,
        }

    return Scenario(
        name=name,
        schedule=scaled_ramp(
            settings,
            name,
            [("60s", 100), ("60s", 500), ("60s", 1000), ("120s", 1000), ("60s", 0)],
        ),
        plan=RequestPlan.single(
            "pay_order",
            "POST",
            path,
            body=body,
            before=Prerequisite("create_order", "POST", "/api/orders", _order_values, body=create_body),
            think_time=ThinkTime(1.0),
        ),
        rules=PAYMENT_RULES,
        thresholds={"latency": ["p(95)<3000"], "failure_rate": ["rate<0.05"]},
    )
