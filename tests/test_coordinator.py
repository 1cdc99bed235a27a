"""End-to-end runs of the coordinator against an in-process fake service."""

import asyncio
import logging
import time
from typing import List, Optional

import pytest

from surge.classify import (
    COUPON_ALREADY_ISSUED,
    COUPON_SOLD_OUT,
    LOCK_CONTENTION,
    TRANSPORT_TIMEOUT,
    ClassificationRules,
)
from surge.coordinator import RunCoordinator, ScenarioController
from surge.context import RunContext
from surge.exceptions import SurgeConfigError, SurgeSetupError
from surge.faults import FaultInjectingClient, rules
from surge.limiter import InFlightLimiter
from surge.metrics.registry import TRANSPORT_ERRORS, endpoint_latency_metric, signature_metric
from surge.models import Classification, ScenarioStatus
from surge.plan import Prerequisite, RequestPlan, ThinkTime
from surge.report import SummaryReport
from surge.scenario import Scenario
from surge.schedule import constant, per_vu_iterations, ramping
from tests.fakes.fake_shop import FakeShop

COUPON_RULES = ClassificationRules([COUPON_SOLD_OUT, COUPON_ALREADY_ISSUED])


class RecordingSink:
    def __init__(self):
        self.reports: List[SummaryReport] = []
        self.texts: List[str] = []

    def emit(self, report, text):
        self.reports.append(report)
        self.texts.append(text)


def coupon_scenario(vus: int, iterations: int, **kwargs) -> Scenario:
    # Subject ids are unique across the whole run.
    def path(ctx):
        return f"/api/coupons/1/issue?userId={(ctx.vu_id - 1) * iterations + ctx.iteration + 1}"

    return Scenario(
        name=kwargs.pop("name", "coupon_rush"),
        schedule=per_vu_iterations(vus, iterations, max_duration=60),
        plan=RequestPlan.single("issue_coupon", "POST", path),
        rules=COUPON_RULES,
        **kwargs,
    )


def browse_scenario(name: str = "browse", schedule=None, think: float = 0.01, **kwargs) -> Scenario:
    return Scenario(
        name=name,
        schedule=schedule or constant(3, 0.2),
        plan=RequestPlan.single("product_list", "GET", "/api/products", think_time=ThinkTime(think)),
        **kwargs,
    )


class ExplodingThinkTime(ThinkTime):
    def sample(self, rng):
        raise RuntimeError("think time exploded")


class TestCouponStock:
    @pytest.mark.asyncio
    async def test_stock_is_never_oversold(self):
        shop = FakeShop(coupon_stock=500)
        scenario = coupon_scenario(100, 100, thresholds={"outcome.success": ["count<=500"]})
        sink = RecordingSink()

        report = await RunCoordinator(shop, tick=0.01, sinks=[sink]).run([scenario], budget=60)

        summary = report.scenario("coupon_rush")
        assert summary.status is ScenarioStatus.COMPLETED
        assert summary.requests == 10000
        assert summary.iterations == 10000
        assert summary.outcome_count(Classification.SUCCESS) == 500
        assert summary.outcome_count(Classification.EXPECTED_BUSINESS_FAILURE) == 9500
        assert summary.outcome_count(Classification.UNEXPECTED_FAILURE) == 0
        assert summary.outcome_count(Classification.PARSE_ERROR) == 0
        assert summary.counters[signature_metric("coupon_sold_out")] == 9500
        assert summary.rates["failure_rate"].rate == 0.0
        assert summary.vus_peak == 100
        assert summary.passed
        assert report.passed
        assert report.budget_exceeded is False
        assert len(shop.issued) == 500
        assert sink.reports == [report]

    @pytest.mark.asyncio
    async def test_duplicate_subject_is_expected(self):
        shop = FakeShop(coupon_stock=10)
        scenario = Scenario(
            name="dup",
            schedule=per_vu_iterations(1, 3),
            plan=RequestPlan.single("issue_coupon", "POST", "/api/coupons/1/issue?userId=1"),
            rules=COUPON_RULES,
        )
        report = await RunCoordinator(shop, tick=0.01).run([scenario])
        summary = report.scenario("dup")
        assert summary.outcome_count(Classification.SUCCESS) == 1
        assert summary.counters[signature_metric("coupon_already_issued")] == 2


class TestSchedules:
    @pytest.mark.asyncio
    async def test_per_vu_iterations_exact(self):
        shop = FakeShop()
        scenario = browse_scenario(schedule=per_vu_iterations(5, 3), think=0.0)
        report = await RunCoordinator(shop, tick=0.01).run([scenario])

        summary = report.scenario("browse")
        assert summary.status is ScenarioStatus.COMPLETED
        assert summary.iterations == 15
        assert summary.requests == 15
        assert summary.executor == "per-vu-iterations"
        assert len(shop.calls) == 15

    @pytest.mark.asyncio
    async def test_constant_vus_stay_within_limit(self):
        shop = FakeShop(latency=0.005)
        scenario = browse_scenario(schedule=constant(10, 0.5))
        coordinator = RunCoordinator(shop, tick=0.02)
        report = await coordinator.run([scenario])

        summary = report.scenario("browse")
        assert summary.status is ScenarioStatus.COMPLETED
        assert summary.vus_peak == 10
        assert shop.peak_in_flight <= 10
        assert summary.iterations > 10
        assert "vus" not in summary.trends

        trace = coordinator.last_context.metrics["browse"].trend("vus")
        assert trace.count > 5
        assert trace.min >= 0
        assert trace.max <= 10
        assert all(0 <= active <= 10 for active in trace.samples())

    @pytest.mark.asyncio
    async def test_ramp_up_and_down(self):
        shop = FakeShop(latency=0.002)
        scenario = browse_scenario(schedule=ramping((0.2, 4), (0.2, 0)))
        report = await RunCoordinator(shop, tick=0.01).run([scenario])

        summary = report.scenario("browse")
        assert summary.status is ScenarioStatus.COMPLETED
        assert 1 <= summary.vus_peak <= 4
        assert shop.in_flight == 0

    @pytest.mark.asyncio
    async def test_cutoff_marks_incomplete(self):
        shop = FakeShop()
        scenario = browse_scenario(
            schedule=per_vu_iterations(2, 1000, max_duration=0.2), think=0.05
        )
        report = await RunCoordinator(shop, tick=0.01).run([scenario])

        summary = report.scenario("browse")
        assert summary.status is ScenarioStatus.INCOMPLETE
        assert 0 < summary.iterations < 2000
        assert report.budget_exceeded is False

    @pytest.mark.asyncio
    async def test_start_offset(self):
        shop = FakeShop()
        early = browse_scenario("early", schedule=per_vu_iterations(1, 1))
        late = browse_scenario("late", schedule=per_vu_iterations(1, 1), start_time=0.2)
        started = time.monotonic()
        report = await RunCoordinator(shop, tick=0.01).run([early, late])

        assert time.monotonic() - started >= 0.2
        assert report.scenario("late").start_time == 0.2
        assert [s.name for s in report.scenarios] == ["early", "late"]
        assert report.totals["requests"] == 2


class TestController:
    @pytest.mark.asyncio
    async def test_retire_highest_ids_and_revive_lowest(self):
        shop = FakeShop()
        scenario = browse_scenario(think=10.0)
        context = RunContext(shop, [scenario])
        controller = ScenarioController(
            scenario,
            client=shop,
            metrics=context.metrics["browse"],
            context=context,
            limiter=InFlightLimiter(),
            tick=0.01,
        )

        controller.scale_to(4)
        await asyncio.sleep(0)
        assert sorted(controller.vus) == [1, 2, 3, 4]

        controller.scale_to(2)
        assert [vu.vu_id for vu in controller.vus.values() if vu.retiring] == [3, 4]
        assert controller.active_count() == 2

        controller.retire_all()
        await controller.drain()
        assert controller.live() == []

        controller.scale_to(2)
        assert sorted(vu.vu_id for vu in controller.live()) == [1, 2]
        controller.retire_all()
        await controller.drain()

    @pytest.mark.asyncio
    async def test_scale_up_revives_retiring_vus(self):
        shop = FakeShop(latency=0.05)
        scenario = browse_scenario(think=10.0)
        context = RunContext(shop, [scenario])
        controller = ScenarioController(
            scenario,
            client=shop,
            metrics=context.metrics["browse"],
            context=context,
            limiter=InFlightLimiter(),
            tick=0.01,
        )

        controller.scale_to(3)
        await asyncio.sleep(0.01)
        controller.scale_to(1)
        # Still mid-request, so ids 2 and 3 can be revived.
        controller.scale_to(2)
        assert [vu.vu_id for vu in controller.live() if not vu.retiring] == [1, 2]
        assert len(controller.vus) == 3

        controller.retire_all()
        await controller.drain()

    @pytest.mark.asyncio
    async def test_crashed_vu_is_logged_before_its_id_is_reused(self, caplog):
        shop = FakeShop()
        scenario = Scenario(
            name="crash",
            schedule=constant(1, 1.0),
            plan=RequestPlan.single(
                "product_list", "GET", "/api/products", think_time=ExplodingThinkTime()
            ),
        )
        context = RunContext(shop, [scenario])
        controller = ScenarioController(
            scenario,
            client=shop,
            metrics=context.metrics["crash"],
            context=context,
            limiter=InFlightLimiter(),
            tick=0.01,
        )

        with caplog.at_level(logging.ERROR, logger="surge.coordinator"):
            first = controller.spawn()
            await asyncio.sleep(0.05)
            assert first.done
            second = controller.spawn()
            assert second.vu_id == 1
            assert "virtual user crashed" in caplog.text
            await asyncio.sleep(0.05)
            controller.retire_all()
            await controller.drain()

        assert caplog.text.count("think time exploded") == 2


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_setup_state_is_shared(self):
        shop = FakeShop()

        async def setup(context):
            for user_id in range(1, 5):
                response = await context.client.send("POST", "/api/orders", {"userId": user_id})
                assert response.status_code == 201
            return {"orders": [1, 2, 3, 4]}

        def path(ctx):
            order_id = ctx.shared["orders"][(ctx.vu_id - 1) * 2 + ctx.iteration]
            return f"/api/orders/{order_id}/payment"

        scenario = Scenario(
            name="payment",
            schedule=per_vu_iterations(2, 2),
            plan=RequestPlan.single("pay_order", "POST", path),
        )
        coordinator = RunCoordinator(shop, tick=0.01, setup=setup)
        report = await coordinator.run([scenario])

        assert report.scenario("payment").outcome_count(Classification.SUCCESS) == 4
        assert coordinator.last_context.shared == {"orders": [1, 2, 3, 4]}
        assert shop.paid == {1, 2, 3, 4}

    @pytest.mark.asyncio
    async def test_setup_failure_aborts_run(self):
        shop = FakeShop()
        sink = RecordingSink()
        teardown_calls = []

        def setup(context):
            raise ValueError("database unavailable")

        coordinator = RunCoordinator(
            shop,
            setup=setup,
            teardown=lambda ctx, report: teardown_calls.append(report),
            sinks=[sink],
        )
        with pytest.raises(SurgeSetupError) as exc_info:
            await coordinator.run([browse_scenario()])

        assert "database unavailable" in exc_info.value.message
        assert isinstance(exc_info.value.__cause__, ValueError)
        assert exc_info.value.stage == "setup"
        assert shop.calls == []
        assert sink.reports == []
        assert teardown_calls == []

    @pytest.mark.asyncio
    async def test_setup_error_is_not_rewrapped(self):
        original = SurgeSetupError("no orders", details={"count": 0})

        async def setup(context):
            raise original

        with pytest.raises(SurgeSetupError) as exc_info:
            await RunCoordinator(FakeShop(), setup=setup).run([browse_scenario()])
        assert exc_info.value is original

    @pytest.mark.asyncio
    async def test_teardown_failure_is_logged(self, caplog):
        shop = FakeShop()
        sink = RecordingSink()
        seen: List[Optional[SummaryReport]] = []

        async def teardown(context, report):
            seen.append(report)
            raise RuntimeError("cleanup failed")

        coordinator = RunCoordinator(shop, tick=0.01, teardown=teardown, sinks=[sink])
        with caplog.at_level(logging.ERROR, logger="surge.coordinator"):
            report = await coordinator.run([browse_scenario(schedule=per_vu_iterations(1, 2))])

        assert seen == [report]
        assert sink.reports == [report]
        assert report.scenario("browse").requests == 2
        assert "Teardown failed" in caplog.text

    @pytest.mark.asyncio
    async def test_each_sink_receives_report_once(self):
        sinks = [RecordingSink(), RecordingSink()]
        report = await RunCoordinator(FakeShop(), tick=0.01, sinks=sinks).run(
            [browse_scenario(schedule=per_vu_iterations(1, 1))]
        )
        for sink in sinks:
            assert sink.reports == [report]
            assert "SCENARIO: browse" in sink.texts[0]

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_block_others(self):
        class BrokenSink:
            def emit(self, report, text):
                raise OSError("disk full")

        good = RecordingSink()
        await RunCoordinator(FakeShop(), tick=0.01, sinks=[BrokenSink(), good]).run(
            [browse_scenario(schedule=per_vu_iterations(1, 1))]
        )
        assert len(good.reports) == 1

    @pytest.mark.asyncio
    async def test_runs_do_not_share_metrics(self):
        coordinator = RunCoordinator(FakeShop(), tick=0.01)
        scenario = browse_scenario(schedule=per_vu_iterations(2, 2))
        first = await coordinator.run([scenario])
        second = await coordinator.run([scenario])

        assert first.run_id != second.run_id
        assert first.scenario("browse").requests == 4
        assert second.scenario("browse").requests == 4


class TestBudget:
    @pytest.mark.asyncio
    async def test_budget_interrupts_and_skips(self):
        shop = FakeShop(latency=0.05)
        running = browse_scenario("running", schedule=constant(4, 30))
        pending = browse_scenario("pending", schedule=constant(4, 30), start_time=20)

        started = time.monotonic()
        report = await RunCoordinator(shop, tick=0.01).run([running, pending], budget=0.3)

        assert time.monotonic() - started < 5
        assert report.budget_exceeded is True
        assert report.budget_seconds == 0.3
        assert report.scenario("running").status is ScenarioStatus.INTERRUPTED
        assert report.scenario("pending").status is ScenarioStatus.NOT_STARTED
        assert report.scenario("pending").requests == 0
        # In-flight requests finished and were recorded.
        assert report.totals["requests"] == shop.completed
        assert shop.in_flight == 0

    @pytest.mark.asyncio
    async def test_budget_not_exceeded(self):
        report = await RunCoordinator(FakeShop(), tick=0.01).run(
            [browse_scenario(schedule=per_vu_iterations(1, 1))], budget=10
        )
        assert report.budget_exceeded is False


class TestValidation:
    @pytest.mark.asyncio
    async def test_duplicate_names(self):
        with pytest.raises(SurgeConfigError) as exc_info:
            await RunCoordinator(FakeShop()).run([browse_scenario(), browse_scenario()])
        assert exc_info.value.code == "duplicate_scenario"

    @pytest.mark.asyncio
    async def test_empty_run(self):
        with pytest.raises(SurgeConfigError):
            await RunCoordinator(FakeShop()).run([])

    @pytest.mark.asyncio
    async def test_non_positive_budget(self):
        with pytest.raises(SurgeConfigError):
            await RunCoordinator(FakeShop()).run([browse_scenario()], budget=0)

    def test_non_positive_tick(self):
        with pytest.raises(SurgeConfigError):
            RunCoordinator(FakeShop(), tick=0)

    def test_bad_threshold_fails_before_run(self):
        with pytest.raises(SurgeConfigError):
            browse_scenario(thresholds={"latency": ["p95<500"]})


class TestFailureContainment:
    @pytest.mark.asyncio
    async def test_transport_and_parse_failures_are_classified(self, caplog):
        client = FaultInjectingClient(
            FakeShop(),
            [rules.on_calls({2, 4}), rules.respond_on_calls({6}, 502, b"<html>bad gateway</html>")],
        )
        scenario = browse_scenario(schedule=per_vu_iterations(1, 10), think=0.0)

        with caplog.at_level(logging.WARNING, logger="surge.vu"):
            report = await RunCoordinator(client, tick=0.01).run([scenario])

        summary = report.scenario("browse")
        assert summary.status is ScenarioStatus.COMPLETED
        assert summary.iterations == 10
        assert summary.outcome_count(Classification.UNEXPECTED_FAILURE) == 2
        assert summary.outcome_count(Classification.PARSE_ERROR) == 1
        assert summary.outcome_count(Classification.SUCCESS) == 7
        assert summary.counters[TRANSPORT_ERRORS] == 2
        # Transport failures have no latency sample.
        assert summary.trends["latency"].count == 8
        assert summary.trends[endpoint_latency_metric("product_list")].count == 8
        assert "bad gateway" in caplog.text
        assert "transport timeout" in caplog.text

    @pytest.mark.asyncio
    async def test_timeouts_expected_under_contention(self):
        client = FaultInjectingClient(FakeShop(), [rules.on_calls({1, 2})])
        scenario = Scenario(
            name="point_contention",
            schedule=per_vu_iterations(1, 4),
            plan=RequestPlan.single(
                "charge_point", "POST", "/api/points/users/1/charge", body={"userId": 1, "amount": 10}
            ),
            rules=ClassificationRules([LOCK_CONTENTION], timeouts_expected=True),
        )
        report = await RunCoordinator(client, tick=0.01).run([scenario])

        summary = report.scenario("point_contention")
        assert summary.outcome_count(Classification.EXPECTED_BUSINESS_FAILURE) == 2
        assert summary.counters[signature_metric(TRANSPORT_TIMEOUT)] == 2
        assert summary.rates["failure_rate"].rate == 0.0

    @pytest.mark.asyncio
    async def test_client_exception_is_contained(self):
        class ExplodingClient:
            async def send(self, method, url, body=None, headers=None):
                raise RuntimeError("socket exploded")

        scenario = browse_scenario(schedule=per_vu_iterations(2, 2), think=0.0)
        report = await RunCoordinator(ExplodingClient(), tick=0.01).run([scenario])

        summary = report.scenario("browse")
        assert summary.outcome_count(Classification.UNEXPECTED_FAILURE) == 4
        assert summary.counters[TRANSPORT_ERRORS] == 4

    @pytest.mark.asyncio
    async def test_unbuildable_request_is_contained(self):
        scenario = Scenario(
            name="payment",
            schedule=per_vu_iterations(1, 3),
            plan=RequestPlan.single(
                "pay_order", "POST", lambda ctx: f"/api/orders/{ctx.shared['orders'][0]}/payment"
            ),
        )
        report = await RunCoordinator(FakeShop(), tick=0.01).run([scenario])

        summary = report.scenario("payment")
        assert summary.iterations == 3
        assert summary.outcome_count(Classification.UNEXPECTED_FAILURE) == 3
        assert summary.trends["latency"].count == 0

    @pytest.mark.asyncio
    async def test_crashed_vus_are_logged(self, caplog):
        scenario = Scenario(
            name="crash",
            schedule=per_vu_iterations(2, 3),
            plan=RequestPlan.single(
                "product_list", "GET", "/api/products", think_time=ExplodingThinkTime()
            ),
        )
        with caplog.at_level(logging.ERROR, logger="surge.coordinator"):
            report = await RunCoordinator(FakeShop(), tick=0.01).run([scenario])

        summary = report.scenario("crash")
        assert summary.status is ScenarioStatus.COMPLETED
        assert summary.iterations == 2
        assert caplog.text.count("virtual user crashed") == 2

    @pytest.mark.asyncio
    async def test_prerequisite_without_values_is_a_parse_error(self):
        shop = FakeShop()
        scenario = Scenario(
            name="payment",
            schedule=per_vu_iterations(1, 2),
            plan=RequestPlan.single(
                "pay_order",
                "POST",
                lambda ctx: f"/api/orders/{ctx.values['orderId']}/payment",
                before=Prerequisite("create_order", "POST", "/api/orders", lambda raw: None),
            ),
        )
        report = await RunCoordinator(shop, tick=0.01).run([scenario])

        summary = report.scenario("payment")
        assert summary.outcome_count(Classification.PARSE_ERROR) == 2
        assert summary.trends["latency"].count == 0
        assert shop.paid == set()
        assert shop.calls == [("POST", "/api/orders")] * 2


class TestSeeding:
    @pytest.mark.asyncio
    async def test_seeded_runs_repeat_choices(self):
        async def paths(seed):
            shop = FakeShop()
            scenario = Scenario(
                name="random_issue",
                schedule=per_vu_iterations(2, 5),
                plan=RequestPlan.single(
                    "issue_coupon",
                    "POST",
                    lambda ctx: f"/api/coupons/1/issue?userId={ctx.rng.randint(1, 1000)}",
                ),
                rules=COUPON_RULES,
            )
            await RunCoordinator(shop, tick=0.01, seed=seed).run([scenario])
            return sorted(shop.calls)

        assert await paths(7) == await paths(7)


def test_run_sync():
    report = RunCoordinator(FakeShop(), tick=0.01).run_sync(
        [browse_scenario(schedule=per_vu_iterations(1, 2))]
    )
    assert report.scenario("browse").requests == 2
