"""
RunCoordinator: owns the lifecycle of one run.

    setup -> scenarios (concurrently, each after its start offset)
          -> freeze metrics -> build summary -> teardown -> report sinks

Each scenario is driven by a controller that, every scheduling tick,
reads its schedule's target VU count and spawns or retires virtual users
to match. Retirement takes the highest VU ids first and only ever happens
at an iteration boundary.

A global budget bounds the whole run. When it expires the stop signal is
raised, in-flight iterations finish, no new ones start, and unfinished
scenarios are reported as interrupted.

Usage:
    coordinator = RunCoordinator(client, setup=seed_orders, sinks=[ConsoleSink()])
    report = await coordinator.run([order_load, payment_stress], budget=300)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

from surge import telemetry
from surge.context import RunContext
from surge.exceptions import SurgeConfigError, SurgeSetupError
from surge.limiter import InFlightLimiter
from surge.metrics import MetricSet
from surge.models import ScenarioStatus, utc_now
from surge.report import (
    ReportSink,
    ScenarioResult,
    SummaryReport,
    build_summary,
    format_summary,
)
from surge.scenario import Scenario
from surge.transport import HttpClient
from surge.vu import VirtualUser

logger = logging.getLogger(__name__)

Hook = Callable[[RunContext], Union[None, Mapping[str, Any], Awaitable[Any]]]
TeardownHook = Callable[[RunContext, SummaryReport], Union[None, Awaitable[None]]]


async def _call_hook(hook: Callable[..., Any], *args: Any) -> Any:
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class ScenarioController:
    """
    Drives the virtual users of one scenario.

    Not reused across runs; the coordinator builds one per scenario per run.
    """

    def __init__(
        self,
        scenario: Scenario,
        *,
        client: HttpClient,
        metrics: MetricSet,
        context: RunContext,
        limiter: InFlightLimiter,
        tick: float,
        seed: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.scenario = scenario
        self.client = client
        self.metrics = metrics
        self.context = context
        self.limiter = limiter
        self.tick = tick
        self.seed = seed
        self.clock = clock
        self.vus: Dict[int, VirtualUser] = {}
        self._tasks: Dict[int, "asyncio.Task[None]"] = {}
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None

    @property
    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.finished_at if self.finished_at is not None else self.clock()
        return end - self.started_at

    def active_count(self) -> int:
        """VUs that are running and not scheduled for retirement."""
        return sum(1 for vu in self.vus.values() if not vu.done and not vu.retiring)

    def live(self) -> List[VirtualUser]:
        return [vu for vu in self.vus.values() if not vu.done]

    async def _wait(self, delay: float) -> bool:
        """Sleep up to `delay` seconds; True if the run is stopping."""
        stop = self.context.stop_event
        if delay <= 0:
            return stop.is_set()
        try:
            await asyncio.wait_for(stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    def _rng(self, vu_id: int) -> random.Random:
        if self.seed is None:
            return random.Random()
        return random.Random(f"{self.seed}:{self.scenario.name}:{vu_id}")

    def _next_id(self) -> int:
        vu_id = 1
        while vu_id in self.vus:
            vu_id += 1
        return vu_id

    def spawn(self, iterations: Optional[int] = None) -> VirtualUser:
        # Reuse the lowest id whose VU has exited.
        for vu_id in [i for i, vu in self.vus.items() if vu.done]:
            del self.vus[vu_id]
            task = self._tasks.pop(vu_id, None)
            if task is not None and task.done():
                self._reap(task)
        vu_id = self._next_id()
        vu = VirtualUser(
            vu_id,
            self.scenario,
            self.client,
            self.metrics,
            self.context,
            limiter=self.limiter,
            iterations=iterations,
            rng=self._rng(vu_id),
        )
        self.vus[vu_id] = vu
        self._tasks[vu_id] = asyncio.create_task(
            vu.run(), name=f"surge-{self.scenario.name}-vu-{vu_id}"
        )
        return vu

    def scale_to(self, target: int) -> None:
        """
        Match the running VU count to `target`.

        Growing revives VUs that are retiring (lowest id first) before
        spawning new ones. Shrinking retires the highest ids first.
        """
        live = self.live()
        active = [vu for vu in live if not vu.retiring]
        if len(active) < target:
            needed = target - len(active)
            for vu in sorted((v for v in live if v.retiring), key=lambda v: v.vu_id):
                if needed == 0:
                    break
                if vu.revive():
                    needed -= 1
            for _ in range(needed):
                self.spawn()
        elif len(active) > target:
            surplus = len(active) - target
            for vu in sorted(active, key=lambda v: v.vu_id, reverse=True)[:surplus]:
                vu.retire()

    def retire_all(self) -> None:
        for vu in self.live():
            vu.retire()

    async def drain(self) -> None:
        """Wait for every VU to finish its current iteration and exit."""
        pending = [t for t in self._tasks.values() if not t.done()]
        if pending:
            await asyncio.wait(pending)
        for task in self._tasks.values():
            self._reap(task)

    def _reap(self, task: "asyncio.Task[None]") -> None:
        """Log the exception of a finished VU task, if it raised one."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scenario %s virtual user crashed: %r", self.scenario.name, exc)

    async def run(self) -> ScenarioStatus:
        name = self.scenario.name
        if await self._wait(self.scenario.start_time):
            logger.info("Scenario %s not started: run stopped before its start offset", name)
            return ScenarioStatus.NOT_STARTED

        self.started_at = self.clock()
        logger.info(
            "Scenario %s started (%s, max %d VUs)",
            name,
            self.scenario.executor,
            self.scenario.schedule.max_vus,
        )
        with telemetry.span(
            "surge.scenario", scenario=name, executor=self.scenario.executor
        ):
            try:
                if self.scenario.schedule.iterations_per_vu is not None:
                    status = await self._run_iterations()
                else:
                    status = await self._run_ramp()
            finally:
                self.retire_all()
                await self.drain()
                self.finished_at = self.clock()

        logger.info(
            "Scenario %s %s after %.1fs (%d iterations)",
            name,
            status.value,
            self.elapsed,
            self.metrics.counter("iterations").value,
        )
        return status

    async def _run_ramp(self) -> ScenarioStatus:
        schedule = self.scenario.schedule
        while True:
            if self.context.stopping:
                return ScenarioStatus.INTERRUPTED
            elapsed = self.clock() - self.started_at
            if schedule.is_finished(elapsed):
                self.scale_to(0)
                return ScenarioStatus.COMPLETED
            self.scale_to(schedule.target_vus(elapsed))
            self.metrics.sample_vus(self.active_count())
            await self._wait(min(self.tick, max(0.0, schedule.duration - elapsed)))

    async def _run_iterations(self) -> ScenarioStatus:
        schedule = self.scenario.schedule
        for _ in range(schedule.target_vus(0.0)):
            self.spawn(iterations=schedule.iterations_per_vu)

        while True:
            self.metrics.sample_vus(self.active_count())
            pending = [t for t in self._tasks.values() if not t.done()]
            if not pending:
                return ScenarioStatus.COMPLETED
            if self.context.stopping:
                return ScenarioStatus.INTERRUPTED
            elapsed = self.clock() - self.started_at
            if schedule.is_finished(elapsed):
                logger.warning(
                    "Scenario %s hit its %.0fs cutoff with %d VUs unfinished",
                    self.scenario.name,
                    schedule.duration,
                    len(pending),
                )
                return ScenarioStatus.INCOMPLETE
            timeout = min(self.tick, max(0.0, schedule.duration - elapsed))
            await asyncio.wait(pending, timeout=timeout)


class RunCoordinator:
    """
    Runs scenarios concurrently and produces one SummaryReport per run.

    Args:
        client: HttpClient shared by every virtual user of the run.
        tick: Scheduling interval in seconds.
        max_in_flight: Cap on simultaneous requests across the run (None
            disables the cap).
        setup: Called once before any scenario with the RunContext. May be
            async. A returned mapping is merged into the shared state that
            virtual users read.
        teardown: Called once after the report is built, with the context
            and the report. May be async. Failures are logged only.
        sinks: Report sinks, each called exactly once per run.
        seed: Seed for per-VU random generators (reproducible runs).
    """

    def __init__(
        self,
        client: HttpClient,
        *,
        tick: float = 0.1,
        max_in_flight: Optional[int] = None,
        setup: Optional[Hook] = None,
        teardown: Optional[TeardownHook] = None,
        sinks: Sequence[ReportSink] = (),
        seed: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if tick <= 0:
            raise SurgeConfigError("tick must be positive", details={"tick": tick})
        self.client = client
        self.tick = tick
        self.max_in_flight = max_in_flight
        self.setup = setup
        self.teardown = teardown
        self.sinks = list(sinks)
        self.seed = seed
        self.clock = clock
        self.last_context: Optional[RunContext] = None

    def _validate(self, scenarios: Sequence[Scenario], budget: Optional[float]) -> None:
        if not scenarios:
            raise SurgeConfigError("A run needs at least one scenario")
        seen = set()
        for scenario in scenarios:
            if scenario.name in seen:
                raise SurgeConfigError(
                    f"Duplicate scenario name: {scenario.name}",
                    code="duplicate_scenario",
                    details={"scenario": scenario.name},
                )
            seen.add(scenario.name)
        if budget is not None and budget <= 0:
            raise SurgeConfigError("budget must be positive", details={"budget": budget})

    async def _run_setup(self, context: RunContext) -> None:
        if self.setup is None:
            return
        with telemetry.span("surge.setup", run_id=context.run_id):
            try:
                result = await _call_hook(self.setup, context)
            except SurgeSetupError:
                logger.error("Setup failed for run %s", context.run_id)
                raise
            except Exception as exc:
                logger.error("Setup failed for run %s: %r", context.run_id, exc)
                raise SurgeSetupError(
                    f"Setup failed: {exc}",
                    details={"run_id": context.run_id, "error": repr(exc)},
                ) from exc
        if isinstance(result, Mapping):
            context.shared.update(result)

    async def _run_teardown(self, context: RunContext, report: SummaryReport) -> None:
        if self.teardown is None:
            return
        with telemetry.span("surge.teardown", run_id=context.run_id):
            try:
                await _call_hook(self.teardown, context, report)
            except Exception:
                logger.exception("Teardown failed for run %s", context.run_id)

    def _deliver(self, report: SummaryReport) -> None:
        text = format_summary(report)
        for sink in self.sinks:
            try:
                sink.emit(report, text)
            except Exception:
                logger.exception("Report sink %s failed", type(sink).__name__)

    async def run(
        self,
        scenarios: Sequence[Scenario],
        budget: Optional[float] = None,
    ) -> SummaryReport:
        """
        Execute one run.

        Args:
            scenarios: Scenarios to run concurrently; names must be unique.
            budget: Global wall-clock budget in seconds, counted from the
                end of setup.

        Returns:
            The SummaryReport (also delivered to every sink).

        Raises:
            SurgeConfigError: Invalid scenarios or budget.
            SurgeSetupError: setup() raised; no scenario ran.
        """
        scenarios = list(scenarios)
        self._validate(scenarios, budget)
        context = RunContext(self.client, scenarios)
        self.last_context = context

        with telemetry.span(
            "surge.run", run_id=context.run_id, scenarios=len(scenarios), budget=budget
        ):
            await self._run_setup(context)

            limiter = InFlightLimiter(self.max_in_flight)
            controllers = [
                ScenarioController(
                    scenario,
                    client=self.client,
                    metrics=context.metrics[scenario.name],
                    context=context,
                    limiter=limiter,
                    tick=self.tick,
                    seed=self.seed,
                    clock=self.clock,
                )
                for scenario in scenarios
            ]

            started_at = utc_now()
            started = self.clock()
            logger.info(
                "Run %s started: %d scenario(s), budget %s",
                context.run_id,
                len(scenarios),
                "none" if budget is None else f"{budget:g}s",
            )
            tasks = [
                asyncio.create_task(c.run(), name=f"surge-{c.scenario.name}")
                for c in controllers
            ]

            budget_exceeded = False
            try:
                _, pending = await asyncio.wait(tasks, timeout=budget)
                if pending:
                    budget_exceeded = True
                    logger.warning(
                        "Run %s budget of %gs exceeded; stopping %d scenario(s)",
                        context.run_id,
                        budget,
                        len(pending),
                    )
                    telemetry.log("warning", "run_budget_exceeded", run_id=context.run_id)
                    context.request_stop()
                    for controller in controllers:
                        controller.retire_all()
                    await asyncio.wait(pending)
            except BaseException:
                context.request_stop()
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

            results = [
                ScenarioResult(
                    scenario=c.scenario,
                    status=task.result(),
                    elapsed_seconds=c.elapsed,
                )
                for c, task in zip(controllers, tasks)
            ]
            elapsed = self.clock() - started
            finished_at = utc_now()

            context.freeze()
            report = build_summary(
                results,
                context.metrics,
                run_id=context.run_id,
                started_at=started_at,
                finished_at=finished_at,
                elapsed_seconds=elapsed,
                budget_seconds=budget,
                budget_exceeded=budget_exceeded,
            )
            logger.info(
                "Run %s finished in %.1fs: %d requests, %s",
                context.run_id,
                elapsed,
                report.totals.get("requests", 0),
                "passed" if report.passed else "thresholds breached",
            )
            telemetry.log(
                "info",
                "run_finished",
                run_id=context.run_id,
                requests=report.totals.get("requests", 0),
                passed=report.passed,
                budget_exceeded=budget_exceeded,
            )

            await self._run_teardown(context, report)
            self._deliver(report)
            return report

    def run_sync(
        self,
        scenarios: Sequence[Scenario],
        budget: Optional[float] = None,
    ) -> SummaryReport:
        """Synchronous wrapper around run()."""
        return asyncio.run(self.run(scenarios, budget))
