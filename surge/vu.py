"""
VirtualUser: one simulated client repeatedly executing a request plan.

Each VU is a coroutine. Its iterations never overlap: build a request,
dispatch it, classify the response, record the outcome, then think. A VU
only stops at an iteration boundary, so a retired VU always finishes the
request it is waiting on.

An endpoint may declare a prerequisite request (create an order, then pay
it). The prerequisite is sent first and is not measured; if it fails, its
outcome is recorded instead and the measured request is skipped.

Per-request failures are contained here. A transport error, a malformed
body or an exception raised by the client becomes a classified outcome and
the loop goes on.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import replace
from typing import Any, Mapping, Optional, Union

from surge.classify import DecodeFailure, Verdict, classify, classify_transport_error
from surge.context import RunContext
from surge.exceptions import SurgeTransportError
from surge.limiter import InFlightLimiter
from surge.metrics import MetricSet
from surge.models import Classification, RequestOutcome
from surge.plan import IterationContext, PreparedRequest, Prerequisite
from surge.scenario import Scenario
from surge.transport import HttpClient, HttpResponse

logger = logging.getLogger(__name__)

LOG_BODY_CHARS = 200


class VirtualUser:
    """
    Execution loop for one VU.

    Args:
        vu_id: 1-based id, stable for the VU's lifetime.
        scenario: Scenario this VU belongs to.
        client: Shared HTTP client.
        metrics: The scenario's MetricSet.
        context: Run context (shared state, stop signal).
        limiter: Optional in-flight limiter shared by the run.
        iterations: Quota for per-VU-iterations executors; None loops until
            retired or stopped.
        rng: Per-VU random generator.
    """

    def __init__(
        self,
        vu_id: int,
        scenario: Scenario,
        client: HttpClient,
        metrics: MetricSet,
        context: RunContext,
        *,
        limiter: Optional[InFlightLimiter] = None,
        iterations: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.vu_id = vu_id
        self.scenario = scenario
        self.client = client
        self.metrics = metrics
        self.context = context
        self.limiter = limiter or InFlightLimiter()
        self.quota = iterations
        self.rng = rng or random.Random()
        self.iterations = 0
        self._retiring = False
        self._done = False
        self._wake = asyncio.Event()

    @property
    def retiring(self) -> bool:
        return self._retiring

    @property
    def done(self) -> bool:
        return self._done

    @property
    def completed_quota(self) -> bool:
        return self.quota is not None and self.iterations >= self.quota

    def retire(self) -> None:
        """Stop after the current iteration; cuts think-time short."""
        self._retiring = True
        self._wake.set()

    def revive(self) -> bool:
        """Cancel a pending retirement. False if the VU already exited."""
        if self._done:
            return False
        self._retiring = False
        self._wake.clear()
        return True

    def _should_stop(self) -> bool:
        return self._retiring or self.context.stopping or self.completed_quota

    async def run(self) -> None:
        try:
            while not self._should_stop():
                await self.iterate()
                if self._should_stop():
                    break
                delay = self.scenario.plan.think_time.sample(self.rng)
                if delay > 0:
                    await self._think(delay)
                else:
                    # Yield so a client that never suspends cannot starve the loop.
                    await asyncio.sleep(0)
        finally:
            self._done = True

    async def _think(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def iterate(self) -> RequestOutcome:
        """Run one iteration and record its outcome."""
        ctx = IterationContext(
            vu_id=self.vu_id,
            iteration=self.iterations,
            scenario=self.scenario.name,
            shared=self.context.shared_view,
            rng=self.rng,
        )
        outcome = await self._run_iteration(ctx)
        self.metrics.observe(outcome)
        self.metrics.record_iteration()
        self.iterations += 1
        return outcome

    async def _run_iteration(self, ctx: IterationContext) -> RequestOutcome:
        plan = self.scenario.plan
        try:
            endpoint = plan.select(ctx.rng)
            if endpoint.before is not None:
                values = await self._prerequisite(
                    endpoint.before, plan.render(endpoint.before, ctx)
                )
                if isinstance(values, RequestOutcome):
                    return values
                ctx = replace(ctx, values=values)
            request = plan.render(endpoint, ctx)
        except Exception:
            logger.exception(
                "Scenario %s VU %d could not build request for iteration %d",
                self.scenario.name,
                self.vu_id,
                self.iterations,
            )
            return self._outcome(Verdict(Classification.UNEXPECTED_FAILURE), "unbuilt")
        return await self._dispatch(request)

    async def _send(self, request: PreparedRequest) -> Union[HttpResponse, RequestOutcome]:
        """Send one request; a failure to get a response comes back as an outcome."""
        rules = self.scenario.rules
        try:
            async with self.limiter.slot():
                return await self.client.send(
                    request.method, request.path, request.body, request.headers
                )
        except SurgeTransportError as exc:
            verdict = classify_transport_error(exc, rules)
            if verdict.classification is Classification.UNEXPECTED_FAILURE:
                logger.warning(
                    "Scenario %s VU %d %s %s transport %s: %s",
                    self.scenario.name,
                    self.vu_id,
                    request.method,
                    request.path,
                    exc.kind,
                    exc.message,
                )
            return self._outcome(verdict, request.endpoint, transport_error=exc.kind)
        except Exception as exc:
            logger.warning(
                "Scenario %s VU %d %s %s client error: %r",
                self.scenario.name,
                self.vu_id,
                request.method,
                request.path,
                exc,
            )
            return self._outcome(
                classify_transport_error(exc, rules),
                request.endpoint,
                transport_error="client",
            )

    async def _prerequisite(
        self, step: Prerequisite, request: PreparedRequest
    ) -> Union[Mapping[str, Any], RequestOutcome]:
        """Values for the measured request, or the outcome that ends the iteration."""
        response = await self._send(request)
        if isinstance(response, RequestOutcome):
            return response

        verdict = classify(response.status_code, response.raw_body, self.scenario.rules)
        if verdict.classification is Classification.SUCCESS:
            values = step.extract(response.raw_body)
            if values is not None:
                return values
            verdict = Verdict(
                Classification.PARSE_ERROR,
                decode_failure=DecodeFailure(
                    reason=f"no values in {step.name} response",
                    snippet=response.raw_body[:LOG_BODY_CHARS].decode("utf-8", errors="replace"),
                ),
            )
        self._log_verdict(verdict, request, response)
        return self._outcome(verdict, request.endpoint, raw_status=response.status_code)

    async def _dispatch(self, request: PreparedRequest) -> RequestOutcome:
        response = await self._send(request)
        if isinstance(response, RequestOutcome):
            return response

        verdict = classify(response.status_code, response.raw_body, self.scenario.rules)
        self._log_verdict(verdict, request, response)
        return self._outcome(
            verdict,
            request.endpoint,
            latency_ms=response.latency_ms,
            raw_status=response.status_code,
        )

    def _log_verdict(
        self, verdict: Verdict, request: PreparedRequest, response: HttpResponse
    ) -> None:
        if verdict.classification is Classification.PARSE_ERROR:
            failure = verdict.decode_failure or DecodeFailure(reason="unknown")
            logger.warning(
                "Scenario %s VU %d %s %s status %d undecodable body (%s): %s",
                self.scenario.name,
                self.vu_id,
                request.method,
                request.path,
                response.status_code,
                failure.reason,
                response.raw_body[:LOG_BODY_CHARS].decode("utf-8", errors="replace"),
            )
        elif verdict.classification is Classification.UNEXPECTED_FAILURE:
            logger.warning(
                "Scenario %s VU %d %s %s unexpected status %d: %s",
                self.scenario.name,
                self.vu_id,
                request.method,
                request.path,
                response.status_code,
                response.raw_body.decode("utf-8", errors="replace"),
            )

    def _outcome(
        self,
        verdict: Verdict,
        endpoint: str,
        *,
        latency_ms: Optional[float] = None,
        raw_status: Optional[int] = None,
        transport_error: Optional[str] = None,
    ) -> RequestOutcome:
        return RequestOutcome(
            classification=verdict.classification,
            latency_ms=latency_ms,
            raw_status=raw_status,
            scenario_tag=self.scenario.name,
            endpoint=endpoint,
            signature=verdict.signature,
            vu_id=self.vu_id,
            iteration=self.iterations,
            transport_error=transport_error,
        )
