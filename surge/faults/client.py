"""
FaultInjectingClient: an HttpClient decorator for harness self-tests.
"""

from __future__ import annotations

import asyncio
import collections
import random
from dataclasses import replace
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from surge.faults.profile import FaultProfile, FaultRule, RequestInfo
from surge.transport import HttpClient, HttpResponse


class FaultInjectingClient:
    """
    Consult a fault profile before forwarding each request.

    Delays are awaited, so other virtual users keep running meanwhile.
    Errors are raised as if the transport had failed. Status faults are
    answered locally and never reach the wrapped client.

    Example:
        client = FaultInjectingClient(fake_service, [rules.fail(0.1, rules.timeout_error)], seed=7)
    """

    def __init__(
        self,
        inner: HttpClient,
        profile: Union[FaultProfile, Iterable[FaultRule]],
        *,
        seed: int = 0,
    ) -> None:
        self._inner = inner
        self.profile = profile if isinstance(profile, FaultProfile) else FaultProfile.of(profile)
        self._rng = random.Random(seed)
        self._calls = 0
        self._injected: Dict[str, int] = collections.Counter()

    async def send(
        self,
        method: str,
        url: str,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> HttpResponse:
        # Decided before the first await, so call indices follow dispatch order.
        self._calls += 1
        fault = self.profile.decide(RequestInfo(self._calls, method, url, self._rng))
        if fault is None:
            return await self._inner.send(method, url, body, headers)

        if fault.delay_seconds > 0:
            self._injected["delay"] += 1
            await asyncio.sleep(fault.delay_seconds)
        if fault.error is not None:
            self._injected["error"] += 1
            raise fault.error

        extra_ms = fault.delay_seconds * 1000.0
        if fault.status is not None:
            self._injected["status"] += 1
            return HttpResponse(status_code=fault.status, raw_body=fault.body, latency_ms=extra_ms)
        response = await self._inner.send(method, url, body, headers)
        return replace(response, latency_ms=response.latency_ms + extra_ms)

    @property
    def call_count(self) -> int:
        return self._calls

    def injected(self) -> Dict[str, int]:
        """Injected faults by kind: delay, error, status."""
        return {kind: self._injected[kind] for kind in ("delay", "error", "status")}
