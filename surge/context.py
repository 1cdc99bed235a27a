"""
RunContext: everything scoped to one run.

A fresh context is created per RunCoordinator.run() call, so several runs
in one process never share metrics or state.
"""

from __future__ import annotations

import asyncio
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence
from uuid import uuid4

from surge.metrics import MetricSet
from surge.scenario import Scenario
from surge.transport import HttpClient


class RunContext:
    """
    Per-run state.

    Attributes:
        run_id: Unique id of this run.
        client: Shared HTTP client (also available to setup/teardown).
        shared: Run-wide state. Writable by setup(); virtual users see a
            read-only view.
        metrics: Scenario name -> MetricSet.
    """

    def __init__(
        self,
        client: HttpClient,
        scenarios: Sequence[Scenario],
        *,
        run_id: Optional[str] = None,
    ) -> None:
        self.run_id = run_id or uuid4().hex
        self.client = client
        self.shared: Dict[str, Any] = {}
        self.metrics: Dict[str, MetricSet] = {
            s.name: MetricSet(s.name, cache_hit_threshold_ms=s.cache_hit_threshold_ms)
            for s in scenarios
        }
        self._stop: Optional[asyncio.Event] = None

    @property
    def shared_view(self) -> Mapping[str, Any]:
        return MappingProxyType(self.shared)

    @property
    def stop_event(self) -> asyncio.Event:
        # Created lazily inside the running loop.
        if self._stop is None:
            self._stop = asyncio.Event()
        return self._stop

    @property
    def stopping(self) -> bool:
        return self._stop is not None and self._stop.is_set()

    def request_stop(self) -> None:
        self.stop_event.set()

    def freeze(self) -> None:
        for metric_set in self.metrics.values():
            metric_set.freeze()
