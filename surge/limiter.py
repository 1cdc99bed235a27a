"""
In-flight request limiter.

Virtual users are cheap coroutines; sockets and file descriptors are not.
The limiter caps how many requests are dispatched at once across every
scenario of a run. The VU count may exceed the cap: extra VUs wait for a
slot before sending, and that wait is not part of the measured latency.

Usage:
    limiter = InFlightLimiter(max_in_flight=512)
    async with limiter.slot():
        response = await client.send(...)
"""

from __future__ import annotations

import asyncio
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional


@dataclass
class LimiterStats:
    """Snapshot of limiter state."""

    max_in_flight: Optional[int]
    active: int
    waiting: int
    peak_active: int
    total_acquired: int


class InFlightLimiter:
    """
    Async concurrency limiter with stats.

    max_in_flight=None disables the cap but still tracks stats.

    The semaphore is created lazily on first use so the limiter can be
    constructed outside the event loop that will run it.
    """

    def __init__(self, max_in_flight: Optional[int] = None) -> None:
        if max_in_flight is not None and max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        self._max_in_flight = max_in_flight
        self._semaphore: Optional[asyncio.Semaphore] = None

        self._stats_lock = threading.Lock()
        self._active = 0
        self._waiting = 0
        self._peak_active = 0
        self._total_acquired = 0

    def _get_semaphore(self) -> Optional[asyncio.Semaphore]:
        if self._max_in_flight is None:
            return None
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._max_in_flight)
        return self._semaphore

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one in-flight slot for the duration of the block."""
        sem = self._get_semaphore()

        with self._stats_lock:
            self._waiting += 1
        try:
            if sem is not None:
                await sem.acquire()
        finally:
            with self._stats_lock:
                self._waiting -= 1

        with self._stats_lock:
            self._active += 1
            self._total_acquired += 1
            self._peak_active = max(self._peak_active, self._active)
        try:
            yield
        finally:
            if sem is not None:
                sem.release()
            with self._stats_lock:
                self._active -= 1

    def stats(self) -> LimiterStats:
        """Current limiter state for monitoring."""
        with self._stats_lock:
            return LimiterStats(
                max_in_flight=self._max_in_flight,
                active=self._active,
                waiting=self._waiting,
                peak_active=self._peak_active,
                total_acquired=self._total_acquired,
            )

    @property
    def max_in_flight(self) -> Optional[int]:
        return self._max_in_flight
