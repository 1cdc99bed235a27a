"""
Fault rules for harness self-tests.

Each rule decides per request; builders at the bottom are the intended API:

    rules.on_calls({2, 4})                     # 2nd and 4th request time out
    rules.outage(start=10, length=5)           # requests 10-14 are refused
    rules.respond(0.05, 502, b"<html>...")     # 5% get a gateway error page
    rules.slow(0.3, 0.2)                       # 30% take 200 ms longer
    rules.only_paths("/api/coupons", rules.fail(1.0))
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, FrozenSet, Iterable, Optional

from surge.exceptions import SurgeTransportError
from surge.faults.profile import Fault, FaultRule, RequestInfo

ErrorFactory = Callable[[], Exception]


def timeout_error(message: str = "Request timed out (injected)") -> SurgeTransportError:
    return SurgeTransportError(message, kind="timeout")


def connection_error(message: str = "Connection refused (injected)") -> SurgeTransportError:
    return SurgeTransportError(message, kind="connection")


@dataclass(frozen=True)
class FaultTemplate:
    """Builds a fresh Fault per request so raised errors are never shared."""

    delay_seconds: float = 0.0
    error: Optional[ErrorFactory] = None
    status: Optional[int] = None
    body: bytes = b""

    def build(self) -> Fault:
        return Fault(
            delay_seconds=self.delay_seconds,
            error=self.error() if self.error is not None else None,
            status=self.status,
            body=self.body,
        )


@dataclass(frozen=True)
class Chance:
    """Inject `template` with probability p, drawn from the client's rng."""

    p: float
    template: FaultTemplate

    def __post_init__(self) -> None:
        if not 0.0 <= self.p <= 1.0:
            raise ValueError(f"probability must be within [0, 1], got {self.p}")

    def maybe_fault(self, request: RequestInfo) -> Optional[Fault]:
        if request.rng.random() < self.p:
            return self.template.build()
        return None


@dataclass(frozen=True)
class OnCalls:
    """Inject at fixed call indices (deterministic)."""

    indices: FrozenSet[int]
    template: FaultTemplate

    def maybe_fault(self, request: RequestInfo) -> Optional[Fault]:
        if request.call_index in self.indices:
            return self.template.build()
        return None


@dataclass(frozen=True)
class Window:
    """Inject for calls start .. start + length - 1, e.g. a target outage."""

    start: int
    length: int
    template: FaultTemplate

    def maybe_fault(self, request: RequestInfo) -> Optional[Fault]:
        if self.start <= request.call_index < self.start + self.length:
            return self.template.build()
        return None


@dataclass(frozen=True)
class PathPrefix:
    """Apply `rule` only to requests whose path starts with `prefix`."""

    prefix: str
    rule: FaultRule

    def maybe_fault(self, request: RequestInfo) -> Optional[Fault]:
        if not request.url.startswith(self.prefix):
            return None
        return self.rule.maybe_fault(request)


def slow(p: float, delay_seconds: float) -> Chance:
    return Chance(p, FaultTemplate(delay_seconds=delay_seconds))


def fail(p: float, error: ErrorFactory = connection_error, *, delay_seconds: float = 0.0) -> Chance:
    """Raise a transport error with probability p, optionally after a delay."""
    return Chance(p, FaultTemplate(delay_seconds=delay_seconds, error=error))


def respond(p: float, status: int, body: bytes = b"") -> Chance:
    return Chance(p, FaultTemplate(status=status, body=body))


def on_calls(indices: Iterable[int], error: ErrorFactory = timeout_error) -> OnCalls:
    return OnCalls(frozenset(indices), FaultTemplate(error=error))


def respond_on_calls(indices: Iterable[int], status: int, body: bytes = b"") -> OnCalls:
    return OnCalls(frozenset(indices), FaultTemplate(status=status, body=body))


def outage(start: int, length: int, error: ErrorFactory = connection_error) -> Window:
    return Window(start, length, FaultTemplate(error=error))


def only_paths(prefix: str, rule: FaultRule) -> PathPrefix:
    return PathPrefix(prefix, rule)
