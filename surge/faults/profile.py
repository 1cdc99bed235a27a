"""
Fault profiles: what a wrapped client should do to one request.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol


@dataclass(frozen=True)
class RequestInfo:
    """
    One request passing through a FaultInjectingClient.

    Attributes:
        call_index: 1-based position of the request among all calls the
            client has seen.
        method: HTTP method.
        url: Request path (or URL).
        rng: The client's seeded generator; rules draw from it so a profile
            replays identically for the same seed and call order.
    """

    call_index: int
    method: str
    url: str
    rng: random.Random


@dataclass(frozen=True)
class Fault:
    """
    Delay, fail or answer a request instead of (or before) forwarding it.

    A fault with only a delay forwards the request afterwards and adds the
    delay to the measured latency. `error` wins over `status`.
    """

    delay_seconds: float = 0.0
    error: Optional[Exception] = None
    status: Optional[int] = None
    body: bytes = b""


class FaultRule(Protocol):
    def maybe_fault(self, request: RequestInfo) -> Optional[Fault]: ...


@dataclass
class FaultProfile:
    """
    Ordered fault rules under a name; the first rule returning a fault wins.

    Example:
        flaky = FaultProfile("flaky", [rules.on_calls({3}), rules.respond(0.05, 502)])
        slow = FaultProfile("slow", [rules.slow(0.2, 0.1)])
        combined = flaky + slow
    """

    name: str
    rules: List[FaultRule] = field(default_factory=list)

    @classmethod
    def of(cls, rules: Iterable[FaultRule], name: str = "custom") -> "FaultProfile":
        return cls(name, list(rules))

    def decide(self, request: RequestInfo) -> Optional[Fault]:
        return next(
            (fault for fault in (r.maybe_fault(request) for r in self.rules) if fault is not None),
            None,
        )

    def __add__(self, other: "FaultProfile") -> "FaultProfile":
        return FaultProfile(f"{self.name}+{other.name}", [*self.rules, *other.rules])
