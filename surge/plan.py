"""
Request plans: what a virtual user sends on each iteration.

A RequestPlan holds one or more weighted endpoints and a think-time. On each
iteration the plan draws one endpoint by weight and renders its path and
body against the iteration context (VU id, iteration index, shared run
state, per-VU random generator). An endpoint may name a Prerequisite whose
response supplies `ctx.values` for the measured request.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Sequence, TypeVar, Union


@dataclass(frozen=True)
class IterationContext:
    """
    Context for building one request.

    Attributes:
        vu_id: 1-based virtual user id (stable for the VU's lifetime).
        iteration: 0-based iteration index within this VU.
        scenario: Scenario name.
        shared: Read-only view of run-wide state seeded by setup().
        rng: Per-VU random generator.
        values: Values extracted from this iteration's prerequisite response
            (empty when the endpoint has none).
    """

    vu_id: int
    iteration: int
    scenario: str
    shared: Mapping[str, Any]
    rng: random.Random
    values: Mapping[str, Any] = field(default_factory=dict)


Renderable = Union[Any, Callable[[IterationContext], Any]]


class Weighted(Protocol):
    @property
    def weight(self) -> float: ...


_W = TypeVar("_W", bound=Weighted)


def select_weighted(candidates: Sequence[_W], rng: random.Random) -> _W:
    """
    Pick one candidate with probability weight / total_weight.

    Draws uniformly in [0, total), walks the candidates accumulating weight
    and returns the first whose cumulative weight exceeds the draw. When
    float rounding leaves the draw past every cumulative value, the last
    candidate is returned.

    Raises:
        ValueError: If there are no candidates or the total weight is not
            positive.
    """
    if not candidates:
        raise ValueError("cannot select from an empty candidate list")
    total = 0.0
    for candidate in candidates:
        if candidate.weight < 0:
            raise ValueError(f"negative weight: {candidate.weight}")
        total += candidate.weight
    if total <= 0:
        raise ValueError("total weight must be positive")

    draw = rng.random() * total
    cumulative = 0.0
    for candidate in candidates:
        cumulative += candidate.weight
        if cumulative > draw:
            return candidate
    return candidates[-1]


def _render(value: Renderable, ctx: IterationContext) -> Any:
    if callable(value):
        return value(ctx)
    return value


@dataclass(frozen=True)
class Prerequisite:
    """
    An unmeasured request that must succeed before the measured one.

    Used when every iteration needs a fresh resource, such as creating the
    order the iteration then pays. Its latency is not recorded. When it
    fails, its classified outcome is recorded in place of the measured
    request and the iteration ends there.

    Attributes:
        name: Endpoint label recorded when the prerequisite fails.
        method: HTTP method.
        path: Path or callable(ctx) -> path.
        extract: callable(raw_body) -> values for the measured request, or
            None when the response lacks them.
        body: JSON body or callable(ctx) -> body.
        headers: Extra headers.
    """

    name: str
    method: str
    path: Renderable
    extract: Callable[[bytes], Optional[Mapping[str, Any]]]
    body: Renderable = None
    headers: Optional[Dict[str, str]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())


@dataclass(frozen=True)
class Endpoint:
    """
    One weighted request variant.

    Attributes:
        name: Low-cardinality label used for per-endpoint latency.
        method: HTTP method.
        path: Path (appended to the client base URL) or callable(ctx) -> path.
        weight: Relative selection weight.
        body: JSON body or callable(ctx) -> body. None sends no body.
        headers: Extra headers.
        before: Prerequisite request run first in the same iteration.
    """

    name: str
    method: str
    path: Renderable
    weight: float = 1.0
    body: Renderable = None
    headers: Optional[Dict[str, str]] = None
    before: Optional[Prerequisite] = None

    def __post_init__(self) -> None:
        if self.weight < 0:
            raise ValueError(f"endpoint {self.name!r} has negative weight")
        object.__setattr__(self, "method", self.method.upper())


@dataclass(frozen=True)
class PreparedRequest:
    """A rendered request ready for dispatch."""

    endpoint: str
    method: str
    path: str
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ThinkTime:
    """
    Delay between a VU's iterations: fixed + uniform(0, jitter) seconds.

    Example:
        ThinkTime(0.1, 0.2)  # 100-300 ms, like sleep(0.1 + Math.random() * 0.2)
    """

    fixed: float = 0.0
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.fixed < 0 or self.jitter < 0:
            raise ValueError("think time must be non-negative")

    @classmethod
    def none(cls) -> "ThinkTime":
        return cls(0.0, 0.0)

    def sample(self, rng: random.Random) -> float:
        if self.jitter == 0:
            return self.fixed
        return self.fixed + rng.uniform(0.0, self.jitter)


DEFAULT_HEADERS = {"Content-Type": "application/json"}


class RequestPlan:
    """
    The unit of work a VU repeats.

    Example:
        plan = RequestPlan(
            [
                Endpoint("product_list", "GET", "/api/products", weight=40),
                Endpoint("product_1", "GET", "/api/products/1", weight=30),
            ],
            think_time=ThinkTime(0.1, 0.2),
        )
    """

    def __init__(
        self,
        endpoints: Sequence[Endpoint],
        *,
        think_time: ThinkTime = ThinkTime(),
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        if not endpoints:
            raise ValueError("a request plan needs at least one endpoint")
        if sum(e.weight for e in endpoints) <= 0:
            raise ValueError("a request plan needs a positive total weight")
        self.endpoints = tuple(endpoints)
        self.think_time = think_time
        self.headers = dict(DEFAULT_HEADERS if headers is None else headers)

    @classmethod
    def single(
        cls,
        name: str,
        method: str,
        path: Renderable,
        *,
        body: Renderable = None,
        before: Optional[Prerequisite] = None,
        think_time: ThinkTime = ThinkTime(),
    ) -> "RequestPlan":
        return cls([Endpoint(name, method, path, body=body, before=before)], think_time=think_time)

    def select(self, rng: random.Random) -> Endpoint:
        if len(self.endpoints) == 1:
            return self.endpoints[0]
        return select_weighted(self.endpoints, rng)

    def render(
        self, step: Union[Endpoint, Prerequisite], ctx: IterationContext
    ) -> PreparedRequest:
        headers = dict(self.headers)
        if step.headers:
            headers.update(step.headers)
        return PreparedRequest(
            endpoint=step.name,
            method=step.method,
            path=str(_render(step.path, ctx)),
            body=_render(step.body, ctx),
            headers=headers,
        )

    def build(self, ctx: IterationContext) -> PreparedRequest:
        """Select an endpoint and render it, ignoring any prerequisite."""
        return self.render(self.select(ctx.rng), ctx)
