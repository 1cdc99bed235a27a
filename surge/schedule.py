"""
Ramp schedules: how many virtual users a scenario wants at elapsed time t.

Three executors, named after their k6 counterparts:
- RampingVUs: piecewise-linear stages over cumulative durations
- ConstantVUs: a fixed VU count for a fixed duration
- PerVUIterations: a fixed VU count, each running a fixed number of
  iterations, bounded by a safety cutoff

Schedules are immutable. Times are seconds since the scenario started;
durations accept numbers or k6-style strings ("30s", "1m30s", "250ms").
"""

from __future__ import annotations

import math
import re
from typing import Any, List, Literal, Optional, Protocol, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from surge.exceptions import SurgeConfigError

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Convert a duration to seconds.

    Args:
        value: Seconds as a number, or a string such as "90s", "1m30s",
            "250ms", "2h". A bare numeric string is read as seconds.

    Returns:
        Duration in seconds.

    Raises:
        SurgeConfigError: If the value is negative or not a duration.
    """
    if isinstance(value, bool):
        raise SurgeConfigError("Invalid duration", details={"value": value})
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = value.strip().replace(" ", "")
        try:
            seconds = float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for match in _DURATION_PART.finditer(text):
                if match.start() != pos:
                    break
                seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
                pos = match.end()
            if pos == 0 or pos != len(text):
                raise SurgeConfigError(
                    f"Invalid duration: {value!r}", details={"value": value}
                ) from None
    if seconds < 0 or math.isnan(seconds):
        raise SurgeConfigError("Duration must be non-negative", details={"value": value})
    return seconds


def _duration_field(value: Any) -> Any:
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        try:
            return parse_duration(value)
        except SurgeConfigError as exc:
            raise ValueError(exc.message) from exc
    return value


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class RampSchedule(Protocol):
    """Common interface of every executor."""

    executor: str

    def target_vus(self, elapsed: float) -> int: ...

    def is_finished(self, elapsed: float) -> bool: ...

    @property
    def max_vus(self) -> int: ...

    @property
    def duration(self) -> float: ...

    @property
    def iterations_per_vu(self) -> Optional[int]: ...


class Stage(BaseModel):
    """
    One ramp stage: move linearly to `target` VUs over `duration` seconds.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    duration: float = Field(..., ge=0)
    target: int = Field(..., ge=0)

    _parse_duration = field_validator("duration", mode="before")(_duration_field)


class RampingVUs(BaseModel):
    """
    Piecewise-linear VU ramp.

    Stage i spans [t_i, t_{i+1}) where t_0 = 0 and t_{i+1} = t_i + duration_i.
    Its boundary values are v_i (previous stage's target, start_vus for the
    first stage) and v_{i+1} = target_i. Inside the stage:

        target(t) = v_i + (v_{i+1} - v_i) * (t - t_i) / (t_{i+1} - t_i)

    rounded half-up and clamped at zero. A zero-duration stage is an
    instantaneous jump. After the last boundary the target is the final
    stage's target and the scenario is finished.

    Example:
        RampingVUs(stages=[
            Stage(duration="10s", target=5000),
            Stage(duration="20s", target=10000),
            Stage(duration="60s", target=10000),
            Stage(duration="30s", target=0),
        ])
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    executor: Literal["ramping-vus"] = "ramping-vus"
    stages: List[Stage] = Field(..., min_length=1)
    start_vus: int = Field(default=0, ge=0)

    def boundaries(self) -> List[Tuple[float, int]]:
        """(t_i, v_i) pairs, starting with (0, start_vus)."""
        points = [(0.0, self.start_vus)]
        t = 0.0
        for stage in self.stages:
            t += stage.duration
            points.append((t, stage.target))
        return points

    def target_vus(self, elapsed: float) -> int:
        if elapsed < 0:
            return self.start_vus
        t_start = 0.0
        v_start = self.start_vus
        for stage in self.stages:
            t_end = t_start + stage.duration
            if elapsed < t_end:
                fraction = (elapsed - t_start) / (t_end - t_start)
                value = v_start + (stage.target - v_start) * fraction
                return max(0, _round_half_up(value))
            t_start = t_end
            v_start = stage.target
        return v_start

    def is_finished(self, elapsed: float) -> bool:
        return elapsed >= self.duration

    @property
    def max_vus(self) -> int:
        return max([self.start_vus] + [s.target for s in self.stages])

    @property
    def duration(self) -> float:
        return math.fsum(s.duration for s in self.stages)

    @property
    def iterations_per_vu(self) -> Optional[int]:
        return None


class ConstantVUs(BaseModel):
    """A fixed number of VUs looping until `duration` elapses."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    executor: Literal["constant-vus"] = "constant-vus"
    vus: int = Field(..., ge=0)
    duration_s: float = Field(..., ge=0, alias="duration")

    _parse_duration = field_validator("duration_s", mode="before")(_duration_field)

    def target_vus(self, elapsed: float) -> int:
        return self.vus if elapsed < self.duration_s else 0

    def is_finished(self, elapsed: float) -> bool:
        return elapsed >= self.duration_s

    @property
    def max_vus(self) -> int:
        return self.vus

    @property
    def duration(self) -> float:
        return self.duration_s

    @property
    def iterations_per_vu(self) -> Optional[int]:
        return None


class PerVUIterations(BaseModel):
    """
    `vus` VUs each run exactly `iterations` iterations.

    `max_duration` is a safety cutoff: if it elapses first the scenario
    stops early and is reported as incomplete (not as an error).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    executor: Literal["per-vu-iterations"] = "per-vu-iterations"
    vus: int = Field(..., ge=0)
    iterations: int = Field(..., ge=0)
    max_duration: float = Field(default=600.0, gt=0)

    _parse_duration = field_validator("max_duration", mode="before")(_duration_field)

    def target_vus(self, elapsed: float) -> int:
        return self.vus if elapsed < self.max_duration else 0

    def is_finished(self, elapsed: float) -> bool:
        return elapsed >= self.max_duration

    @property
    def max_vus(self) -> int:
        return self.vus

    @property
    def duration(self) -> float:
        return self.max_duration

    @property
    def iterations_per_vu(self) -> Optional[int]:
        return self.iterations

    @property
    def total_iterations(self) -> int:
        return self.vus * self.iterations


def ramping(*stages: Tuple[Union[str, float], int], start_vus: int = 0) -> RampingVUs:
    """Convenience: ramping(("10s", 50), ("30s", 100), ("10s", 0))."""
    return RampingVUs(
        stages=[Stage(duration=d, target=t) for d, t in stages],
        start_vus=start_vus,
    )


def constant(vus: int, duration: Union[str, float]) -> ConstantVUs:
    """Convenience: constant(30, "2m")."""
    return ConstantVUs(vus=vus, duration=duration)


def per_vu_iterations(
    vus: int, iterations: int, max_duration: Union[str, float] = 600.0
) -> PerVUIterations:
    """Convenience: per_vu_iterations(100, 10, max_duration="5m")."""
    return PerVUIterations(vus=vus, iterations=iterations, max_duration=max_duration)
