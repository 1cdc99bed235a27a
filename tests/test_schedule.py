"""Tests for ramp schedules and duration parsing."""

import pytest
from pydantic import ValidationError

from surge.exceptions import SurgeConfigError
from surge.schedule import (
    ConstantVUs,
    PerVUIterations,
    RampingVUs,
    Stage,
    constant,
    parse_duration,
    per_vu_iterations,
    ramping,
)


class TestParseDuration:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (30, 30.0),
            (1.5, 1.5),
            ("30s", 30.0),
            ("2m", 120.0),
            ("1m30s", 90.0),
            ("250ms", 0.25),
            ("2h", 7200.0),
            ("45", 45.0),
            (" 10s ", 10.0),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_duration(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", ["", "abc", "10x", "s10", "-5s", -1, True])
    def test_invalid(self, value):
        with pytest.raises(SurgeConfigError):
            parse_duration(value)


class TestStage:
    def test_parses_duration_strings(self):
        assert Stage(duration="1m", target=10).duration == 60.0

    def test_negative_target(self):
        with pytest.raises(ValidationError):
            Stage(duration=10, target=-1)

    def test_negative_duration(self):
        with pytest.raises(ValidationError):
            Stage(duration=-10, target=1)

    def test_bad_duration_string(self):
        with pytest.raises(ValidationError):
            Stage(duration="soon", target=1)


class TestRampingVUs:
    def test_linear_ramp(self):
        schedule = ramping((10, 100))
        assert schedule.target_vus(0) == 0
        assert schedule.target_vus(5) == 50
        assert schedule.target_vus(9.99) == 100
        assert schedule.target_vus(10) == 100

    def test_boundaries(self):
        schedule = ramping((10, 5000), (20, 10000), (60, 10000), (30, 0))
        assert schedule.boundaries() == [
            (0.0, 0),
            (10.0, 5000),
            (30.0, 10000),
            (90.0, 10000),
            (120.0, 0),
        ]
        assert schedule.duration == 120.0
        assert schedule.max_vus == 10000

    def test_values_at_stage_boundaries(self):
        schedule = ramping((10, 5000), (20, 10000), (60, 10000), (30, 0))
        assert schedule.target_vus(10) == 5000
        assert schedule.target_vus(20) == 7500
        assert schedule.target_vus(60) == 10000
        assert schedule.target_vus(105) == 5000
        assert schedule.target_vus(120) == 0

    def test_rounds_half_up(self):
        schedule = ramping((4, 1))
        # 1 * 2/4 = 0.5 -> 1
        assert schedule.target_vus(2) == 1
        # 1 * 1/4 = 0.25 -> 0
        assert schedule.target_vus(1) == 0

    def test_ramp_down_rounds_half_up(self):
        schedule = ramping((1, 3), (2, 0))
        # 3 - 3 * 1/2 = 1.5 -> 2
        assert schedule.target_vus(2) == 2

    def test_zero_duration_stage_jumps(self):
        schedule = ramping((10, 10), (0, 50), (10, 50))
        assert schedule.target_vus(9.999) == 10
        assert schedule.target_vus(10) == 50
        assert schedule.target_vus(15) == 50

    def test_start_vus(self):
        schedule = ramping((10, 20), start_vus=10)
        assert schedule.target_vus(0) == 10
        assert schedule.target_vus(5) == 15

    def test_finished_after_last_boundary(self):
        schedule = ramping((5, 10), (5, 0))
        assert not schedule.is_finished(9.9)
        assert schedule.is_finished(10)
        assert schedule.target_vus(100) == 0

    def test_needs_a_stage(self):
        with pytest.raises(ValidationError):
            RampingVUs(stages=[])

    def test_duration_strings(self):
        schedule = ramping(("10s", 5), ("1m", 5))
        assert schedule.duration == 70.0
        assert schedule.executor == "ramping-vus"
        assert schedule.iterations_per_vu is None


class TestConstantVUs:
    def test_target(self):
        schedule = constant(30, "2m")
        assert isinstance(schedule, ConstantVUs)
        assert schedule.target_vus(0) == 30
        assert schedule.target_vus(119) == 30
        assert schedule.target_vus(120) == 0
        assert schedule.is_finished(120)
        assert schedule.duration == 120.0
        assert schedule.max_vus == 30
        assert schedule.executor == "constant-vus"

    def test_negative_vus(self):
        with pytest.raises(ValidationError):
            ConstantVUs(vus=-1, duration=10)


class TestPerVUIterations:
    def test_shape(self):
        schedule = per_vu_iterations(5, 3, max_duration="5m")
        assert isinstance(schedule, PerVUIterations)
        assert schedule.total_iterations == 15
        assert schedule.iterations_per_vu == 3
        assert schedule.duration == 300.0
        assert schedule.target_vus(0) == 5
        assert schedule.executor == "per-vu-iterations"

    def test_default_cutoff(self):
        assert PerVUIterations(vus=1, iterations=1).max_duration == 600.0

    def test_cutoff_must_be_positive(self):
        with pytest.raises(ValidationError):
            PerVUIterations(vus=1, iterations=1, max_duration=0)
