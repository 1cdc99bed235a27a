"""
Harness configuration from environment variables.

Usage:
    from surge.config import get_settings

    settings = get_settings()
    print(settings.base_url, settings.request_timeout)

Per-scenario overrides use the scenario name upper-cased:
    SURGE_COUPON_RUSH_VUS=2000 SURGE_COUPON_RUSH_DURATION=2m surge run coupon
"""

from functools import lru_cache
from typing import Optional, Union
import os
import re

from surge.exceptions import SurgeConfigError
from surge.schedule import parse_duration


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise SurgeConfigError(
            f"{name} must be an integer", details={"variable": name, "value": raw}
        ) from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise SurgeConfigError(
            f"{name} must be a number", details={"variable": name, "value": raw}
        ) from None


def _env_key(scenario: str) -> str:
    return re.sub(r"[^A-Za-z0-9]+", "_", scenario).upper()


class Settings:
    """Harness configuration loaded from environment variables."""

    def __init__(self) -> None:
        # Target service
        self.base_url: str = os.getenv("SURGE_BASE_URL", "http://localhost:8081").rstrip("/")
        self.coupon_id: int = _env_int("SURGE_COUPON_ID", 1)
        self.product_id: int = _env_int("SURGE_PRODUCT_ID", 1)

        # Workload sizing; None means the scenario's own default
        self.max_users: Optional[int] = _env_int("SURGE_MAX_USERS", None)
        self.user_count: int = _env_int("SURGE_USER_COUNT", 100)
        self.charge_amount: int = _env_int("SURGE_CHARGE_AMOUNT", 1000)
        self.charges_per_user: int = _env_int("SURGE_CHARGES_PER_USER", 10)

        # Transport and scheduling
        self.request_timeout: float = _env_float("SURGE_REQUEST_TIMEOUT", 30.0)
        self.max_in_flight: Optional[int] = _env_int("SURGE_MAX_IN_FLIGHT", None)
        self.tick: float = _env_float("SURGE_TICK", 0.1)

        # Output
        self.results_dir: str = os.getenv("SURGE_RESULTS_DIR", "results")
        self.log_level: str = os.getenv("SURGE_LOG_LEVEL", "INFO").upper()

        if self.request_timeout <= 0:
            raise SurgeConfigError("SURGE_REQUEST_TIMEOUT must be positive")
        if self.tick <= 0:
            raise SurgeConfigError("SURGE_TICK must be positive")
        if self.max_in_flight is not None and self.max_in_flight < 1:
            raise SurgeConfigError("SURGE_MAX_IN_FLIGHT must be >= 1")

    def users(self, default: int) -> int:
        """SURGE_MAX_USERS, or the scenario's default subject-id range."""
        return self.max_users if self.max_users is not None else default

    def scenario_vus(self, scenario: str, default: int) -> int:
        """SURGE_<SCENARIO>_VUS override for a scenario's VU count or peak."""
        value = _env_int(f"SURGE_{_env_key(scenario)}_VUS", default)
        if value < 0:
            raise SurgeConfigError(f"VU override for {scenario} must be >= 0")
        return value

    def scenario_duration(self, scenario: str, default: Union[str, float]) -> float:
        """SURGE_<SCENARIO>_DURATION override, as seconds."""
        raw = os.getenv(f"SURGE_{_env_key(scenario)}_DURATION")
        if raw is None or raw.strip() == "":
            return parse_duration(default)
        return parse_duration(raw)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def reset_settings() -> None:
    """Clear settings cache. For testing only."""
    get_settings.cache_clear()
