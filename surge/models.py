from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Classification(str, Enum):
    """
    Canonical per-request classifications.

    Every response (or failed dispatch) maps to exactly one of these.
    Expected business failures are correct domain behavior of the target
    service (sold out, duplicate issue, stock insufficient, lock contention)
    and are not counted as failures of the system under test.
    """

    SUCCESS = "success"
    EXPECTED_BUSINESS_FAILURE = "expected_business_failure"
    UNEXPECTED_FAILURE = "unexpected_failure"
    PARSE_ERROR = "parse_error"


class ScenarioStatus(str, Enum):
    """Terminal state of a scenario within one run."""

    COMPLETED = "completed"
    # per-vu-iterations safety cutoff hit before every VU finished its quota
    INCOMPLETE = "incomplete"
    # run budget expired while the scenario was still active
    INTERRUPTED = "interrupted"
    # run budget expired before the scenario's start offset
    NOT_STARTED = "not_started"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RequestOutcome(BaseModel):
    """
    One classified request.

    Produced once per request by a virtual user and consumed exactly once by
    the scenario's MetricSet; never retained afterwards.

    Attributes:
        classification: Result of the outcome classifier.
        latency_ms: Wall-clock latency, None when the request never completed.
        raw_status: HTTP status, None on transport failure.
        scenario_tag: Name of the scenario that issued the request.
        endpoint: Logical endpoint name from the request plan.
        signature: Label of the matched expected-failure signature, if any.
        vu_id: Virtual user that issued the request.
        iteration: Iteration index within that virtual user.
        transport_error: Kind of transport failure ("timeout", ...), if any.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    classification: Classification
    latency_ms: Optional[float] = Field(default=None, ge=0)
    raw_status: Optional[int] = None
    scenario_tag: str
    endpoint: str = "default"
    signature: Optional[str] = None
    vu_id: int = Field(default=0, ge=0)
    iteration: int = Field(default=0, ge=0)
    transport_error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.classification is Classification.SUCCESS

    @property
    def is_acceptable(self) -> bool:
        """Success or an expected business failure."""
        return self.classification in (
            Classification.SUCCESS,
            Classification.EXPECTED_BUSINESS_FAILURE,
        )
