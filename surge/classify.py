"""
Outcome classification: map a response to exactly one Classification.

Rules are scenario-specific. Each scenario declares an ordered list of
expected-failure signatures; the first signature that matches an error body
wins. Classification is total and deterministic and never raises: bodies
that cannot be decoded become parse errors.

Usage:
    from surge.classify import ClassificationRules, Signature, classify

    rules = ClassificationRules(signatures=[
        Signature("coupon_sold_out", code="COUPON_SOLD_OUT", message_contains="sold out"),
    ])
    verdict = classify(409, b'{"code": "COUPON_SOLD_OUT"}', rules)
    verdict.classification  # Classification.EXPECTED_BUSINESS_FAILURE
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from surge.exceptions import SurgeTransportError
from surge.models import Classification

SNIPPET_CHARS = 200


@dataclass(frozen=True)
class DecodedBody:
    """A structured (JSON object) response body."""

    data: Dict[str, Any]

    @property
    def code(self) -> Optional[str]:
        value = self.data.get("code")
        return value if isinstance(value, str) else None

    @property
    def message(self) -> Optional[str]:
        value = self.data.get("message")
        return value if isinstance(value, str) else None


@dataclass(frozen=True)
class DecodeFailure:
    """
    Why a body could not be decoded.

    Attributes:
        reason: Short description of the decode failure.
        snippet: Leading characters of the raw body for diagnosis.
    """

    reason: str
    snippet: str = ""


DecodeResult = Union[DecodedBody, DecodeFailure]


def _snippet(raw: bytes) -> str:
    return raw[:SNIPPET_CHARS].decode("utf-8", errors="replace")


def decode_body(raw: bytes) -> DecodeResult:
    """
    Decode a response body as a JSON object.

    Returns a DecodeFailure instead of raising; callers handle both variants.
    """
    if not raw:
        return DecodeFailure(reason="empty body")
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        return DecodeFailure(reason=f"invalid utf-8: {exc.reason}", snippet=_snippet(raw))
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        return DecodeFailure(reason=f"invalid json: {exc.msg}", snippet=_snippet(raw))
    if not isinstance(data, dict):
        return DecodeFailure(
            reason=f"expected a JSON object, got {type(data).__name__}",
            snippet=_snippet(raw),
        )
    return DecodedBody(data=data)


@dataclass(frozen=True)
class Signature:
    """
    One expected-failure signature.

    Matches when any declared predicate holds. All comparisons are
    case-sensitive.

    Attributes:
        label: Name recorded for matches (becomes the signature.<label> counter).
        code: Exact error code.
        code_contains: Substring of the error code.
        message_contains: Substring of the error message.
    """

    label: str
    code: Optional[str] = None
    code_contains: Optional[str] = None
    message_contains: Optional[str] = None

    def __post_init__(self) -> None:
        if not (self.code or self.code_contains or self.message_contains):
            raise ValueError(f"signature {self.label!r} declares no predicate")

    def matches(self, body: DecodedBody) -> bool:
        code = body.code
        message = body.message
        if self.code is not None and code == self.code:
            return True
        if self.code_contains is not None and code is not None and self.code_contains in code:
            return True
        if (
            self.message_contains is not None
            and message is not None
            and self.message_contains in message
        ):
            return True
        return False


@dataclass(frozen=True)
class ClassificationRules:
    """
    Scenario-specific classification rules.

    Attributes:
        signatures: Ordered signatures; first match wins.
        expected_statuses: Statuses eligible for expected business failures.
        timeouts_expected: Treat transport timeouts as expected contention.
    """

    signatures: Tuple[Signature, ...] = field(default_factory=tuple)
    expected_statuses: Tuple[int, ...] = (400, 409)
    timeouts_expected: bool = False

    def __post_init__(self) -> None:
        # Accept any iterable for convenience; store as tuples to stay hashable.
        object.__setattr__(self, "signatures", tuple(self.signatures))
        object.__setattr__(self, "expected_statuses", tuple(self.expected_statuses))

    def match(self, body: DecodedBody) -> Optional[Signature]:
        for signature in self.signatures:
            if signature.matches(body):
                return signature
        return None


NO_RULES = ClassificationRules()

TRANSPORT_TIMEOUT = "transport_timeout"


@dataclass(frozen=True)
class Verdict:
    """
    Classification result.

    Attributes:
        classification: One of the four classifications.
        signature: Label of the matched signature (expected failures only).
        decode_failure: Why the body failed to decode (parse errors only).
    """

    classification: Classification
    signature: Optional[str] = None
    decode_failure: Optional[DecodeFailure] = None


def is_success_status(status_code: int) -> bool:
    return 200 <= status_code < 300


def classify(
    status_code: int,
    raw_body: bytes,
    rules: ClassificationRules = NO_RULES,
) -> Verdict:
    """
    Classify one response.

    Order:
        1. 2xx -> success (body not decoded)
        2. undecodable body -> parse_error
        3. status in rules.expected_statuses and a signature matches
           -> expected_business_failure
        4. anything else -> unexpected_failure

    Args:
        status_code: HTTP status code.
        raw_body: Raw response bytes.
        rules: Scenario classification rules.

    Returns:
        Verdict with exactly one classification.
    """
    if is_success_status(status_code):
        return Verdict(Classification.SUCCESS)

    decoded = decode_body(raw_body)
    if isinstance(decoded, DecodeFailure):
        return Verdict(Classification.PARSE_ERROR, decode_failure=decoded)

    if status_code in rules.expected_statuses:
        signature = rules.match(decoded)
        if signature is not None:
            return Verdict(Classification.EXPECTED_BUSINESS_FAILURE, signature=signature.label)

    return Verdict(Classification.UNEXPECTED_FAILURE)


def classify_transport_error(
    error: Exception,
    rules: ClassificationRules = NO_RULES,
) -> Verdict:
    """
    Classify a request that never produced a response.

    Timeouts count as expected contention only when the scenario opts in.
    """
    if (
        rules.timeouts_expected
        and isinstance(error, SurgeTransportError)
        and error.is_timeout
    ):
        return Verdict(Classification.EXPECTED_BUSINESS_FAILURE, signature=TRANSPORT_TIMEOUT)
    return Verdict(Classification.UNEXPECTED_FAILURE)


# Signatures of the e-commerce target service's business rejections. The
# service answers with ResponseCode bodies ({"code": "COUPON_4005", ...})
# and Korean messages; placeholder codes are kept for other deployments.
COUPON_SOLD_OUT = Signature(
    "coupon_sold_out",
    code_contains="SOLD_OUT",
    message_contains="sold out",
)
COUPON_EXHAUSTED = Signature("coupon_sold_out", code_contains="EXHAUSTED", message_contains="소진")
COUPON_OUT_OF_STOCK = Signature("coupon_sold_out", code="COUPON_4005", message_contains="마감")
COUPON_ALREADY_ISSUED = Signature(
    "coupon_already_issued",
    code="COUPON_ALREADY_ISSUED",
    message_contains="already",
)
COUPON_DUPLICATE = Signature(
    "coupon_already_issued",
    code="COUPON_4003",
    message_contains="이미 발급",
)
STOCK_INSUFFICIENT = Signature(
    "stock_insufficient",
    code="STOCK_INSUFFICIENT",
    code_contains="STOCK",
    message_contains="stock",
)
PRODUCT_OUT_OF_STOCK = Signature(
    "stock_insufficient",
    code="PRODUCT_2002",
    message_contains="재고",
)
LOCK_CONTENTION = Signature(
    "lock_contention",
    code_contains="LOCK",
    message_contains="lock",
)
LOCK_TIMEOUT = Signature(
    "lock_timeout",
    code_contains="TIMEOUT",
    message_contains="timeout",
)
POINT_REJECTED = Signature("point_rejected", code_contains="POINT")
COUPON_REJECTED = Signature("coupon_rejected", code_contains="COUPON")
