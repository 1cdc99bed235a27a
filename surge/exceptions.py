"""
Typed exceptions for surge.

Provides structured error handling with:
- SurgeError: Base exception for all surge errors
- SurgeConfigError: Invalid schedules, thresholds or settings
- SurgeSetupError: Pre-run setup failed; the run is aborted
- SurgeTransportError: A request could not complete (timeout, refused, ...)

Per-request failures never escape a virtual user iteration. Only
SurgeSetupError (and configuration errors raised before a run starts)
propagate to the caller.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SurgeError(Exception):
    """Base exception for all surge errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context as key-value pairs
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging or reports."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class SurgeConfigError(SurgeError):
    """Configuration or validation error.

    Raised when:
    - A ramp stage has a negative duration or target
    - A threshold expression cannot be parsed
    - Two scenarios in one run share a name
    - An environment override is not a valid number or duration

    Examples:
        SurgeConfigError("Unknown suite", code="unknown_suite")
        SurgeConfigError("Invalid threshold", details={"expression": "p95<1"})
    """

    pass


class SurgeSetupError(SurgeError):
    """Pre-run setup failed.

    Fatal: the coordinator raises this before any scenario starts and no
    summary report is produced.

    Attributes:
        stage: Which hook failed ("setup").
    """

    def __init__(
        self,
        message: str,
        *,
        stage: str = "setup",
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["stage"] = stage
        self.stage = stage
        super().__init__(message, code=code, details=details)


class SurgeTransportError(SurgeError):
    """A request could not complete.

    Raised by HTTP clients; contained inside the virtual user iteration
    that issued the request and recorded as a classification.

    Attributes:
        kind: "timeout", "connection" or "protocol"
        method: HTTP method of the failed request
        url: Target URL of the failed request
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str = "connection",
        method: Optional[str] = None,
        url: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["kind"] = kind
        if method:
            details["method"] = method
        if url:
            details["url"] = url

        self.kind = kind
        self.method = method
        self.url = url

        super().__init__(message, code=code, details=details)

    @property
    def is_timeout(self) -> bool:
        """True if the request timed out rather than failed outright."""
        return self.kind == "timeout"


__all__ = [
    "SurgeError",
    "SurgeConfigError",
    "SurgeSetupError",
    "SurgeTransportError",
]
