"""
Optional Logfire tracing for runs.

Span tree of one run:
    surge.run
      surge.setup
      surge.scenario (one per scenario)
      surge.teardown

Tracing is on when the `logfire` package is importable and SURGE_LOGFIRE is
not false. Without it every helper here is a no-op, so the harness never
depends on it.

Environment:
    SURGE_LOGFIRE                   "false" disables tracing
    SURGE_LOGFIRE_CONSOLE           "true" keeps Logfire's console output
    SURGE_LOGFIRE_INSTRUMENT_HTTPX  "true" adds a span per dispatched request
    SURGE_TELEMETRY_STDERR          "true" echoes telemetry events to stderr
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)

# None: not looked up yet; False: not installed.
_module: Any = None
_configured = False


def _logfire() -> Optional[Any]:
    global _module
    if _module is None:
        try:
            import logfire
        except ImportError:
            _module = False
        else:
            _module = logfire
    return _module or None


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def enabled() -> bool:
    return _logfire() is not None and _flag("SURGE_LOGFIRE", True)


def configure() -> bool:
    """Configure Logfire once per process. False when tracing is off."""
    global _configured
    if not enabled():
        return False
    if _configured:
        return True
    logfire = _logfire()
    try:
        logfire.configure(
            service_name="surge",
            console=None if _flag("SURGE_LOGFIRE_CONSOLE", False) else False,
            send_to_logfire="if-token-present",
        )
    except Exception:
        logger.debug("Logfire configuration failed; tracing disabled", exc_info=True)
        return False
    _configured = True

    if _flag("SURGE_LOGFIRE_INSTRUMENT_HTTPX", False):
        try:
            logfire.instrument_httpx()
        except Exception:
            logger.debug("httpx instrumentation unavailable", exc_info=True)
    return True


@contextmanager
def span(name: str, **attrs: Any) -> Iterator[None]:
    """Trace the enclosed block; transparent when tracing is off."""
    if not configure():
        yield
        return
    with _logfire().span(name, **attrs):
        yield


def _echo(message: str, attrs: dict) -> None:
    if _flag("SURGE_TELEMETRY_STDERR", False):
        print(f"[telemetry] {message} {attrs}", file=sys.stderr)


def log(level: str, message: str, **attrs: Any) -> None:
    """Emit a structured event at `level` ("info", "warning", ...)."""
    _echo(message, attrs)
    if not configure():
        return
    logfire = _logfire()
    emit = getattr(logfire, level, None) or logfire.info
    try:
        emit(message, **attrs)
    except Exception:
        logger.debug("Logfire rejected event %s", message, exc_info=True)
