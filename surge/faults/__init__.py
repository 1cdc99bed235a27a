"""
Fault injection for harness self-tests.

Wrap any HttpClient, inject transport errors, latency or synthetic
responses, then check that the harness contains and classifies them.

Usage:
    from surge.faults import FaultInjectingClient, FaultProfile, rules

    flaky = FaultProfile("flaky", [
        rules.on_calls({3}),
        rules.respond(0.05, 502, b"<html>bad gateway</html>"),
        rules.slow(0.2, 0.05),
    ])
    client = FaultInjectingClient(fake_service, flaky, seed=42)
"""

from surge.faults.profile import Fault, FaultProfile, FaultRule, RequestInfo
from surge.faults.client import FaultInjectingClient
from surge.faults import rules

__all__ = [
    "Fault",
    "FaultProfile",
    "FaultRule",
    "RequestInfo",
    "FaultInjectingClient",
    "rules",
]
