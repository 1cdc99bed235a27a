"""
Workload catalog for the e-commerce target service.

Usage:
    from surge.scenarios import build_suite

    suite = build_suite("coupon")
    report = await RunCoordinator(client, setup=suite.setup).run(suite.scenarios)
"""

from surge.scenarios.suites import SUITES, Suite, build_suite, list_suites

__all__ = [
    "SUITES",
    "Suite",
    "build_suite",
    "list_suites",
]
