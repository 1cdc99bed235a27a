from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from dotenv import load_dotenv

from surge import telemetry
from surge.config import Settings, get_settings, reset_settings
from surge.coordinator import RunCoordinator
from surge.exceptions import SurgeConfigError, SurgeSetupError
from surge.report import ConsoleSink, JsonFileSink, ReportSink, SummaryReport
from surge.scenarios import build_suite, list_suites
from surge.schedule import parse_duration
from surge.transport import HttpxClient

logger = logging.getLogger(__name__)

EXIT_PASSED = 0
EXIT_THRESHOLDS_FAILED = 1
EXIT_SETUP_FAILED = 2


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="surge",
        description="Staged virtual-user load tests for the e-commerce service.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List available suites.")

    run = sub.add_parser("run", help="Run a suite.")
    run.add_argument("suite", help="Suite name (see `surge list`).")
    run.add_argument("--base-url", help="Target base URL (default: SURGE_BASE_URL).")
    run.add_argument(
        "--budget",
        help="Global run budget, seconds or duration string (e.g. 5m).",
    )
    run.add_argument(
        "--output",
        help="Write the JSON summary here (default: <SURGE_RESULTS_DIR>/<suite>-<run id>.json).",
    )
    run.add_argument(
        "--no-output", action="store_true", help="Do not write a JSON summary file."
    )
    run.add_argument(
        "--json", action="store_true", help="Print the JSON summary instead of text."
    )
    run.add_argument("--seed", type=int, help="Seed per-VU random generators.")
    return parser.parse_args(argv)


class _StdoutJsonSink:
    def emit(self, report: SummaryReport, text: str) -> None:
        print(json.dumps(report.to_log_dict(), ensure_ascii=True))


class _DeferredJsonFileSink:
    """JsonFileSink whose path depends on the run id."""

    def __init__(self, directory: Path, suite: str) -> None:
        self.directory = directory
        self.suite = suite

    def emit(self, report: SummaryReport, text: str) -> None:
        path = self.directory / f"{self.suite}-{report.run_id[:8]}.json"
        JsonFileSink(path).emit(report, text)


def _sinks(args: argparse.Namespace, settings: Settings) -> List[ReportSink]:
    sinks: List[ReportSink] = [_StdoutJsonSink() if args.json else ConsoleSink()]
    if args.no_output:
        return sinks
    if args.output:
        sinks.append(JsonFileSink(args.output))
    else:
        sinks.append(_DeferredJsonFileSink(Path(settings.results_dir), args.suite))
    return sinks


async def _run(args: argparse.Namespace, settings: Settings) -> SummaryReport:
    suite = build_suite(args.suite, settings)
    budget = parse_duration(args.budget) if args.budget else suite.budget
    base_url = args.base_url or settings.base_url
    logger.info("Running suite %s against %s", suite.name, base_url)

    async with HttpxClient(
        base_url,
        timeout=settings.request_timeout,
        max_connections=settings.max_in_flight,
    ) as client:
        coordinator = RunCoordinator(
            client,
            tick=settings.tick,
            max_in_flight=settings.max_in_flight,
            setup=suite.setup,
            teardown=suite.teardown,
            sinks=_sinks(args, settings),
            seed=args.seed,
        )
        return await coordinator.run(suite.scenarios, budget=budget)


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv()
    reset_settings()
    args = _parse_args(argv)
    try:
        settings = get_settings()
    except SurgeConfigError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_SETUP_FAILED

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    telemetry.configure()

    if args.command == "list":
        for name, description in list_suites():
            print(f"{name:14} {description}")
        return EXIT_PASSED

    try:
        report = asyncio.run(_run(args, settings))
    except (SurgeConfigError, SurgeSetupError) as exc:
        logger.error("%s", exc.message)
        print(json.dumps(exc.to_dict(), ensure_ascii=True), file=sys.stderr)
        return EXIT_SETUP_FAILED
    return EXIT_PASSED if report.passed else EXIT_THRESHOLDS_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
