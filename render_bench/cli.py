from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Sequence
from uuid import uuid4

from render_bench import config
from render_bench.batch import build_batch, output_paths_for
from render_bench.errors import ConfigurationError
from render_bench.logging_config import get_logger, setup_logging
from render_bench.models import RunMode, RunReport
from render_bench.monitor import LivenessMonitor
from render_bench.report import render_text
from render_bench.runner import RunCoordinator
from render_bench.settings import Settings, get_settings

logger = get_logger(__name__)

EXIT_CONFIG_ERROR = 2


def parse_args(
    argv: Sequence[str] | None = None, settings: Settings | None = None
) -> argparse.Namespace:
    settings = settings or get_settings()
    p = argparse.ArgumentParser(
        prog="render-bench",
        description="Run an HTML-to-PDF backend N times and report timing and artifacts.",
    )
    p.add_argument("--count", type=int, default=1, help="Number of PDFs to render per iteration.")
    p.add_argument(
        "--mode",
        choices=[mode.value for mode in RunMode],
        default=RunMode.parallel.value,
        help="parallel: spawn every job at once; sequential: one job at a time.",
    )
    p.add_argument(
        "--per-process",
        type=int,
        default=1,
        help="PDFs per backend process; values > 1 use the backend's --sequential mode.",
    )
    p.add_argument("--timeout", type=float, default=settings.job_timeout_sec, help="Per-job timeout (seconds).")
    p.add_argument("--grace", type=float, default=settings.grace_period_sec, help="Grace window after a success signature (seconds).")
    p.add_argument("--poll-interval", type=float, default=settings.poll_interval_sec, help="Monitor polling interval (seconds).")
    p.add_argument("--idle-warning", type=float, default=settings.idle_warning_sec, help="Warn when a job writes no output for this long (seconds).")
    p.add_argument("--iterations", type=int, default=1, help="Repeat the whole batch this many times.")
    p.add_argument("--success-pattern", default=settings.success_pattern, help="Marker that signals a saved artifact.")
    p.add_argument("--stem", default="output", help="Artifact file name stem.")
    p.add_argument("--data-dir", default="", help="Where run logs and artifacts go. Default: $BENCH_DATA_DIR.")
    p.add_argument("--json", action="store_true", help="Print reports as JSON instead of text.")
    p.add_argument("backend", nargs=argparse.REMAINDER, help="Backend command (prefix with --).")
    args = p.parse_args(list(argv) if argv is not None else None)
    if args.backend and args.backend[0] == "--":
        args.backend = args.backend[1:]
    return args


async def run_iterations(
    args: argparse.Namespace, settings: Settings | None = None
) -> list[RunReport]:
    settings = settings or get_settings()
    if args.iterations < 1:
        raise ConfigurationError(f"iterations must be >= 1, got {args.iterations}")
    for name in ("timeout", "grace", "poll_interval", "idle_warning"):
        if getattr(args, name) <= 0:
            raise ConfigurationError(f"--{name.replace('_', '-')} must be positive")

    root = Path(args.data_dir).resolve() if args.data_dir else config.data_dir()
    monitor = LivenessMonitor(
        poll_interval_sec=args.poll_interval,
        grace_period_sec=args.grace,
        idle_warning_sec=args.idle_warning,
        stderr_tail_lines=settings.stderr_tail_lines,
    )
    mode = RunMode(args.mode)

    reports: list[RunReport] = []
    for iteration in range(1, args.iterations + 1):
        run_id = uuid4().hex
        paths = config.run_paths(run_id, root=root)
        batch = build_batch(
            args.backend,
            output_paths_for(paths.artifacts, args.count, args.stem),
            timeout_sec=args.timeout,
            success_pattern=args.success_pattern,
            per_process=args.per_process,
        )
        logger.info("iteration_started", iteration=iteration, of=args.iterations, run_id=run_id)
        report = await RunCoordinator(paths.logs, monitor=monitor).run(batch, mode, run_id=run_id)
        reports.append(report)
        if args.json:
            print(report.model_dump_json(indent=2))
        else:
            print(render_text(report), end="")
        sys.stdout.flush()
    return reports


def main(argv: Sequence[str] | None = None) -> int:
    try:
        settings = get_settings()
    except ConfigurationError as exc:
        # logging is not configured yet; stdout is reserved for the report
        print(f"configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    setup_logging(settings.log_level, settings.json_logs)
    args = parse_args(argv, settings)
    try:
        reports = asyncio.run(run_iterations(args, settings))
    except ConfigurationError as exc:
        logger.error("configuration_error", error=str(exc))
        print(f"configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    if len(reports) > 1:
        passed = sum(1 for report in reports if report.ok)
        print(f"Iterations: {passed}/{len(reports)} passed")
    return 0 if all(report.ok for report in reports) else 1


if __name__ == "__main__":
    sys.exit(main())
