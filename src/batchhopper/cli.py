from __future__ import annotations

import argparse
import logging
import sys

from .aggregate import render_keyboard
from .app_logging import LOGGER_NAME, log_with_fields, setup_logger
from .config import AppConfig, ensure_local_paths, load_config
from .coordinator import Coordinator, JobAlreadyRunning
from .models import BatchComplete, InProgress, StatusReport
from .remote import WorkerClient, WorkerProtocolError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="batchhopper", description="Batch job coordinator for HTTP workers")
    parser.add_argument("--config", required=True, help="Path to batchhopper YAML config")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run one job across all workers until it completes")
    run_parser.add_argument("--job-name", required=True, help="Name sent to workers with every batch")
    run_parser.add_argument("--batch-size", required=True, type=int, help="Work units per batch")
    run_parser.add_argument("--batches", required=True, type=int, help="Total number of batches")
    run_parser.add_argument(
        "--worker",
        action="append",
        default=[],
        help="Extra worker address, may be repeated",
    )
    run_parser.add_argument(
        "--report-interval",
        type=float,
        default=5.0,
        help="Seconds between progress lines",
    )

    probe = subparsers.add_parser("probe", help="Query every worker's status once")
    probe.add_argument("--worker", action="append", default=[], help="Extra worker address, may be repeated")
    return parser


def format_status(report: StatusReport) -> str:
    if report.job_name is None:
        return f"Status: {report.phase.value}"
    line = f"Job {report.job_name} {report.phase.value}: {report.completed}/{report.total_batches} batches"
    if report.stalled:
        line += " (stalled: no live workers)"
    if report.best is not None:
        line += f" best score {report.best.score:.4f}"
    return line


def cmd_run(
    config: AppConfig,
    *,
    job_name: str,
    batch_size: int,
    batches: int,
    extra_workers: list[str],
    report_interval: float,
) -> int:
    ensure_local_paths(config)
    logger = setup_logger(config.paths.log)
    coordinator = Coordinator(config=config, logger=logger)
    for host in [*config.workers, *extra_workers]:
        coordinator.add_worker(host)

    try:
        coordinator.start_job(job_name, batch_size, batches)
    except (JobAlreadyRunning, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    try:
        while not coordinator.wait(timeout=report_interval):
            print(format_status(coordinator.status()))
    except KeyboardInterrupt:
        log_with_fields(logging.getLogger(LOGGER_NAME), logging.INFO, "shutdown", reason="keyboard_interrupt")
        return 0

    report = coordinator.status()
    print(format_status(report))
    for worker in report.workers:
        error = f" error={worker.last_error}" if worker.last_error else ""
        print(f"  {worker.host}: status={worker.state.value} batches={worker.batches_completed}{error}")
    if report.best is not None:
        print(render_keyboard(report.best))
    return 1 if report.stalled else 0


def cmd_probe(config: AppConfig, extra_workers: list[str]) -> int:
    hosts = [*config.workers, *extra_workers]
    if not hosts:
        print("  (no workers configured)")
        return 0

    client = WorkerClient(timeout=config.poll.request_timeout_seconds)
    failures = 0
    try:
        for host in hosts:
            try:
                status = client.fetch_status(host)
            except WorkerProtocolError as exc:
                failures += 1
                print(f"  {host}: unreachable error={exc}")
                continue
            if isinstance(status, InProgress):
                print(f"  {host}: in progress {status.completed}/{status.batch_size}")
            elif isinstance(status, BatchComplete):
                print(f"  {host}: batch complete keyboards={len(status.keyboards)}")
            else:
                print(f"  {host}: idle")
    finally:
        client.close()
    return 1 if failures else 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_config(args.config)

    if args.command == "run":
        return cmd_run(
            config,
            job_name=args.job_name,
            batch_size=args.batch_size,
            batches=args.batches,
            extra_workers=args.worker,
            report_interval=args.report_interval,
        )
    if args.command == "probe":
        return cmd_probe(config, args.worker)
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
