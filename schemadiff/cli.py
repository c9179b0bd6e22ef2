"""
cli
===

Compare one base PostgreSQL schema against many target schemas.

Basic run::

    schemadiff --config config.yml

Override output directory and concurrency::

    schemadiff --config config.yml --out out_prod --workers 4 --batch-size 20

Only compare some tables (SQL LIKE, or regex with ``re:``)::

    schemadiff --config config.yml --include "order%" --exclude "re:_tmp$"

Connectivity check only::

    schemadiff --config config.yml --check

Exit codes
----------
- ``0``: every target compared (differences or not)
- ``1``: at least one target failed
- ``2``: configuration error
- ``3``: the base endpoint could not be loaded
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from .collectors import PostgresSchemaLoader
from .config import AppConfig, load_config, read_config
from .connection import connection_test
from .errors import ConfigError, SchemaDiffError
from .orchestrator import EventKind, RunEvent, run_comparison
from .reporting import format_difference, write_reports

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_TARGET_FAILED = 1
EXIT_CONFIG = 2
EXIT_BASE_FAILED = 3


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="schemadiff",
        description="Compare the structure of PostgreSQL target schemas against a base schema.",
    )
    ap.add_argument("--config", default="config.yml", type=Path, help="Path to config.yml (default: config.yml)")
    ap.add_argument("--out", default=None, help="Override out_dir from config")
    ap.add_argument("--workers", type=int, default=None, help="Worker threads (default: 8)")
    ap.add_argument("--batch-size", type=int, default=None, help="Targets per batch (default: 10)")
    ap.add_argument(
        "--target-timeout", type=float, default=None, help="Seconds allowed per target, 0 for no limit (default: 300)"
    )
    ap.add_argument(
        "--include",
        action="append",
        default=[],
        help="Include table pattern (repeatable). SQL LIKE (% _) or regex via re:...",
    )
    ap.add_argument(
        "--exclude",
        action="append",
        default=[],
        help="Exclude table pattern (repeatable). SQL LIKE (% _) or regex via re:...",
    )
    ap.add_argument("--check", action="store_true", help="Only test connectivity to every endpoint")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return ap


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


def log_event(event: RunEvent) -> None:
    """Route orchestrator progress events to the log."""
    name = event.endpoint.display_name if event.endpoint else ""
    if event.kind is EventKind.BASE_LOADED:
        logger.info("base %s loaded: %s", name, event.detail)
    elif event.kind is EventKind.BATCH_STARTED:
        logger.info("batch %d/%d started (%d/%d targets done)", event.batch, event.batch_count, event.done, event.total)
    elif event.kind is EventKind.TARGET_STARTED:
        logger.debug("comparing %s", name)
    elif event.kind is EventKind.TARGET_FINISHED and event.result is not None:
        logger.info(
            "%s: %d difference(s) in %.1fs", name, event.result.difference_count, event.result.duration
        )
        for diff in event.result.differences:
            logger.debug("  %s", format_difference(diff))
    elif event.kind is EventKind.TARGET_FAILED and event.result is not None:
        logger.error("%s failed: %s", name, event.result.error_message)
    elif event.kind is EventKind.BATCH_FINISHED:
        logger.info("batch %d/%d finished (%d/%d targets done)", event.batch, event.batch_count, event.done, event.total)
    elif event.kind is EventKind.SHUTDOWN_TIMEOUT:
        logger.warning("workers still busy at shutdown: %s", event.detail)
    elif event.kind is EventKind.RUN_FINISHED:
        logger.info("all %d target(s) processed", event.done)


def _check(endpoint, app: AppConfig) -> bool:
    ok, message = connection_test(endpoint, app.connect)
    if ok:
        logger.info("%s: ok (%s)", endpoint.display_name, message)
    else:
        logger.error("%s", message)
    return ok


def check_connectivity(app: AppConfig) -> int:
    """Test every endpoint; exit codes follow a comparison run."""
    base_ok = _check(app.base, app)
    failed = sum(1 for target in app.targets if not _check(target, app))
    if not base_ok:
        return EXIT_BASE_FAILED
    return EXIT_TARGET_FAILED if failed else EXIT_OK


def run(app: AppConfig) -> int:
    loader = PostgresSchemaLoader(options=app.connect, table_filter=app.table_filter)
    logger.info("base: %s", app.base.describe())
    logger.info("targets: %d, workers: %d, batch size: %d", len(app.targets), app.policy.workers, app.policy.batch_size)

    try:
        report = run_comparison(app.base, app.targets, loader.load, policy=app.policy, on_event=log_event)
    except SchemaDiffError as exc:
        logger.error("base endpoint %s failed: %s", app.base.display_name, exc)
        return EXIT_BASE_FAILED

    out_dir = app.out_dir.resolve()
    summary_path = write_reports(out_dir, report)
    summary = report.summary

    print("\nDone.")
    print(f"Targets : {summary.total} (ok: {summary.success_count}, failed: {summary.failure_count})")
    print(f"Diffs   : {summary.difference_count}")
    print(f"Summary : {summary_path}")
    print(f"Reports : {out_dir / 'targets'}")
    return EXIT_TARGET_FAILED if summary.failure_count else EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    """Run the CLI entry-point."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    try:
        app = read_config(load_config(args.config.resolve()), args)
    except ConfigError as exc:
        logger.error("configuration error: %s", exc)
        return EXIT_CONFIG

    if args.check:
        return check_connectivity(app)
    return run(app)


if __name__ == "__main__":
    sys.exit(main())
