"""CLI entry point: sync, scheduler."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Optional, Sequence

from scripts.directory_sync.config import ConfigError, load_config
from scripts.directory_sync.logging_config import configure_logging
from scripts.directory_sync.pipeline import SyncRunError, build_sync

logger = logging.getLogger("directory_sync.cli")


def cmd_sync(args: argparse.Namespace) -> int:
    """Run one sync. --dry-run is a manual trigger of the same path."""
    config = load_config()
    if args.dry_run:
        logger.info("Manual dry run requested; running the full sync path",
                    extra={"tenant_id": config.tenant_id})

    try:
        result = build_sync(config).run()
    except SyncRunError as exc:
        logger.error("Sync failed: %s", exc, extra={"stage": exc.stage})
        return 1

    print(
        f"run {result.run_id}: fetched={result.fetched} loaded={result.loaded} "
        f"dropped={result.dropped}"
        + (" (nothing to load)" if result.skipped else "")
    )
    return 0


def cmd_scheduler(args: argparse.Namespace) -> int:
    """Start the APScheduler-based scheduling loop."""
    from scripts.directory_sync.scheduler import start_scheduler

    config = load_config()
    start_scheduler(config)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="directory-sync",
        description="Sync SCIM directory users into BigQuery",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Run one-shot sync")
    sync_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Manual invocation of the same sync path (writes are not suppressed)",
    )
    sync_parser.set_defaults(func=cmd_sync)

    # scheduler command
    sched_parser = subparsers.add_parser("scheduler", help="Start scheduled sync loop")
    sched_parser.set_defaults(func=cmd_scheduler)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main CLI entry point."""
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

    args = build_parser().parse_args(argv)
    try:
        code = args.func(args)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        code = 2
    sys.exit(code)


if __name__ == "__main__":
    main()
