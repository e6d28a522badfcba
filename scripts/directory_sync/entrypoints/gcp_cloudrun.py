"""GCP Cloud Run Job entry point for the directory sync.

Deployed as a Cloud Run Job triggered by Cloud Scheduler. Cloud Scheduler
must not start a new execution while one is running: concurrent runs race
on the staging table.

Usage:
  python -m scripts.directory_sync.entrypoints.gcp_cloudrun
"""

from __future__ import annotations

import logging
import os
import sys

from scripts.directory_sync.config import ConfigError, load_config
from scripts.directory_sync.logging_config import configure_logging
from scripts.directory_sync.pipeline import SyncRunError, build_sync

logger = logging.getLogger("directory_sync.cloudrun")


def main() -> None:
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

    try:
        config = load_config()
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        sys.exit(1)

    logger.info("Cloud Run Job started", extra={"tenant_id": config.tenant_id})

    try:
        result = build_sync(config).run()
    except SyncRunError as exc:
        logger.error("Sync failed: %s", exc, exc_info=True, extra={"stage": exc.stage})
        sys.exit(1)

    logger.info("Sync complete: %s", result)


if __name__ == "__main__":
    main()
