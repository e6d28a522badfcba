"""Run orchestration: fetch, transform, stage, merge."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from scripts.directory_sync.config import SyncConfig
from scripts.directory_sync.job_waiter import JobWaiter
from scripts.directory_sync.scim_client import ScimClient
from scripts.directory_sync.transform import transform_users
from scripts.directory_sync.warehouse import BigQueryWarehouse

logger = logging.getLogger("directory_sync.pipeline")


class SyncRunError(RuntimeError):
    """A run failed; the stage that failed is kept for reporting."""

    def __init__(self, message: str, stage: str) -> None:
        super().__init__(message)
        self.stage = stage


@dataclass(frozen=True)
class SyncResult:
    run_id: str
    fetched: int
    loaded: int
    dropped: int
    staging_job_id: Optional[str] = None
    merge_job_id: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.staging_job_id is None


class DirectorySync:
    """One tenant's SCIM users into one BigQuery staging/target pair."""

    def __init__(
        self,
        config: SyncConfig,
        scim_client: ScimClient,
        warehouse: BigQueryWarehouse,
        waiter: JobWaiter,
    ) -> None:
        self.config = config
        self.tenant_id = config.tenant_id
        self.scim_client = scim_client
        self.warehouse = warehouse
        self.waiter = waiter

    def run(self) -> SyncResult:
        """Execute one full sync. Any failure aborts the run with SyncRunError."""
        run_id = str(uuid.uuid4())
        started = time.monotonic()
        stage = "fetch"
        log_extra = {"tenant_id": self.tenant_id, "run_id": run_id}
        logger.info("Directory sync started", extra=log_extra)

        try:
            records = self.scim_client.fetch_all(
                self.tenant_id,
                page_size=self.config.scim.page_size,
                max_pages=self.config.scim.max_pages,
            )
            logger.info(
                "Fetched %d SCIM users", len(records),
                extra={**log_extra, "stage": stage, "records": len(records)},
            )

            stage = "transform"
            result = transform_users(records)
            if result.failures:
                logger.warning(
                    "Dropped %d records that could not be transformed", result.dropped,
                    extra={**log_extra, "stage": stage, "dropped": result.dropped},
                )
                for failure in result.failures:
                    logger.debug(
                        "Dropped record %s: %s", failure.record_id, failure.reason,
                        extra=log_extra,
                    )

            if not result.rows:
                logger.info(
                    "No rows to load, skipping staging load and merge",
                    extra={**log_extra, "stage": stage, "dropped": result.dropped},
                )
                return SyncResult(
                    run_id=run_id,
                    fetched=len(records),
                    loaded=0,
                    dropped=result.dropped,
                )

            stage = "load"
            load_job = self.warehouse.load_staging(result.rows)
            self.waiter.await_completion(load_job)
            logger.info(
                "Staging load complete", extra={
                    **log_extra, "stage": stage, "job_id": load_job.job_id,
                    "records": len(result.rows),
                },
            )

            stage = "merge"
            merge_job = self.warehouse.merge_staging_into_target()
            self.waiter.await_completion(merge_job)
            logger.info(
                "Merge complete", extra={**log_extra, "stage": stage, "job_id": merge_job.job_id},
            )
        except Exception as exc:
            logger.error(
                "Directory sync failed at %s: %s", stage, exc,
                extra={**log_extra, "stage": stage},
            )
            raise SyncRunError(
                f"Directory sync failed at {stage} for tenant {self.tenant_id}: {exc}",
                stage=stage,
            ) from exc

        sync_result = SyncResult(
            run_id=run_id,
            fetched=len(records),
            loaded=len(result.rows),
            dropped=result.dropped,
            staging_job_id=load_job.job_id,
            merge_job_id=merge_job.job_id,
        )
        logger.info(
            "Directory sync complete", extra={
                **log_extra,
                "records": sync_result.loaded,
                "dropped": sync_result.dropped,
                "duration_s": round(time.monotonic() - started, 3),
            },
        )
        return sync_result


def build_sync(config: SyncConfig) -> DirectorySync:
    """Wire the production SCIM client, warehouse and job waiter."""
    warehouse = BigQueryWarehouse(config.bigquery)
    return DirectorySync(
        config=config,
        scim_client=ScimClient(config.scim),
        warehouse=warehouse,
        waiter=JobWaiter(warehouse),
    )
