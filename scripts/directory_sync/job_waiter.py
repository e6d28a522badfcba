"""Poll a BigQuery job until it reaches a terminal state."""

from __future__ import annotations

import logging
import time
from typing import Callable

from scripts.directory_sync.warehouse import (
    BigQueryWarehouse,
    JobFailedError,
    JobReference,
    JobStatus,
)

logger = logging.getLogger("directory_sync.job_waiter")


class JobWaiter:
    """Blocking poller with a doubling interval.

    There is no interval cap and no overall deadline: a job that never
    reaches DONE keeps the run waiting.
    """

    def __init__(
        self,
        warehouse: BigQueryWarehouse,
        initial_interval: float = 0.5,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.warehouse = warehouse
        self.initial_interval = initial_interval
        self.sleep = sleep_fn

    def await_completion(self, job: JobReference) -> JobStatus:
        interval = self.initial_interval
        polls = 0
        while True:
            status = self.warehouse.get_job_status(job)
            polls += 1
            if status.done:
                break
            logger.debug(
                "Job %s is %s, polling again in %.1fs", job.job_id, status.state, interval,
                extra={"job_id": job.job_id},
            )
            self.sleep(interval)
            interval *= 2

        if status.error_result:
            raise JobFailedError(job.job_id, status.error_result, status.errors)
        logger.debug("Job %s done after %d polls", job.job_id, polls, extra={"job_id": job.job_id})
        return status
