"""BigQuery staging load and MERGE upsert via the BigQuery v2 REST API."""

from __future__ import annotations

import io
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from scripts.directory_sync.config import BigQueryConfig
from scripts.directory_sync.transform import TargetRow

logger = logging.getLogger("directory_sync.warehouse")

SCOPES = ["https://www.googleapis.com/auth/bigquery"]

# Field order matches TargetRow.
USER_SCHEMA: list[dict[str, str]] = [
    {"name": "id", "type": "STRING", "mode": "REQUIRED"},
    {"name": "userName", "type": "STRING", "mode": "NULLABLE"},
    {"name": "givenName", "type": "STRING", "mode": "NULLABLE"},
    {"name": "familyName", "type": "STRING", "mode": "NULLABLE"},
    {"name": "email", "type": "STRING", "mode": "NULLABLE"},
    {"name": "active", "type": "BOOLEAN", "mode": "NULLABLE"},
    {"name": "created", "type": "TIMESTAMP", "mode": "NULLABLE"},
    {"name": "lastModified", "type": "TIMESTAMP", "mode": "NULLABLE"},
]

MERGE_KEY = "id"
# created is write-once: inserted with a new row, never overwritten.
MERGE_UPDATE_COLUMNS = [
    "userName", "givenName", "familyName", "email", "active", "lastModified",
]
MERGE_INSERT_COLUMNS = [f["name"] for f in USER_SCHEMA]


class WarehouseError(RuntimeError):
    """Base error for BigQuery job failures."""


class JobSubmissionError(WarehouseError):
    """Raised when BigQuery rejects a job insert."""


class JobFailedError(WarehouseError):
    """Raised when a job reaches DONE with an error result."""

    def __init__(self, job_id: str, error_result: dict[str, Any], errors: Optional[list] = None) -> None:
        self.job_id = job_id
        self.error_result = error_result
        self.errors = errors or []
        detail = json.dumps(error_result)
        if self.errors:
            detail += f" (errors: {json.dumps(self.errors)})"
        super().__init__(f"BigQuery job {job_id} failed: {detail}")


@dataclass(frozen=True)
class JobReference:
    project_id: str
    job_id: str
    location: Optional[str] = None

    @classmethod
    def from_api(cls, job: dict[str, Any]) -> "JobReference":
        ref = job["jobReference"]
        return cls(
            project_id=ref["projectId"],
            job_id=ref["jobId"],
            location=ref.get("location"),
        )


@dataclass(frozen=True)
class JobStatus:
    state: str
    error_result: Optional[dict[str, Any]] = None
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.state == "DONE"

    @classmethod
    def from_api(cls, job: dict[str, Any]) -> "JobStatus":
        status = job.get("status") or {}
        return cls(
            state=status.get("state", "PENDING"),
            error_result=status.get("errorResult") or None,
            errors=status.get("errors") or [],
        )


def build_merge_sql(staging_table_id: str, target_table_id: str) -> str:
    """Standard-SQL MERGE upserting staging rows into the target on id."""
    set_clause = ",\n    ".join(f"{c} = S.{c}" for c in MERGE_UPDATE_COLUMNS)
    insert_cols = ", ".join(MERGE_INSERT_COLUMNS)
    insert_vals = ", ".join(f"S.{c}" for c in MERGE_INSERT_COLUMNS)
    return (
        f"MERGE `{target_table_id}` T\n"
        f"USING `{staging_table_id}` S\n"
        f"ON T.{MERGE_KEY} = S.{MERGE_KEY}\n"
        f"WHEN MATCHED THEN UPDATE SET\n    {set_clause}\n"
        f"WHEN NOT MATCHED THEN\n"
        f"  INSERT ({insert_cols})\n"
        f"  VALUES ({insert_vals})"
    )


def encode_ndjson(rows: Sequence[TargetRow]) -> bytes:
    """One JSON object per line, one line per row."""
    return "\n".join(json.dumps(row.to_record()) for row in rows).encode("utf-8")


def _build_service(config: BigQueryConfig):
    if config.sa_key_file:
        # Local dev / explicit service account key file
        creds = service_account.Credentials.from_service_account_file(
            config.sa_key_file, scopes=SCOPES
        )
    else:
        # Cloud Run / Workload Identity: use Application Default Credentials
        import google.auth
        creds, _ = google.auth.default(scopes=SCOPES)
    return build("bigquery", "v2", credentials=creds, cache_discovery=False)


class BigQueryWarehouse:
    """Submits load and query jobs against one staging/target table pair."""

    def __init__(self, config: BigQueryConfig, service=None) -> None:
        self.config = config
        self._service = service

    @property
    def service(self):
        # Credentials are resolved on first use so that auth failures surface
        # inside the run that needs them.
        if self._service is None:
            self._service = _build_service(self.config)
        return self._service

    def _table_ref(self, table_id: str) -> dict[str, str]:
        return {
            "projectId": self.config.project_id,
            "datasetId": self.config.dataset_id,
            "tableId": table_id,
        }

    def _insert_job(self, body: dict[str, Any], media_body=None) -> JobReference:
        if self.config.location:
            body.setdefault("jobReference", {})["location"] = self.config.location
        kwargs: dict[str, Any] = {"projectId": self.config.project_id, "body": body}
        if media_body is not None:
            kwargs["media_body"] = media_body
        try:
            job = self.service.jobs().insert(**kwargs).execute()
        except HttpError as e:
            raise JobSubmissionError(
                f"BigQuery job submission failed (HTTP {e.resp.status}): {e}"
            ) from e
        ref = JobReference.from_api(job)
        logger.debug("Submitted BigQuery job %s", ref.job_id, extra={"job_id": ref.job_id})
        return ref

    def load_staging(self, rows: Sequence[TargetRow]) -> Optional[JobReference]:
        """Replace the staging table contents with ``rows``.

        Returns None without submitting anything when there are no rows.
        """
        if not rows:
            return None

        body = {
            "configuration": {
                "load": {
                    "destinationTable": self._table_ref(self.config.staging_table),
                    "schema": {"fields": USER_SCHEMA},
                    "sourceFormat": "NEWLINE_DELIMITED_JSON",
                    "writeDisposition": "WRITE_TRUNCATE",
                    "createDisposition": "CREATE_IF_NEEDED",
                },
            },
        }
        media = MediaIoBaseUpload(
            io.BytesIO(encode_ndjson(rows)),
            mimetype="application/octet-stream",
            resumable=False,
        )
        logger.info(
            "Loading %d rows into %s", len(rows), self.config.staging_table_id,
            extra={"records": len(rows), "stage": "load"},
        )
        return self._insert_job(body, media_body=media)

    def merge_staging_into_target(self) -> JobReference:
        """Submit the MERGE from staging into the durable table."""
        sql = build_merge_sql(self.config.staging_table_id, self.config.target_table_id)
        body = {
            "configuration": {
                "query": {
                    "query": sql,
                    "useLegacySql": False,
                },
            },
        }
        logger.info(
            "Merging %s into %s",
            self.config.staging_table_id, self.config.target_table_id,
            extra={"stage": "merge"},
        )
        return self._insert_job(body)

    def get_job_status(self, job: JobReference) -> JobStatus:
        kwargs: dict[str, Any] = {"projectId": job.project_id, "jobId": job.job_id}
        if job.location:
            kwargs["location"] = job.location
        return JobStatus.from_api(self.service.jobs().get(**kwargs).execute())
