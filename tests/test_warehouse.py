from __future__ import annotations

import json

import httplib2
import pytest
from googleapiclient.errors import HttpError

from scripts.directory_sync.config import BigQueryConfig
from scripts.directory_sync.transform import TargetRow
from scripts.directory_sync.warehouse import (
    MERGE_UPDATE_COLUMNS,
    BigQueryWarehouse,
    JobFailedError,
    JobReference,
    JobStatus,
    JobSubmissionError,
    build_merge_sql,
    encode_ndjson,
)


class FakeRequest:
    def __init__(self, result=None, error=None):
        self._result = result
        self._error = error

    def execute(self):
        if self._error is not None:
            raise self._error
        return self._result


class FakeJobsResource:
    """Stands in for service.jobs() on the BigQuery discovery client."""

    def __init__(self, insert_error=None):
        self.insert_calls = []
        self.get_calls = []
        self.insert_error = insert_error

    def insert(self, **kwargs):
        self.insert_calls.append(kwargs)
        if self.insert_error is not None:
            return FakeRequest(error=self.insert_error)
        job_ref = {"projectId": kwargs["projectId"], "jobId": f"job_{len(self.insert_calls)}"}
        location = kwargs["body"].get("jobReference", {}).get("location")
        if location:
            job_ref["location"] = location
        return FakeRequest({"jobReference": job_ref, "status": {"state": "RUNNING"}})

    def get(self, **kwargs):
        self.get_calls.append(kwargs)
        return FakeRequest({
            "jobReference": {"jobId": kwargs["jobId"]},
            "status": {"state": "DONE"},
        })


class FakeBigQueryService:
    def __init__(self, jobs):
        self._jobs = jobs

    def jobs(self):
        return self._jobs


ROWS = [
    TargetRow(id="u1", userName="a", givenName="A", familyName="One", email="a@example.com",
              active=True, created="2024-01-01T00:00:00Z", lastModified="2024-02-01T00:00:00Z"),
    TargetRow(id="u2", userName="b"),
]


@pytest.fixture
def jobs():
    return FakeJobsResource()


@pytest.fixture
def warehouse(bq_config, jobs):
    return BigQueryWarehouse(bq_config, service=FakeBigQueryService(jobs))


def test_load_staging_with_no_rows_submits_nothing(warehouse, jobs):
    assert warehouse.load_staging([]) is None
    assert jobs.insert_calls == []


def test_load_staging_replaces_staging_table_with_explicit_schema(warehouse, jobs):
    job = warehouse.load_staging(ROWS)

    assert job == JobReference(project_id="proj", job_id="job_1")
    call = jobs.insert_calls[0]
    assert call["projectId"] == "proj"
    load = call["body"]["configuration"]["load"]
    assert load["destinationTable"] == {
        "projectId": "proj", "datasetId": "directory", "tableId": "scim_users_staging",
    }
    assert load["writeDisposition"] == "WRITE_TRUNCATE"
    assert load["sourceFormat"] == "NEWLINE_DELIMITED_JSON"
    assert [(f["name"], f["type"]) for f in load["schema"]["fields"]] == [
        ("id", "STRING"),
        ("userName", "STRING"),
        ("givenName", "STRING"),
        ("familyName", "STRING"),
        ("email", "STRING"),
        ("active", "BOOLEAN"),
        ("created", "TIMESTAMP"),
        ("lastModified", "TIMESTAMP"),
    ]
    assert "autodetect" not in load


def test_load_payload_is_one_json_object_per_row(warehouse, jobs):
    warehouse.load_staging(ROWS)

    media = jobs.insert_calls[0]["media_body"]
    payload = media.getbytes(0, media.size()).decode("utf-8")
    lines = payload.split("\n")
    assert len(lines) == 2
    assert json.loads(lines[0])["email"] == "a@example.com"
    assert json.loads(lines[1]) == {
        "id": "u2", "userName": "b", "givenName": None, "familyName": None,
        "email": None, "active": False, "created": None, "lastModified": None,
    }


def test_encode_ndjson_has_no_trailing_newline():
    assert not encode_ndjson(ROWS).endswith(b"\n")


def test_submission_http_error_raises_job_submission_error(bq_config):
    error = HttpError(
        httplib2.Response({"status": 403, "reason": "Forbidden"}),
        b'{"error": {"message": "Access Denied: dataset directory"}}',
    )
    jobs = FakeJobsResource(insert_error=error)
    warehouse = BigQueryWarehouse(bq_config, service=FakeBigQueryService(jobs))

    with pytest.raises(JobSubmissionError) as excinfo:
        warehouse.load_staging(ROWS)

    assert "403" in str(excinfo.value)
    assert len(jobs.insert_calls) == 1


def test_merge_submits_standard_sql_query(warehouse, jobs):
    job = warehouse.merge_staging_into_target()

    assert job.job_id == "job_1"
    query = jobs.insert_calls[0]["body"]["configuration"]["query"]
    assert query["useLegacySql"] is False
    assert "`proj.directory.scim_users`" in query["query"]
    assert "`proj.directory.scim_users_staging`" in query["query"]
    assert "media_body" not in jobs.insert_calls[0]


def test_merge_sql_never_updates_created():
    sql = build_merge_sql("p.d.staging", "p.d.target")

    update_clause = sql.split("WHEN MATCHED THEN UPDATE SET", 1)[1].split("WHEN NOT MATCHED", 1)[0]
    assert "created" not in update_clause
    for column in MERGE_UPDATE_COLUMNS:
        assert f"{column} = S.{column}" in update_clause
    assert "ON T.id = S.id" in sql
    assert "INSERT (id, userName, givenName, familyName, email, active, created, lastModified)" in sql


def test_location_is_passed_through(jobs):
    config = BigQueryConfig(project_id="proj", dataset_id="directory", location="EU")
    warehouse = BigQueryWarehouse(config, service=FakeBigQueryService(jobs))

    job = warehouse.merge_staging_into_target()
    warehouse.get_job_status(job)

    assert jobs.insert_calls[0]["body"]["jobReference"]["location"] == "EU"
    assert jobs.get_calls[0] == {"projectId": "proj", "jobId": "job_1", "location": "EU"}


def test_job_status_from_api_reads_error_result():
    status = JobStatus.from_api({
        "status": {
            "state": "DONE",
            "errorResult": {"reason": "invalid", "message": "bad row"},
            "errors": [{"reason": "invalid", "message": "bad row"}],
        },
    })

    assert status.done
    assert status.error_result == {"reason": "invalid", "message": "bad row"}
    assert len(status.errors) == 1


def test_job_failed_error_carries_payload_verbatim():
    payload = {"reason": "invalidQuery", "message": "UPDATE/MERGE must match at most one source row"}

    error = JobFailedError("job_9", payload)

    assert "UPDATE/MERGE must match at most one source row" in str(error)
    assert error.error_result is payload
