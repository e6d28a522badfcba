from __future__ import annotations

import pytest

from scripts.directory_sync.config import BigQueryConfig, ScimConfig, SyncConfig


class RecordingSleep:
    """Drop-in for time.sleep that records requested delays."""

    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleep_recorder():
    return RecordingSleep()


@pytest.fixture
def make_user():
    def _make(i: int, **overrides) -> dict:
        user = {
            "schemas": ["urn:ietf:params:scim:schemas:core:2.0:User"],
            "id": f"u{i:04d}",
            "userName": f"user{i}@example.com",
            "name": {"givenName": f"Given{i}", "familyName": f"Family{i}"},
            "emails": [{"value": f"user{i}@example.com", "primary": True}],
            "active": True,
            "meta": {
                "resourceType": "User",
                "created": "2024-01-01T00:00:00Z",
                "lastModified": "2024-06-01T00:00:00Z",
            },
        }
        user.update(overrides)
        return user

    return _make


@pytest.fixture
def scim_config():
    return ScimConfig(
        api_base_url="https://directory.example.com/api",
        token="test-token",
        page_size=100,
        max_pages=100,
        page_delay_seconds=1.0,
    )


@pytest.fixture
def bq_config():
    return BigQueryConfig(project_id="proj", dataset_id="directory")


@pytest.fixture
def sync_config(scim_config, bq_config):
    return SyncConfig(tenant_id="tenant-1", scim=scim_config, bigquery=bq_config)
