"""Configuration via environment variables with cloud-native secret support.

Supports:
  - Environment variables (local dev, Cloud Run job env)
  - .env files via python-dotenv
  - AWS Secrets Manager / GCP Secret Manager references for the SCIM token
  - Workload Identity / ADC for BigQuery (no key file needed in cloud)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from scripts.directory_sync.secrets import SecretResolutionError, resolve_secret


class ConfigError(ValueError):
    """Raised when a required setting is missing or malformed."""


@dataclass(frozen=True)
class ScimConfig:
    api_base_url: str
    token: str
    page_size: int = 100
    max_pages: int = 100  # ~10,000 users at the default page size
    page_delay_seconds: float = 1.0
    request_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class BigQueryConfig:
    project_id: str
    dataset_id: str
    staging_table: str = "scim_users_staging"
    target_table: str = "scim_users"
    location: Optional[str] = None
    sa_key_file: Optional[str] = None  # None = use Workload Identity / ADC

    @property
    def staging_table_id(self) -> str:
        return f"{self.project_id}.{self.dataset_id}.{self.staging_table}"

    @property
    def target_table_id(self) -> str:
        return f"{self.project_id}.{self.dataset_id}.{self.target_table}"


@dataclass(frozen=True)
class SchedulerConfig:
    sync_interval_min: int = 60
    misfire_grace_time: int = 300


@dataclass(frozen=True)
class SyncConfig:
    tenant_id: str
    scim: ScimConfig
    bigquery: BigQueryConfig
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


def load_config() -> SyncConfig:
    """Load configuration from environment variables.

    The tenant id is checked first so that a missing tenant aborts before
    anything else is resolved (secret lookups included).
    """
    load_dotenv()

    tenant_id = os.environ.get("TENANT_ID", "")
    if not tenant_id:
        raise ConfigError("TENANT_ID environment variable is required")

    required = ("SCIM_API_BASE_URL", "SCIM_BEARER_TOKEN", "BQ_PROJECT_ID", "BQ_DATASET")
    missing = [name for name in required if not os.environ.get(name)]
    if missing:
        raise ConfigError(
            "Missing required environment variables: " + ", ".join(missing)
        )

    try:
        token = resolve_secret(os.environ["SCIM_BEARER_TOKEN"])
    except SecretResolutionError as exc:
        raise ConfigError(f"SCIM_BEARER_TOKEN: {exc}") from exc

    scim = ScimConfig(
        api_base_url=os.environ["SCIM_API_BASE_URL"].rstrip("/"),
        token=token,
        page_size=_int_env("SCIM_PAGE_SIZE", 100),
        max_pages=_int_env("SCIM_MAX_PAGES", 100),
        page_delay_seconds=_float_env("SCIM_PAGE_DELAY_SECONDS", 1.0),
        request_timeout_seconds=_float_env("SCIM_REQUEST_TIMEOUT_SECONDS", 30.0),
    )
    if scim.page_size < 1 or scim.max_pages < 1:
        raise ConfigError("SCIM_PAGE_SIZE and SCIM_MAX_PAGES must be positive")

    bigquery = BigQueryConfig(
        project_id=os.environ["BQ_PROJECT_ID"],
        dataset_id=os.environ["BQ_DATASET"],
        staging_table=os.environ.get("BQ_STAGING_TABLE") or "scim_users_staging",
        target_table=os.environ.get("BQ_TARGET_TABLE") or "scim_users",
        location=os.environ.get("BQ_LOCATION") or None,
        sa_key_file=os.environ.get("GOOGLE_SA_KEY_FILE") or None,  # optional
    )

    scheduler = SchedulerConfig(
        sync_interval_min=_int_env("SYNC_INTERVAL_MIN", 60),
        misfire_grace_time=_int_env("SYNC_MISFIRE_GRACE_SECONDS", 300),
    )

    return SyncConfig(
        tenant_id=tenant_id,
        scim=scim,
        bigquery=bigquery,
        scheduler=scheduler,
    )
