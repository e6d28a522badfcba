"""SCIM 2.0 user listing client with offset pagination."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

import requests

from scripts.directory_sync.config import ScimConfig

logger = logging.getLogger("directory_sync.scim")


class ScimApiError(RuntimeError):
    """Raised when a SCIM page request returns a non-success status."""

    def __init__(self, status_code: int, body: str, url: str = "", problem: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.url = url
        problem = problem or f"SCIM request failed with HTTP {status_code}"
        super().__init__(f"{problem}: {body}")


class ScimClient:
    """Fetches the full user listing for a tenant, one page at a time."""

    def __init__(
        self,
        config: ScimConfig,
        session: Optional[requests.Session] = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self._base = config.api_base_url.rstrip("/")
        self._page_delay = config.page_delay_seconds
        self._timeout = config.request_timeout_seconds
        self._sleep = sleep_fn
        self._session = session or requests.Session()
        self._session.headers.update({
            "Authorization": f"Bearer {config.token}",
            "Accept": "application/scim+json, application/json",
        })

    def users_url(self, tenant_id: str) -> str:
        return f"{self._base}/{tenant_id}/scim/v2/Users"

    def _get_page(self, url: str, start_index: int, count: int) -> dict[str, Any]:
        resp = self._session.get(
            url,
            params={"startIndex": start_index, "count": count},
            timeout=self._timeout,
        )
        if not 200 <= resp.status_code < 300:
            raise ScimApiError(resp.status_code, resp.text, url)
        try:
            page = resp.json()
        except ValueError:
            page = None
        if not isinstance(page, dict):
            raise ScimApiError(
                resp.status_code, resp.text[:500], url,
                problem=f"SCIM response with HTTP {resp.status_code} is not a JSON object",
            )
        return page

    def fetch_all(
        self,
        tenant_id: str,
        page_size: int = 100,
        max_pages: int = 100,
    ) -> list[dict[str, Any]]:
        """Return every user record for the tenant, in API order.

        Issues at most ``max_pages`` requests. Each request starts at the
        1-based offset just past the records already received, so a short
        page never causes records to be skipped. Hitting the page cap before
        ``totalResults`` is reached truncates the result without raising.
        """
        url = self.users_url(tenant_id)
        records: list[dict[str, Any]] = []
        total: Optional[int] = None

        for page_number in range(max_pages):
            if page_number > 0:
                self._sleep(self._page_delay)

            page = self._get_page(url, start_index=len(records) + 1, count=page_size)
            reported = page.get("totalResults")
            if reported is not None:
                total = int(reported)
            elif total is None:
                total = 0
            resources = page.get("Resources") or []
            records.extend(resources)
            logger.debug(
                "Fetched SCIM page %d (%d records, %d/%d)",
                page_number + 1, len(resources), len(records), total,
                extra={"tenant_id": tenant_id},
            )

            if len(records) >= total:
                break
            if not resources:
                logger.warning(
                    "SCIM page at startIndex=%d was empty before totalResults=%d was reached",
                    len(records) + 1, total,
                    extra={"tenant_id": tenant_id},
                )
                break
        else:
            if total is not None and len(records) < total:
                logger.warning(
                    "Stopped after max_pages=%d with %d of %d users",
                    max_pages, len(records), total,
                    extra={"tenant_id": tenant_id, "records": len(records)},
                )

        return records
