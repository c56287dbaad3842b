"""
Read-only client for the legacy platform's paginated data API.

Records are fetched with ``GET {base}/api/1.1/obj/{type}?cursor=&limit=`` and
come back wrapped as ``{"response": {"cursor", "results", "count", "remaining"}}``.
Rate limiting (429) and server errors are retried with exponential backoff.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Mapping

import requests

from sheetbridge.migration.errors import SourceApiError, SourceRateLimitedError
from sheetbridge.migration.metrics import record_source_request, record_source_retry
from sheetbridge.migration.source import ensure_source_ready

API_PREFIX = "/api/1.1/obj"
RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504, 520, 521, 522, 524, 525})


@dataclass(frozen=True)
class SourcePage:
    """One page of records returned by the data API."""

    source_type: str
    cursor: int
    results: List[Mapping[str, Any]]
    count: int
    remaining: int

    @property
    def next_cursor(self) -> int:
        return self.cursor + self.count


class LegacySourceClient:
    """Fetch records from the legacy platform one page at a time."""

    def __init__(
        self,
        *,
        base_url: str,
        api_token: str,
        session: requests.Session | None = None,
        page_size: int = 100,
        timeout: float = 30.0,
        max_retries: int = 5,
        backoff_seconds: float = 1.0,
        page_delay: float = 0.05,
        sleep_fn=time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.page_size = max(1, int(page_size))
        self.timeout = timeout
        self.max_retries = max(0, int(max_retries))
        self.backoff_seconds = backoff_seconds
        self.page_delay = page_delay
        self.sleep = sleep_fn
        self.logger = logger or logging.getLogger(__name__)
        self._auth_headers = {
            "Authorization": f"Bearer {api_token}",
            "Accept": "application/json",
        }

    # Public API -----------------------------------------------------------------

    def fetch_page(self, source_type: str, *, cursor: int = 0, limit: int | None = None) -> SourcePage:
        params = {"cursor": cursor, "limit": limit or self.page_size}
        payload = self._get_json(self._type_url(source_type), source_type, params=params)
        body = payload.get("response") or {}
        results = list(body.get("results") or [])
        return SourcePage(
            source_type=source_type,
            cursor=int(body.get("cursor", cursor) or 0),
            results=results,
            count=int(body.get("count", len(results)) or 0),
            remaining=int(body.get("remaining", 0) or 0),
        )

    def iter_pages(self, source_type: str, *, limit: int | None = None) -> Iterator[SourcePage]:
        """
        Walk every page for ``source_type``.

        Stops when the API reports nothing remaining, returns an empty page, or
        ``limit`` records have been yielded. The last page is trimmed to fit the
        limit.
        """

        cursor = 0
        yielded = 0
        while True:
            page_limit = self.page_size
            if limit is not None:
                page_limit = min(page_limit, limit - yielded)
                if page_limit <= 0:
                    return
            page = self.fetch_page(source_type, cursor=cursor, limit=page_limit)
            if not page.results:
                return
            if limit is not None and yielded + len(page.results) > limit:
                page = SourcePage(
                    source_type=page.source_type,
                    cursor=page.cursor,
                    results=page.results[: limit - yielded],
                    count=limit - yielded,
                    remaining=page.remaining,
                )
            yielded += len(page.results)
            self.logger.debug(
                "Fetched source page",
                extra={
                    "source_type": source_type,
                    "cursor": page.cursor,
                    "page_count": len(page.results),
                    "remaining": page.remaining,
                },
            )
            yield page
            if page.remaining <= 0:
                return
            cursor = page.cursor + len(page.results)
            if self.page_delay:
                self.sleep(self.page_delay)

    def iter_records(self, source_type: str, *, limit: int | None = None) -> Iterator[Mapping[str, Any]]:
        for page in self.iter_pages(source_type, limit=limit):
            yield from page.results

    def fetch_all(self, source_type: str, *, limit: int | None = None) -> List[Mapping[str, Any]]:
        records = list(self.iter_records(source_type, limit=limit))
        self.logger.info(
            "Fetched source records",
            extra={"source_type": source_type, "record_count": len(records)},
        )
        return records

    def get_by_id(self, source_type: str, source_id: str) -> Mapping[str, Any] | None:
        """Return one record, or ``None`` when the API answers 404."""

        url = f"{self._type_url(source_type)}/{source_id}"
        payload = self._get_json(url, source_type, allow_not_found=True)
        if payload is None:
            return None
        return payload.get("response") or None

    def count_all(self, source_type: str) -> int:
        page = self.fetch_page(source_type, cursor=0, limit=1)
        return page.count + page.remaining

    # Internal helpers -----------------------------------------------------------

    def _type_url(self, source_type: str) -> str:
        return f"{self.base_url}{API_PREFIX}/{requests.utils.quote(source_type, safe='')}"

    def _get_json(
        self,
        url: str,
        source_type: str,
        *,
        params: Mapping[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> dict | None:
        attempt = 0
        while True:
            try:
                response = self.session.get(url, headers=self._auth_headers, params=params, timeout=self.timeout)
            except (requests.ConnectionError, requests.Timeout) as exc:
                if attempt >= self.max_retries:
                    record_source_request(source_type, "failure")
                    raise SourceApiError(f"Request to {url} failed after {attempt + 1} attempts: {exc}") from exc
                self._backoff(source_type, attempt, reason="network", detail=str(exc))
                attempt += 1
                continue

            status = response.status_code
            if status == 404 and allow_not_found:
                record_source_request(source_type, "not_found")
                return None
            if status in RETRYABLE_STATUS or status >= 500:
                if attempt >= self.max_retries:
                    record_source_request(source_type, "failure")
                    error_cls = SourceRateLimitedError if status == 429 else SourceApiError
                    raise error_cls(
                        f"{source_type} request still failing with HTTP {status} after {attempt + 1} attempts.",
                        status_code=status,
                    )
                self._backoff(source_type, attempt, reason=str(status), detail=f"HTTP {status}")
                attempt += 1
                continue
            if not response.ok:
                record_source_request(source_type, "failure")
                self.logger.error(
                    "Source API request failed",
                    extra={"source_type": source_type, "status_code": status, "body": response.text[:500]},
                )
                raise SourceApiError(f"{source_type} request failed with HTTP {status}.", status_code=status)
            try:
                payload = response.json()
            except ValueError as exc:
                record_source_request(source_type, "failure")
                raise SourceApiError(f"{source_type} response was not valid JSON.", status_code=status) from exc
            record_source_request(source_type, "success")
            return payload

    def _backoff(self, source_type: str, attempt: int, *, reason: str, detail: str) -> None:
        delay = self.backoff_seconds * (2**attempt)
        record_source_retry(source_type, reason)
        self.logger.warning(
            "Retrying source request",
            extra={"source_type": source_type, "attempt": attempt + 1, "delay_seconds": delay, "reason": detail},
        )
        self.sleep(delay)


def create_source_client(config: Mapping[str, Any], *, session: requests.Session | None = None) -> LegacySourceClient:
    """Build a client from Flask config values."""

    ensure_source_ready(config)
    return LegacySourceClient(
        base_url=config["MIGRATION_SOURCE_BASE_URL"],
        api_token=config["MIGRATION_SOURCE_API_TOKEN"],
        session=session,
        page_size=config.get("MIGRATION_PAGE_SIZE", 100),
        timeout=config.get("MIGRATION_SOURCE_TIMEOUT_SECONDS", 30.0),
        max_retries=config.get("MIGRATION_SOURCE_MAX_RETRIES", 5),
        backoff_seconds=config.get("MIGRATION_SOURCE_BACKOFF_SECONDS", 1.0),
        page_delay=config.get("MIGRATION_PAGE_DELAY_SECONDS", 0.05),
    )


def chunk_records(records: Iterable[Mapping[str, Any]], chunk_size: int) -> Iterator[List[Mapping[str, Any]]]:
    """Group an iterable of records into lists of ``chunk_size``."""

    chunk: List[Mapping[str, Any]] = []
    for record in records:
        chunk.append(record)
        if len(chunk) == chunk_size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk
