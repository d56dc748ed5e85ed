# apps/pointcard/services/store_client.py

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

import requests

from apps.pointcard.services.errors import NotFound, UpstreamUnavailable

log = logging.getLogger("pointcard.store")


@dataclass(frozen=True)
class QueryPage:
    results: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False


class DocumentStoreClient:
    """
    Blocking REST client for the schema-flexible document store.

    Design goals:
    - One instance per process, injected everywhere (open at startup, close at shutdown)
    - Explicit REST usage, version pinned
    - Centralized retry and rate-limit handling
    - Every failure surfaces as a CoreError (NotFound / UpstreamUnavailable)
    """

    API_VERSION = "2022-06-28"
    TIMEOUT_SECONDS = 20
    MAX_RETRIES = 3
    RETRY_BACKOFF_SECONDS = 1.5
    MAX_PAGE_SIZE = 100

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.notion.com/v1",
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_backoff_seconds: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise ValueError("DocumentStoreClient requires an api_key")

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else self.TIMEOUT_SECONDS
        self.max_retries = max(1, max_retries if max_retries is not None else self.MAX_RETRIES)
        self.retry_backoff_seconds = (
            retry_backoff_seconds if retry_backoff_seconds is not None else self.RETRY_BACKOFF_SECONDS
        )

        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {api_key.strip()}",
                "Notion-Version": api_version or self.API_VERSION,
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
        )

    # ---------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------
    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "DocumentStoreClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ---------------------------------------------------------
    # Low-level request handler
    # ---------------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Performs a REST request with retry + rate-limit awareness.

        Retries transport errors, 429 and 5xx. A 404 raises NotFound; any other
        4xx fails fast because repeating it cannot succeed.
        """
        url = f"{self.base_url}{path}"
        last_error: Optional[str] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.request(
                    method=method,
                    url=url,
                    json=json,
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                last_error = str(e)
                log.warning("store %s %s failed (attempt %d/%d): %s", method, path, attempt, self.max_retries, e)
                if attempt < self.max_retries:
                    time.sleep(self.retry_backoff_seconds * attempt)
                continue

            if response.status_code == 429:
                retry_after = response.headers.get("Retry-After")
                last_error = "rate limited"
                log.warning("store %s %s rate limited (attempt %d/%d)", method, path, attempt, self.max_retries)
                if attempt < self.max_retries:
                    time.sleep(float(retry_after) if retry_after else self.retry_backoff_seconds)
                continue

            if response.status_code >= 500:
                last_error = f"{response.status_code} {response.text}"
                log.warning("store %s %s returned %s (attempt %d/%d)", method, path, response.status_code, attempt, self.max_retries)
                if attempt < self.max_retries:
                    time.sleep(self.retry_backoff_seconds * attempt)
                continue

            if response.status_code == 404:
                raise NotFound(f"Store object not found: {path}")

            if response.status_code >= 400:
                raise UpstreamUnavailable(
                    f"Store request rejected ({method} {path}): {response.status_code}",
                    detail={"status": response.status_code, "body": response.text[:500]},
                )

            if response.content:
                return response.json()
            return {}

        raise UpstreamUnavailable(
            f"Store request failed after {self.max_retries} attempts: {last_error}",
            detail={"method": method, "path": path},
        )

    # ---------------------------------------------------------
    # Collections
    # ---------------------------------------------------------
    def retrieve_collection_schema(self, collection_id: str) -> Dict[str, str]:
        """
        Returns {property_name: declared_type} for a collection.
        """
        data = self._request("GET", f"/databases/{collection_id}")
        props = data.get("properties") or {}
        schema: Dict[str, str] = {}
        for name, prop in props.items():
            if isinstance(prop, dict):
                schema[str(name)] = str(prop.get("type") or "")
        return schema

    def query_collection(
        self,
        collection_id: str,
        *,
        filter: Optional[Dict[str, Any]] = None,
        sorts: Optional[List[Dict[str, Any]]] = None,
        page_size: int = MAX_PAGE_SIZE,
        start_cursor: Optional[str] = None,
    ) -> QueryPage:
        body: Dict[str, Any] = {"page_size": max(1, min(int(page_size), self.MAX_PAGE_SIZE))}
        if filter:
            body["filter"] = filter
        if sorts:
            body["sorts"] = sorts
        if start_cursor:
            body["start_cursor"] = start_cursor

        data = self._request("POST", f"/databases/{collection_id}/query", json=body)
        results = [r for r in (data.get("results") or []) if isinstance(r, dict)]
        return QueryPage(
            results=results,
            next_cursor=data.get("next_cursor"),
            has_more=bool(data.get("has_more")),
        )

    def iter_collection(
        self,
        collection_id: str,
        *,
        filter: Optional[Dict[str, Any]] = None,
        sorts: Optional[List[Dict[str, Any]]] = None,
        page_size: int = MAX_PAGE_SIZE,
    ) -> Iterator[Dict[str, Any]]:
        """
        Cursor-paginated scan. Holds at most one page in memory.
        """
        cursor: Optional[str] = None
        while True:
            page = self.query_collection(
                collection_id,
                filter=filter,
                sorts=sorts,
                page_size=page_size,
                start_cursor=cursor,
            )
            yield from page.results
            if not page.has_more or not page.next_cursor:
                return
            cursor = page.next_cursor

    # ---------------------------------------------------------
    # Records
    # ---------------------------------------------------------
    def create_record(self, collection_id: str, properties: Dict[str, Any]) -> str:
        data = self._request(
            "POST",
            "/pages",
            json={"parent": {"database_id": collection_id}, "properties": properties},
        )
        record_id = data.get("id")
        if not record_id:
            raise UpstreamUnavailable("Store did not return an id for the created record")
        return str(record_id)

    def update_record(self, record_id: str, properties: Dict[str, Any]) -> None:
        self._request("PATCH", f"/pages/{record_id}", json={"properties": properties})

    def archive_record(self, record_id: str) -> None:
        self._request("PATCH", f"/pages/{record_id}", json={"archived": True})

    def retrieve_record(self, record_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/pages/{record_id}")
