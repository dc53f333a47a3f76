"""
Client for the hosted relational backend.

The backend exposes each table as a PostgREST resource under ``/rest/v1``:
listings are ``GET /<table>?select=*&order=created_at.desc``, filters are
``<column>=eq.<value>``, pagination is ``offset``/``limit`` and writes ask for
the affected rows back with ``Prefer: return=representation``.
"""

import time
from functools import wraps
from typing import Any, Callable, Optional

import httpx

from storefront.core.logging_config import get_logger

logger = get_logger(__name__)

RETURN_ROWS = "return=representation"

class RemoteBackendError(Exception):
    """A remote call failed. ``transient`` failures (network, 5xx) may be retried."""

    def __init__(self, message: str, status_code: Optional[int] = None, transient: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient

def retry_transient(fn):
    """Retry a mutation on transient failure with linear backoff (backoff * attempt)."""
    @wraps(fn)
    def wrapper(self, *args, **kwargs):
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn(self, *args, **kwargs)
            except RemoteBackendError as exc:
                if attempt >= self.max_attempts or not exc.transient:
                    raise
                delay = self.backoff * attempt
                logger.warning(
                    f"{fn.__name__} failed (attempt {attempt}/{self.max_attempts}), retrying in {delay:.2f}s: {exc}"
                )
                self._sleep(delay)
    return wrapper

class RemoteBackend:
    def __init__(
        self,
        url: str,
        key: str,
        timeout: float = 10.0,
        max_attempts: int = 3,
        backoff: float = 0.3,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self._sleep = sleep
        self.client = httpx.Client(
            base_url=f"{url.rstrip('/')}/rest/v1",
            headers={"apikey": key, "Authorization": f"Bearer {key}"},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def _request(
        self,
        method: str,
        table: str,
        params: Optional[dict] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        headers = {"Prefer": prefer} if prefer else None
        try:
            response = self.client.request(method, f"/{table}", params=params, json=json, headers=headers)
        except httpx.HTTPError as exc:
            raise RemoteBackendError(f"{method} {table} failed: {exc}") from exc

        if response.status_code >= 400:
            raise RemoteBackendError(
                f"{method} {table} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                transient=response.status_code >= 500,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteBackendError(f"{method} {table} returned a non-JSON body") from exc

    def select(
        self,
        table: str,
        filters: Optional[dict] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        columns: str = "*",
    ) -> list[dict]:
        """Rows newest first, filtered by equality and paginated by page/limit."""
        params = {"select": columns, "order": "created_at.desc"}
        for column, value in (filters or {}).items():
            if value is not None:
                params[column] = f"eq.{value}"
        if limit is not None:
            params["limit"] = str(limit)
            params["offset"] = str((max(page or 1, 1) - 1) * limit)
        rows = self._request("GET", table, params=params)
        if not isinstance(rows, list):
            raise RemoteBackendError(f"GET {table} returned an unexpected payload", transient=False)
        return rows

    def select_one(self, table: str, row_id: str, columns: str = "*") -> Optional[dict]:
        """The row with ``row_id``, or None when it does not exist."""
        rows = self._request("GET", table, params={"select": columns, "id": f"eq.{row_id}", "limit": "1"})
        if not isinstance(rows, list):
            raise RemoteBackendError(f"GET {table} returned an unexpected payload", transient=False)
        return rows[0] if rows else None

    @retry_transient
    def insert(self, table: str, row: dict) -> dict:
        rows = self._request("POST", table, json=row, prefer=RETURN_ROWS)
        if not rows:
            raise RemoteBackendError(f"POST {table} returned no row", transient=False)
        return rows[0] if isinstance(rows, list) else rows

    @retry_transient
    def update(self, table: str, row_id: str, changes: dict) -> Optional[dict]:
        """Updated row, or None when no row matched ``row_id``."""
        rows = self._request("PATCH", table, params={"id": f"eq.{row_id}"}, json=changes, prefer=RETURN_ROWS)
        return rows[0] if rows else None

    @retry_transient
    def delete(self, table: str, row_id: str) -> list[dict]:
        rows = self._request("DELETE", table, params={"id": f"eq.{row_id}"}, prefer=RETURN_ROWS)
        return rows or []

    def ping(self) -> None:
        self._request("GET", "products", params={"select": "id", "limit": "1"})
