"""
Supabase PostgREST remote store.

Talks to ``{supabase_url}/rest/v1/{table}`` with the project key as
``apikey`` and the signed-in user's access token as bearer, so row level
security applies exactly as it does for the mobile clients.

Filter encoding:
    {"club_id": "abc"}            -> club_id=eq.abc
    {"id": ["a", "b"]}            -> id=in.("a","b")
    since="2024-03-01T00:00:00Z"  -> updated_at=gte.2024-03-01T00:00:00Z
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp

from ..exceptions import NotAuthenticatedError, RemoteError
from .base import Filters, RemoteStore

logger = logging.getLogger(__name__)

TokenSource = Callable[[], Awaitable[str | None]]


class PostgrestRemoteStore(RemoteStore):
    """RemoteStore over the Supabase REST API.

    Args:
        supabase_url: Supabase project URL
        supabase_key: Publishable (anon) key
        token_source: Returns the current user's access token (None when
            signed out); usually SessionCache.get_access_token
        http: Optional shared HTTP session (owned by the caller)
        timeout: Timeout for each request in seconds
    """

    def __init__(
        self,
        supabase_url: str,
        supabase_key: str,
        token_source: TokenSource,
        http: aiohttp.ClientSession | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.rest_url = f"{supabase_url.rstrip('/')}/rest/v1"
        self.supabase_key = supabase_key
        self.token_source = token_source
        self.timeout = timeout
        self._http = http
        self._owns_http = http is None

    def _session(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_http = True
        return self._http

    async def close(self) -> None:
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None

    # =========================================================================
    # RemoteStore
    # =========================================================================

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        since: str | None = None,
        columns: str = "*",
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        if _has_empty_membership(filters):
            return []

        params = [("select", columns)] + encode_filters(filters)
        if since:
            params.append(("updated_at", f"gte.{since}"))
        if limit is not None:
            params.append(("limit", str(limit)))

        result = await self._request("GET", table, "select", params=params)
        return result if isinstance(result, list) else []

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        result = await self._request(
            "POST",
            table,
            "insert",
            payload=row,
            prefer="return=representation",
        )
        return _first_row(table, "insert", result)

    async def update(
        self, table: str, row_id: str, changes: dict[str, Any]
    ) -> dict[str, Any] | None:
        result = await self._request(
            "PATCH",
            table,
            "update",
            params=[("id", f"eq.{row_id}")],
            payload=changes,
            prefer="return=representation",
        )
        if isinstance(result, list) and result:
            return result[0]
        return None

    async def upsert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        result = await self._request(
            "POST",
            table,
            "upsert",
            payload=row,
            prefer="resolution=merge-duplicates,return=representation",
        )
        return _first_row(table, "upsert", result)

    async def delete(self, table: str, filters: Filters) -> None:
        if not filters:
            raise ValueError(f"Refusing to delete from {table} without filters")
        if _has_empty_membership(filters):
            return
        await self._request(
            "DELETE", table, "delete", params=encode_filters(filters), prefer="return=minimal"
        )

    # =========================================================================
    # HTTP
    # =========================================================================

    async def _headers(self, prefer: str | None) -> dict[str, str]:
        token = await self.token_source()
        if not token:
            raise NotAuthenticatedError()
        headers = {
            "apikey": self.supabase_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        operation: str,
        params: list[tuple[str, str]] | None = None,
        payload: dict[str, Any] | None = None,
        prefer: str | None = None,
    ) -> Any:
        headers = await self._headers(prefer)
        url = f"{self.rest_url}/{table}"

        try:
            async with self._session().request(
                method, url, params=params, json=payload, headers=headers
            ) as response:
                text = await response.text()
                if response.status >= 400:
                    raise RemoteError(
                        table, operation, status=response.status, detail=_error_detail(text)
                    )
                if not text.strip():
                    return None
                return json.loads(text)
        except (aiohttp.ClientError, TimeoutError) as e:
            raise RemoteError(table, operation, cause=e) from e
        except json.JSONDecodeError as e:
            raise RemoteError(table, operation, detail="Invalid JSON response", cause=e) from e


def encode_filters(filters: Filters | None) -> list[tuple[str, str]]:
    """Encode equality / membership filters as PostgREST query params."""
    params: list[tuple[str, str]] = []
    for column, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set, frozenset)):
            quoted = ",".join(f'"{v}"' for v in sorted(str(v) for v in value))
            params.append((column, f"in.({quoted})"))
        elif value is None:
            params.append((column, "is.null"))
        elif isinstance(value, bool):
            params.append((column, f"eq.{str(value).lower()}"))
        else:
            params.append((column, f"eq.{value}"))
    return params


def _has_empty_membership(filters: Filters | None) -> bool:
    return any(
        isinstance(value, (list, tuple, set, frozenset)) and not value
        for value in (filters or {}).values()
    )


def _first_row(table: str, operation: str, result: Any) -> dict[str, Any]:
    if isinstance(result, list) and result:
        return result[0]
    if isinstance(result, dict):
        return result
    raise RemoteError(table, operation, detail="No row returned")


def _error_detail(text: str) -> str:
    """Extract the message from a PostgREST error body."""
    try:
        body = json.loads(text)
    except json.JSONDecodeError:
        return text[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("msg") or body.get("hint") or body)
    return text[:200]
