"""Remote catalog backend — the system of record the mirror follows.

``RestRemoteClient`` talks to a PostgREST endpoint (the REST layer a
Supabase project exposes under ``/rest/v1``) with httpx. Any transport or
HTTP failure is surfaced as :class:`TransientRemoteError` so callers can
leave rows pending or skip a batch without caring about the wire details.
"""

import logging
from typing import Optional, Protocol

import httpx

from catalog_mirror.config import Config
from catalog_mirror.errors import TransientRemoteError, UnauthenticatedAccess

logger = logging.getLogger(__name__)


class RemoteClient(Protocol):
    """Contract the engine needs from the remote backend."""

    async def count(self, table: str,
                    filters: Optional[dict] = None) -> int: ...

    async def select_range(self, table: str, start: int, end: int,
                           order: Optional[str] = None,
                           filters: Optional[dict] = None) -> list[dict]: ...

    async def select_updated_after(self, table: str,
                                   timestamp: str) -> list[dict]: ...

    async def select_where(self, table: str, column: str,
                           value: str) -> list[dict]: ...

    async def upsert(self, table: str, row: dict) -> None: ...

    async def delete(self, table: str, row_id: str) -> None: ...

    async def current_user_id(self) -> Optional[str]: ...


def _parse_content_range(header: Optional[str]) -> int:
    """Total from a ``Content-Range`` header such as ``0-19/45`` or ``*/0``."""
    if not header or "/" not in header:
        raise TransientRemoteError(f"Missing row count in response: {header!r}")
    total = header.rsplit("/", 1)[1]
    if total == "*":
        raise TransientRemoteError("Server did not report an exact count")
    try:
        return int(total)
    except ValueError as e:
        raise TransientRemoteError(f"Bad Content-Range header: {header}") from e


class RestRemoteClient:
    """PostgREST client implementing :class:`RemoteClient`."""

    def __init__(self, base_url: str = None, api_key: str = None,
                 access_token: str = None, timeout: float = None,
                 client: httpx.AsyncClient = None):
        self.base_url = (base_url or Config.REMOTE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else Config.REMOTE_API_KEY
        self.access_token = (
            access_token if access_token is not None
            else Config.REMOTE_ACCESS_TOKEN
        )
        self._client = client or httpx.AsyncClient(
            timeout=timeout or Config.REMOTE_TIMEOUT
        )

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    def _headers(self, **extra) -> dict:
        bearer = self.access_token or self.api_key
        headers = {"apikey": self.api_key}
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        headers.update(extra)
        return headers

    def _table_url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransientRemoteError(f"{method} {url} failed: {e}") from e
        return response

    @staticmethod
    def _decode(response: httpx.Response, expect: type = list):
        """Parse a JSON body of the expected shape or raise TransientRemoteError."""
        try:
            payload = response.json()
        except ValueError as e:
            raise TransientRemoteError(
                f"Non-JSON response from {response.request.url}: {e}"
            ) from e
        if not isinstance(payload, expect):
            raise TransientRemoteError(
                f"Expected {expect.__name__} from {response.request.url}, "
                f"got {type(payload).__name__}"
            )
        return payload

    # ── Reads ──────────────────────────────────────────────────

    async def count(self, table: str, filters: Optional[dict] = None) -> int:
        params = {"select": "*", **(filters or {})}
        response = await self._request(
            "HEAD", self._table_url(table), params=params,
            headers=self._headers(Prefer="count=exact"),
        )
        return _parse_content_range(response.headers.get("content-range"))

    async def select_range(self, table: str, start: int, end: int,
                           order: Optional[str] = None,
                           filters: Optional[dict] = None) -> list[dict]:
        """Rows ``start`` through ``end`` inclusive."""
        params = {
            "select": "*",
            "offset": str(start),
            "limit": str(max(end - start + 1, 0)),
            **(filters or {}),
        }
        if order:
            params["order"] = order
        response = await self._request(
            "GET", self._table_url(table), params=params,
            headers=self._headers(),
        )
        return self._decode(response)

    async def select_updated_after(self, table: str,
                                   timestamp: str) -> list[dict]:
        """Rows changed after ``timestamp``, newest first."""
        params = {
            "select": "*",
            "updated_at": f"gt.{timestamp}",
            "order": "updated_at.desc",
        }
        response = await self._request(
            "GET", self._table_url(table), params=params,
            headers=self._headers(),
        )
        return self._decode(response)

    async def select_where(self, table: str, column: str,
                           value: str) -> list[dict]:
        params = {"select": "*", column: f"eq.{value}"}
        response = await self._request(
            "GET", self._table_url(table), params=params,
            headers=self._headers(),
        )
        return self._decode(response)

    # ── Writes ─────────────────────────────────────────────────

    async def upsert(self, table: str, row: dict) -> None:
        await self._request(
            "POST", self._table_url(table), json=row,
            headers=self._headers(
                Prefer="resolution=merge-duplicates,return=minimal"
            ),
        )

    async def delete(self, table: str, row_id: str) -> None:
        await self._request(
            "DELETE", self._table_url(table),
            params={"id": f"eq.{row_id}"}, headers=self._headers(),
        )

    # ── Auth ───────────────────────────────────────────────────

    async def current_user_id(self) -> Optional[str]:
        """Id of the signed-in user, or None when nobody is signed in.

        Raises UnauthenticatedAccess when the server rejects the session.
        """
        if not self.access_token:
            return None
        try:
            response = await self._client.get(
                f"{self.base_url}/auth/v1/user", headers=self._headers()
            )
        except httpx.HTTPError as e:
            raise TransientRemoteError(f"User lookup failed: {e}") from e
        if response.status_code in (401, 403):
            raise UnauthenticatedAccess(
                f"Session rejected with HTTP {response.status_code}"
            )
        if response.is_error:
            raise TransientRemoteError(
                f"User lookup failed with HTTP {response.status_code}"
            )
        return self._decode(response, dict).get("id")
