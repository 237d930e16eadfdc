"""
Async client for the hosted Proptor data platform.

The platform exposes a PostgREST-style interface under ``/rest/v1``: tables
are addressed by name, filters are query parameters (``col=eq.value``) and
stored procedures are called through ``/rpc/<name>``. Row-level security on
the platform scopes every call to the bearer token's user. The token's owner
is looked up through the auth service under ``/auth/v1``.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx

REST_PREFIX = "/rest/v1"
AUTH_PREFIX = "/auth/v1"


class PlatformError(Exception):
    """A platform call failed (transport error or non-2xx response)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _encode_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def build_filters(filters: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Translate equality filters into PostgREST query parameters."""
    params: Dict[str, str] = {}
    for column, value in (filters or {}).items():
        op = "is" if value is None else "eq"
        params[column] = f"{op}.{_encode_value(value)}"
    return params


class PlatformClient:
    """Thin wrapper over ``httpx.AsyncClient`` speaking the platform's REST dialect."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        access_token: Optional[str] = None,
    ):
        self._http = http_client
        self.api_key = api_key
        self.access_token = access_token

    @classmethod
    def create(cls, base_url: str, api_key: str, timeout: float = 10.0) -> "PlatformClient":
        http_client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
        )
        return cls(http_client, api_key)

    def with_token(self, access_token: Optional[str]) -> "PlatformClient":
        """Same connection pool, different caller identity."""
        return PlatformClient(self._http, self.api_key, access_token)

    async def aclose(self) -> None:
        await self._http.aclose()

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        try:
            resp = await self._http.request(
                method, path, params=params, json=json, headers=self._headers(prefer)
            )
        except httpx.HTTPError as e:
            raise PlatformError(f"{method} {path} failed: {type(e).__name__}") from e

        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = None
            detail = body.get("message", resp.text) if isinstance(body, dict) else resp.text
            raise PlatformError(
                f"{method} {path} returned {resp.status_code}: {detail}",
                status_code=resp.status_code,
            )
        if not resp.content:
            return None
        return resp.json()

    async def get_user(self) -> Dict[str, Any]:
        """The auth user owning the current access token; 401 when it is invalid."""
        if not self.access_token:
            raise PlatformError("No access token", status_code=401)
        user = await self._request("GET", f"{AUTH_PREFIX}/user")
        if not isinstance(user, dict) or not user.get("id"):
            raise PlatformError("Auth user response has no id", status_code=401)
        return user

    async def rpc(self, function: str, params: Mapping[str, Any]) -> Any:
        return await self._request("POST", f"{REST_PREFIX}/rpc/{function}", json=dict(params))

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Optional[Mapping[str, Any]] = None,
        order: Optional[Tuple[str, bool]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Read rows from ``table``.

        ``order`` is ``(column, descending)``. Embedded resources use the
        PostgREST select syntax, e.g. ``"*,contacts!inner(id,full_name)"``.
        """
        params = {"select": "".join(columns.split())}
        params.update(build_filters(filters))
        if order:
            column, descending = order
            params["order"] = f"{column}.{'desc' if descending else 'asc'}"
        return await self._request("GET", f"{REST_PREFIX}/{table}", params=params) or []

    async def insert(self, table: str, row: Mapping[str, Any]) -> List[Dict[str, Any]]:
        return await self._request(
            "POST", f"{REST_PREFIX}/{table}", json=dict(row), prefer="return=representation"
        ) or []

    async def upsert(
        self,
        table: str,
        row: Mapping[str, Any],
        on_conflict: Sequence[str],
    ) -> List[Dict[str, Any]]:
        return await self._request(
            "POST",
            f"{REST_PREFIX}/{table}",
            params={"on_conflict": ",".join(on_conflict)},
            json=dict(row),
            prefer="resolution=merge-duplicates,return=representation",
        ) or []

    async def update(
        self,
        table: str,
        values: Mapping[str, Any],
        filters: Mapping[str, Any],
    ) -> List[Dict[str, Any]]:
        return await self._request(
            "PATCH",
            f"{REST_PREFIX}/{table}",
            params=build_filters(filters),
            json=dict(values),
            prefer="return=representation",
        ) or []
