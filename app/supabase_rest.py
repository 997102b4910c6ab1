"""Chat store backed by the Supabase PostgREST API."""

from __future__ import annotations

import os
from typing import Any, Iterable, Sequence

import httpx

from chat_store import NOT_FOUND_CODE, StoreError


def supabase_url() -> str:
    return (os.getenv("SUPABASE_URL") or "").strip().rstrip("/")


def supabase_service_role_key() -> str:
    return (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()


def supabase_rest_enabled() -> bool:
    return bool(supabase_url() and supabase_service_role_key())


def _error_from_response(res: httpx.Response) -> StoreError:
    try:
        body = res.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        return StoreError(code=str(res.status_code), message=res.text or res.reason_phrase)
    return StoreError(
        code=body.get("code") or str(res.status_code),
        message=body.get("message") or res.text,
        details=body.get("details"),
        hint=body.get("hint"),
    )


def _eq_params(filters: dict) -> dict:
    params = {}
    for col, value in filters.items():
        if value is None:
            params[col] = "is.null"
        elif isinstance(value, bool):
            params[col] = f"eq.{str(value).lower()}"
        else:
            params[col] = f"eq.{value}"
    return params


class SupabaseRestStore:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        access_token: str | None = None,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._base_url = (base_url or supabase_url()).rstrip("/")
        self._api_key = api_key or supabase_service_role_key()
        self._access_token = access_token or self._api_key
        self._client = client or httpx.Client(timeout=timeout)

    def with_access_token(self, access_token: str) -> "SupabaseRestStore":
        """Same store acting as the user behind ``access_token`` (RLS, auth.uid())."""
        return SupabaseRestStore(self._base_url, self._api_key, access_token, client=self._client)

    def _headers(self, prefer: str | None = None) -> dict:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _url(self, path: str) -> str:
        return f"{self._base_url}/rest/v1/{path}"

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            res = self._client.request(method, self._url(path), **kwargs)
        except httpx.HTTPError as exc:
            raise StoreError(code=None, message=f"{type(exc).__name__}: {exc}") from exc
        if res.status_code >= 400:
            raise _error_from_response(res)
        return res

    def select_one(self, table: str, filters: dict) -> dict | None:
        params = _eq_params(filters)
        params["select"] = "*"
        params["limit"] = "2"
        rows = self._send("GET", table, params=params, headers=self._headers()).json()
        if len(rows) > 1:
            raise StoreError(NOT_FOUND_CODE, "JSON object requested, multiple (or no) rows returned")
        return rows[0] if rows else None

    def select(self, table: str, filters: dict, columns: Sequence[str] | None = None) -> list[dict]:
        params = _eq_params(filters)
        params["select"] = ",".join(columns) if columns else "*"
        return self._send("GET", table, params=params, headers=self._headers()).json()

    def insert(self, table: str, rows: Iterable[dict]) -> None:
        self._send("POST", table, json=list(rows), headers=self._headers("return=minimal"))

    def upsert(self, table: str, rows: Iterable[dict], on_conflict: Sequence[str]) -> None:
        self._send(
            "POST",
            table,
            json=list(rows),
            params={"on_conflict": ",".join(on_conflict)},
            headers=self._headers("resolution=merge-duplicates,return=minimal"),
        )

    def delete(self, table: str, filters: dict) -> None:
        self._send("DELETE", table, params=_eq_params(filters), headers=self._headers("return=minimal"))

    def rpc(self, name: str, params: dict) -> Any:
        res = self._send("POST", f"rpc/{name}", json=params, headers=self._headers())
        if not res.content:
            return None
        return res.json()

    def close(self) -> None:
        self._client.close()
