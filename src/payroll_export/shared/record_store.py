"""Record store access over the PostgREST (Supabase) HTTP API.

The pipeline only needs three table operations (filtered select, insert,
update by id) plus a remote procedure call used to provision the
per-organization tables.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

import httpx

from .config import PayrollExportConfig, config
from .errors import RecordStoreError
from .schemas import PRIMARY_KEY

logger = logging.getLogger(__name__)

_record_store: Optional["RecordStore"] = None


class RecordStore(Protocol):
    async def select(
        self,
        table: str,
        *,
        eq: Optional[Mapping[str, Any]] = None,
        in_: Optional[Mapping[str, Sequence[Any]]] = None,
        unflagged: Optional[str] = None,
        order_by: Sequence[str] = (),
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]: ...

    async def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]: ...

    async def update(self, table: str, record_id: Any, values: Mapping[str, Any]) -> None: ...

    async def rpc(self, name: str, params: Mapping[str, Any]) -> Any: ...


def _quote(value: Any) -> str:
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


class PostgrestRecordStore:
    """RecordStore implementation for a PostgREST endpoint."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0):
        self._rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
        }
        self._timeout = timeout

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self._rest_url}/{path}"
        headers = {**self._headers, **kwargs.pop("headers", {})}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("Record store %s %s failed: %s", method, path, exc)
            raise RecordStoreError(f"Record store request failed: {exc}") from exc
        if resp.is_error:
            body = _response_body(resp)
            message = body.get("message") if isinstance(body, dict) else None
            raise RecordStoreError(
                message or f"Record store returned HTTP {resp.status_code}",
                status=resp.status_code,
                body=body,
            )
        return resp

    async def select(
        self,
        table: str,
        *,
        eq: Optional[Mapping[str, Any]] = None,
        in_: Optional[Mapping[str, Sequence[Any]]] = None,
        unflagged: Optional[str] = None,
        order_by: Sequence[str] = (),
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params: List[tuple] = [("select", "*")]
        for column, value in (eq or {}).items():
            params.append((column, f"eq.{value}"))
        for column, values in (in_ or {}).items():
            params.append((column, f"in.({','.join(_quote(v) for v in values)})"))
        if unflagged:
            params.append(("or", f"({unflagged}.eq.false,{unflagged}.is.null)"))
        if order_by:
            params.append(("order", ",".join(f"{c}.asc" for c in order_by)))
        if limit is not None:
            params.append(("limit", str(limit)))
        resp = await self._request("GET", table, params=params)
        data = resp.json()
        return data if isinstance(data, list) else []

    async def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        resp = await self._request(
            "POST",
            table,
            json=list(rows),
            headers={"Prefer": "return=representation"},
        )
        return resp.json()

    async def update(self, table: str, record_id: Any, values: Mapping[str, Any]) -> None:
        await self._request(
            "PATCH",
            table,
            params={PRIMARY_KEY: f"eq.{record_id}"},
            json=dict(values),
            headers={"Prefer": "return=minimal"},
        )

    async def rpc(self, name: str, params: Mapping[str, Any]) -> Any:
        resp = await self._request("POST", f"rpc/{name}", json=dict(params))
        return resp.json() if resp.content else None


def _response_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


def build_record_store(settings: PayrollExportConfig) -> RecordStore:
    settings.require_record_store()
    return PostgrestRecordStore(
        settings.supabase_url,
        settings.record_store_key,
        timeout=settings.http_timeout_seconds,
    )


def get_record_store() -> RecordStore:
    """Return the cached record store, raising ConfigurationMissing if unset."""
    global _record_store
    if _record_store is None:
        _record_store = build_record_store(config)
    return _record_store
