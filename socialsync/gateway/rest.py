"""
httpx client for the backend's auto-generated REST API.

Conventions:
  - Tables live under ``/rest/v1/{table}``; filters are query params
  - Inserts/updates ask for ``Prefer: return=representation``
  - Counts use ``HEAD`` + ``Prefer: count=exact`` and read ``Content-Range``
  - Procedures are ``POST /rest/v1/rpc/{name}``

Realtime INSERT feeds are served by ``PollingRealtime``.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from socialsync.config import settings
from socialsync.exceptions import TransportError
from socialsync.gateway.base import DataGateway, Embed, InsertCallback, Order, RealtimeSubscription, Row
from socialsync.gateway.filters import Filter
from socialsync.gateway.realtime import PollingRealtime

logger = logging.getLogger(__name__)


def render_select(table: str, embeds: Sequence[Embed]) -> str:
    """Build the ``select`` parameter, embedding related rows by foreign key."""
    parts = ["*"]
    for embed in embeds:
        parts.append(f"{embed.alias}:{embed.table}!{table}_{embed.column}_fkey(*)")
    return ",".join(parts)


def parse_content_range(header: Optional[str]) -> int:
    """Extract the total from ``Content-Range: 0-24/3573`` or ``*/0``."""
    if not header or "/" not in header:
        return 0
    total = header.rsplit("/", 1)[1]
    try:
        return int(total)
    except ValueError:
        return 0


class RestGateway(DataGateway):
    """Gateway talking to the hosted backend over HTTP."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        anon_key: Optional[str] = None,
        access_token: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        base_url = (base_url or settings.backend_url).rstrip("/")
        anon_key = anon_key if anon_key is not None else settings.backend_anon_key
        token = access_token or settings.backend_access_token or anon_key
        headers = {
            "apikey": anon_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        self._client = httpx.AsyncClient(
            base_url=f"{base_url}/rest/v1",
            headers=headers,
            timeout=timeout or settings.request_timeout_seconds,
            transport=transport,
        )
        self._realtime = PollingRealtime(
            self,
            interval=poll_interval or settings.realtime_poll_interval_seconds,
        )

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        target: str,
        *,
        params: Optional[List[Tuple[str, str]]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"{operation} {target} transport error: {e}")
            raise TransportError(operation, target, detail=str(e)) from e

        if resp.status_code >= 400:
            detail = resp.text[:500]
            logger.warning(f"{operation} {target} returned {resp.status_code}: {detail}")
            raise TransportError(operation, target, resp.status_code, detail)
        return resp

    @staticmethod
    def _decode(resp: httpx.Response, operation: str, target: str) -> Any:
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(operation, target, resp.status_code, "Invalid JSON body") from e

    # ------------------------------------------------------------------
    # Gateway contract
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        *,
        where: Optional[Filter] = None,
        order: Optional[Order] = None,
        embeds: Sequence[Embed] = (),
        limit: Optional[int] = None,
    ) -> List[Row]:
        params = [("select", render_select(table, embeds))]
        if where is not None:
            params.extend(where.to_params())
        if order is not None:
            params.append(("order", order.render()))
        if limit is not None:
            params.append(("limit", str(limit)))

        resp = await self._request("GET", f"/{table}", "select", table, params=params)
        return self._decode(resp, "select", table) or []

    async def insert(self, table: str, values: Row, *, embeds: Sequence[Embed] = ()) -> Row:
        resp = await self._request(
            "POST",
            f"/{table}",
            "insert",
            table,
            params=[("select", render_select(table, embeds))],
            json=values,
            headers={"Prefer": "return=representation"},
        )
        data = self._decode(resp, "insert", table)
        if isinstance(data, list):
            if not data:
                raise TransportError("insert", table, resp.status_code, "Empty representation")
            return data[0]
        if not isinstance(data, dict):
            raise TransportError("insert", table, resp.status_code, "Unexpected representation")
        return data

    async def update(self, table: str, values: Row, *, where: Filter) -> List[Row]:
        resp = await self._request(
            "PATCH",
            f"/{table}",
            "update",
            table,
            params=where.to_params(),
            json=values,
            headers={"Prefer": "return=representation"},
        )
        return self._decode(resp, "update", table) or []

    async def delete(self, table: str, *, where: Filter) -> None:
        await self._request("DELETE", f"/{table}", "delete", table, params=where.to_params())

    async def rpc(self, name: str, params: Row) -> Any:
        resp = await self._request("POST", f"/rpc/{name}", "rpc", name, json=params)
        return self._decode(resp, "rpc", name)

    async def count(self, table: str, *, where: Optional[Filter] = None) -> int:
        params = [("select", "*")]
        if where is not None:
            params.extend(where.to_params())
        resp = await self._request(
            "HEAD",
            f"/{table}",
            "count",
            table,
            params=params,
            headers={"Prefer": "count=exact"},
        )
        return parse_content_range(resp.headers.get("content-range"))

    async def subscribe(
        self,
        channel_name: str,
        table: str,
        on_insert: InsertCallback,
        *,
        where: Optional[Filter] = None,
    ) -> RealtimeSubscription:
        return await self._realtime.subscribe(channel_name, table, on_insert, where=where)

    async def aclose(self):
        await self._realtime.stop()
        await self._client.aclose()
