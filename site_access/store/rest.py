from __future__ import annotations

import logging
from datetime import date, datetime
from enum import Enum
from typing import Any

import requests

from ..exceptions import BackendUnavailable, RecordInUse
from .base import Filter, Query, Row, TableStore

logger = logging.getLogger("site_access.store.rest")


def _encode_value(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _json_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def _filter_param(item: Filter) -> tuple[str, str]:
    if item.op == "eq":
        return item.column, f"eq.{_encode_value(item.value)}"
    if item.op == "is_null":
        return item.column, "is.null"
    if item.op == "not_null":
        return item.column, "not.is.null"
    if item.op == "gte":
        return item.column, f"gte.{_encode_value(item.value)}"
    if item.op == "lte":
        return item.column, f"lte.{_encode_value(item.value)}"
    if item.op == "in":
        joined = ",".join(f'"{_encode_value(v)}"' for v in item.value)
        return item.column, f"in.({joined})"
    if item.op == "ilike":
        return item.column, f"ilike.*{_encode_value(item.value)}*"
    raise ValueError(f"Unsupported filter operation '{item.op}'.")


def build_params(query: Query) -> list[tuple[str, str]]:
    params = [_filter_param(item) for item in query.filters]
    if query.order_by:
        params.append(("order", f"{query.order_by}.{'desc' if query.descending else 'asc'}"))
    if query.limit is not None:
        params.append(("limit", str(query.limit)))
    return params


class RestTableStore(TableStore):
    """Table store backed by a hosted PostgREST endpoint (`<base>/rest/v1/<table>`)."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        schema: str = "public",
        timeout_seconds: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url.strip():
            raise ValueError("REST store requires a base URL.")
        self.base = f"{base_url.rstrip('/')}/rest/v1"
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self.headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
            "Accept-Profile": schema,
            "Content-Profile": schema,
            "Prefer": "return=representation",
        }

    def _request(self, method: str, table_name: str, **kwargs: Any) -> list[Row]:
        url = f"{self.base}/{table_name}"
        try:
            resp = self.session.request(method, url, headers=self.headers, timeout=self.timeout_seconds, **kwargs)
            if resp.status_code == 409:
                # PostgREST answers key and foreign key violations with 409 Conflict.
                raise RecordInUse(f"Request on {table_name} conflicts with existing records.")
            resp.raise_for_status()
            payload = resp.json() if resp.content else []
        except requests.RequestException as exc:
            logger.error("%s %s failed: %s", method, table_name, exc)
            raise BackendUnavailable(f"Backend request to {table_name} failed: {exc}") from exc
        except ValueError as exc:
            logger.error("%s %s returned invalid JSON: %s", method, table_name, exc)
            raise BackendUnavailable(f"Backend returned an invalid response for {table_name}.") from exc
        if isinstance(payload, dict):
            return [payload]
        return list(payload)

    def select(self, query: Query) -> list[Row]:
        return self._request("GET", query.table, params=build_params(query))

    def insert(self, table_name: str, row: Row) -> Row:
        body = {key: _json_value(value) for key, value in row.items()}
        rows = self._request("POST", table_name, json=body)
        if not rows:
            raise BackendUnavailable(f"Backend did not return the inserted {table_name} row.")
        return rows[0]

    def update(self, query: Query, values: Row) -> list[Row]:
        if not query.filters:
            raise ValueError("Refusing an unfiltered update.")
        body = {key: _json_value(value) for key, value in values.items()}
        params = [_filter_param(item) for item in query.filters]
        return self._request("PATCH", query.table, params=params, json=body)

    def delete(self, query: Query) -> list[Row]:
        if not query.filters:
            raise ValueError("Refusing an unfiltered delete.")
        params = [_filter_param(item) for item in query.filters]
        return self._request("DELETE", query.table, params=params)
