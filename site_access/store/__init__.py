from __future__ import annotations

from functools import lru_cache

from ..core.config import get_settings
from .base import Filter, Query, Row, TableStore, table
from .rest import RestTableStore
from .sql import SqlTableStore


@lru_cache(maxsize=1)
def get_store() -> TableStore:
    settings = get_settings()
    if settings.store_backend == "rest":
        return RestTableStore(
            base_url=settings.rest_url,
            service_key=settings.rest_service_key,
            schema=settings.rest_schema,
            timeout_seconds=settings.rest_timeout_seconds,
        )

    from ..db.session import SessionLocal

    return SqlTableStore(SessionLocal)


__all__ = [
    "Filter",
    "Query",
    "RestTableStore",
    "Row",
    "SqlTableStore",
    "TableStore",
    "get_store",
    "table",
]
