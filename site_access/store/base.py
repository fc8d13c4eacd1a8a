from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Literal

FilterOp = Literal["eq", "is_null", "not_null", "gte", "lte", "in", "ilike"]
Row = dict[str, Any]


@dataclass(frozen=True)
class Filter:
    column: str
    op: FilterOp
    value: Any = None


@dataclass(frozen=True)
class Query:
    """Table query built the way a PostgREST request is: filters, ordering, limit."""

    table: str
    filters: tuple[Filter, ...] = field(default_factory=tuple)
    order_by: str | None = None
    descending: bool = False
    limit: int | None = None

    def _with(self, column: str, op: FilterOp, value: Any = None) -> "Query":
        return replace(self, filters=self.filters + (Filter(column, op, value),))

    def eq(self, column: str, value: Any) -> "Query":
        return self._with(column, "eq", value)

    def is_null(self, column: str) -> "Query":
        return self._with(column, "is_null")

    def not_null(self, column: str) -> "Query":
        return self._with(column, "not_null")

    def gte(self, column: str, value: Any) -> "Query":
        return self._with(column, "gte", value)

    def lte(self, column: str, value: Any) -> "Query":
        return self._with(column, "lte", value)

    def in_(self, column: str, values: list[Any]) -> "Query":
        return self._with(column, "in", list(values))

    def ilike(self, column: str, text: str) -> "Query":
        return self._with(column, "ilike", text)

    def order(self, column: str, descending: bool = False) -> "Query":
        return replace(self, order_by=column, descending=descending)

    def take(self, limit: int) -> "Query":
        return replace(self, limit=max(1, int(limit)))


def table(name: str) -> Query:
    return Query(table=name)


class TableStore(ABC):
    """Generic persistence capability: query, insert and conditional update of rows."""

    @abstractmethod
    def select(self, query: Query) -> list[Row]:
        ...

    @abstractmethod
    def insert(self, table_name: str, row: Row) -> Row:
        ...

    @abstractmethod
    def update(self, query: Query, values: Row) -> list[Row]:
        """Apply `values` to every row matching `query`; return the updated rows."""

    @abstractmethod
    def delete(self, query: Query) -> list[Row]:
        """Remove every row matching `query`; return the removed rows."""
