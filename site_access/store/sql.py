from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import inspect, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..db.models import TABLES
from ..exceptions import BackendUnavailable, RecordInUse
from .base import Filter, Query, Row, TableStore

logger = logging.getLogger("site_access.store.sql")


class SqlTableStore(TableStore):
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _model(table_name: str):
        try:
            return TABLES[table_name]
        except KeyError:
            raise ValueError(f"Unknown table '{table_name}'.") from None

    @staticmethod
    def _to_row(instance: Any) -> Row:
        mapper = inspect(instance).mapper
        return {attr.key: getattr(instance, attr.key) for attr in mapper.column_attrs}

    @staticmethod
    def _condition(model, item: Filter):
        column = getattr(model, item.column)
        if item.op == "eq":
            return column == item.value
        if item.op == "is_null":
            return column.is_(None)
        if item.op == "not_null":
            return column.is_not(None)
        if item.op == "gte":
            return column >= item.value
        if item.op == "lte":
            return column <= item.value
        if item.op == "in":
            return column.in_(item.value)
        if item.op == "ilike":
            return column.ilike(f"%{item.value}%")
        raise ValueError(f"Unsupported filter operation '{item.op}'.")

    def _statement(self, query: Query):
        model = self._model(query.table)
        stmt = select(model).where(*(self._condition(model, item) for item in query.filters))
        if query.order_by:
            column = getattr(model, query.order_by)
            stmt = stmt.order_by(column.desc() if query.descending else column.asc())
        if query.limit is not None:
            stmt = stmt.limit(query.limit)
        return stmt

    def select(self, query: Query) -> list[Row]:
        try:
            with self._session_factory() as db:
                return [self._to_row(row) for row in db.scalars(self._statement(query)).all()]
        except SQLAlchemyError as exc:
            logger.error("Select on %s failed: %s", query.table, exc)
            raise BackendUnavailable(f"Failed to query {query.table}: {exc}") from exc

    def insert(self, table_name: str, row: Row) -> Row:
        model = self._model(table_name)
        try:
            with self._session_factory() as db:
                instance = model(**row)
                db.add(instance)
                db.commit()
                db.refresh(instance)
                return self._to_row(instance)
        except SQLAlchemyError as exc:
            logger.error("Insert into %s failed: %s", table_name, exc)
            raise BackendUnavailable(f"Failed to insert into {table_name}: {exc}") from exc

    def update(self, query: Query, values: Row) -> list[Row]:
        # Rows are locked and re-filtered inside one transaction, so a row that no
        # longer matches (e.g. closed by another guard) is simply not updated.
        stmt = self._statement(query).with_for_update()
        try:
            with self._session_factory() as db:
                rows = db.scalars(stmt).all()
                for instance in rows:
                    for key, value in values.items():
                        setattr(instance, key, value)
                db.commit()
                for instance in rows:
                    db.refresh(instance)
                return [self._to_row(instance) for instance in rows]
        except SQLAlchemyError as exc:
            logger.error("Update on %s failed: %s", query.table, exc)
            raise BackendUnavailable(f"Failed to update {query.table}: {exc}") from exc

    def delete(self, query: Query) -> list[Row]:
        if not query.filters:
            raise ValueError("Refusing an unfiltered delete.")
        try:
            with self._session_factory() as db:
                rows = db.scalars(self._statement(query)).all()
                removed = [self._to_row(instance) for instance in rows]
                for instance in rows:
                    db.delete(instance)
                db.commit()
                return removed
        except IntegrityError as exc:
            logger.info("Delete on %s blocked by referencing rows: %s", query.table, exc.orig)
            raise RecordInUse(f"Rows in {query.table} are still referenced by other records.") from exc
        except SQLAlchemyError as exc:
            logger.error("Delete on %s failed: %s", query.table, exc)
            raise BackendUnavailable(f"Failed to delete from {query.table}: {exc}") from exc
