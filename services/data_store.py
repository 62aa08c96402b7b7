"""
Data Store - bulk record access scoped to one organization.

The import pipeline only needs three primitives from the record store:
bulk insert returning the created rows, filtered bulk select with a range,
and bulk update. Every call is its own unit of work; there is no
transaction spanning several calls or several tables.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import DateTime, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.models.schema import (
    Client, ClientCustomField, Service, Worker, WorkerProject,
    Order, OrderService, OrderWorker
)
from services.errors import DataStoreError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000

TABLE_MODELS = {
    'clients': Client,
    'client_custom_fields': ClientCustomField,
    'services': Service,
    'workers': Worker,
    'worker_projects': WorkerProject,
    'orders': Order,
    'order_services': OrderService,
    'order_workers': OrderWorker,
}


class DataStore(ABC):
    """
    Abstract record store bound to a single organization.

    Implementations inject ``organization_id`` into every inserted record
    and every filter, so callers never pass it themselves.
    """

    def __init__(self, organization_id: str, page_size: int = DEFAULT_PAGE_SIZE):
        if not organization_id:
            raise ValueError("organization_id is required")
        self.organization_id = organization_id
        self.page_size = page_size

    @abstractmethod
    def bulk_insert(self, table: str, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Insert records and return them enriched with generated identities.

        Raises:
            DataStoreError: if the call fails; nothing from the call is kept.
        """

    @abstractmethod
    def bulk_upsert(self, table: str, records: List[Dict[str, Any]],
                    conflict_columns: Sequence[str]) -> List[Dict[str, Any]]:
        """
        Insert records, updating existing rows that collide on
        ``conflict_columns`` (always combined with organization_id).

        Returns every affected row, created or pre-existing.
        """

    @abstractmethod
    def bulk_select(self, table: str, filters: Optional[Dict[str, Any]] = None,
                    columns: Optional[Sequence[str]] = None,
                    offset: int = 0, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Select rows ordered by id.

        A filter value that is a list, tuple or set matches any of its items.
        """

    @abstractmethod
    def bulk_update(self, table: str, filters: Dict[str, Any], patch: Dict[str, Any]) -> int:
        """Apply ``patch`` to every matching row; return the affected row count."""

    def select_all(self, table: str, filters: Optional[Dict[str, Any]] = None,
                   columns: Optional[Sequence[str]] = None,
                   page_size: Optional[int] = None) -> List[Dict[str, Any]]:
        """Page through ``bulk_select`` until a short page is returned."""
        page_size = page_size or self.page_size
        rows: List[Dict[str, Any]] = []
        offset = 0

        while True:
            page = self.bulk_select(table, filters=filters, columns=columns,
                                    offset=offset, limit=page_size)
            rows.extend(page)
            if len(page) < page_size:
                break
            offset += page_size

        logger.debug(f"Loaded {len(rows)} rows from {table}")
        return rows

    def _scoped(self, records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [{**record, 'organization_id': self.organization_id} for record in records]


class SqlAlchemyDataStore(DataStore):
    """
    Data store backed by a SQLAlchemy session.

    Each bulk call commits on success and rolls back on failure, then
    re-raises as ``DataStoreError``.
    """

    def __init__(self, session: Session, organization_id: str,
                 page_size: int = DEFAULT_PAGE_SIZE):
        super().__init__(organization_id, page_size)
        self.session = session

    def _table(self, name: str):
        model = TABLE_MODELS.get(name)
        if model is None:
            raise DataStoreError(name, "unknown table")
        return model.__table__

    @staticmethod
    def _coerce(table, record: Dict[str, Any]) -> Dict[str, Any]:
        """Convert ISO timestamp strings for timestamp columns."""
        coerced = {}
        for key, value in record.items():
            column = table.c.get(key)
            if column is None:
                raise DataStoreError(table.name, f"unknown column '{key}'")
            if isinstance(value, str) and isinstance(column.type, DateTime):
                try:
                    value = datetime.fromisoformat(value)
                except ValueError as e:
                    raise DataStoreError(table.name, f"invalid timestamp for {key}: {value!r}", e)
            coerced[key] = value
        return coerced

    def _where(self, table, stmt, filters: Optional[Dict[str, Any]]):
        stmt = stmt.where(table.c.organization_id == self.organization_id)
        for key, value in (filters or {}).items():
            column = table.c.get(key)
            if column is None:
                raise DataStoreError(table.name, f"unknown filter column '{key}'")
            if isinstance(value, (list, tuple, set)):
                stmt = stmt.where(column.in_(list(value)))
            else:
                stmt = stmt.where(column == value)
        return stmt

    def _execute_returning(self, name: str, stmt) -> List[Dict[str, Any]]:
        try:
            rows = [dict(row) for row in self.session.execute(stmt).mappings().all()]
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Bulk write to {name} failed: {e}")
            raise DataStoreError(name, str(getattr(e, 'orig', None) or e), e) from e
        return rows

    def bulk_insert(self, table: str, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not records:
            return []
        tbl = self._table(table)
        payload = [self._coerce(tbl, record) for record in self._scoped(records)]

        stmt = insert(tbl).values(payload).returning(*tbl.c)
        rows = self._execute_returning(table, stmt)
        logger.debug(f"Inserted {len(rows)} rows into {table}")
        return rows

    def bulk_upsert(self, table: str, records: List[Dict[str, Any]],
                    conflict_columns: Sequence[str]) -> List[Dict[str, Any]]:
        if not records:
            return []
        tbl = self._table(table)
        payload = [self._coerce(tbl, record) for record in self._scoped(records)]

        dialect = self.session.get_bind().dialect.name
        if dialect == 'postgresql':
            from sqlalchemy.dialects.postgresql import insert as dialect_insert
        elif dialect == 'sqlite':
            from sqlalchemy.dialects.sqlite import insert as dialect_insert
        else:
            raise DataStoreError(table, f"upsert not supported on dialect '{dialect}'")

        stmt = dialect_insert(tbl).values(payload)
        # A no-op update on conflict makes RETURNING include pre-existing rows
        stmt = stmt.on_conflict_do_update(
            index_elements=['organization_id', *conflict_columns],
            set_={key: stmt.excluded[key] for key in payload[0] if key != 'id'}
        ).returning(*tbl.c)

        rows = self._execute_returning(table, stmt)
        logger.debug(f"Upserted {len(rows)} rows into {table}")
        return rows

    def bulk_select(self, table: str, filters: Optional[Dict[str, Any]] = None,
                    columns: Optional[Sequence[str]] = None,
                    offset: int = 0, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        tbl = self._table(table)
        selected = [tbl.c[name] for name in columns] if columns else list(tbl.c)

        stmt = self._where(tbl, select(*selected), filters).order_by(tbl.c.id).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        try:
            return [dict(row) for row in self.session.execute(stmt).mappings().all()]
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DataStoreError(table, str(e), e) from e

    def bulk_update(self, table: str, filters: Dict[str, Any], patch: Dict[str, Any]) -> int:
        tbl = self._table(table)
        stmt = self._where(tbl, update(tbl), filters).values(**self._coerce(tbl, patch))

        try:
            result = self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DataStoreError(table, str(e), e) from e
        return result.rowcount
