from __future__ import annotations

import logging
from typing import Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dept_overview.errors import StoreConflictError, StoreError
from dept_overview.models import COLLECTION_MODELS

logger = logging.getLogger("dept_overview.gateway")

Record = dict[str, Any]


class RecordStore(Protocol):
    async def fetch_all(self, collection: str) -> list[Record]:
        raise NotImplementedError

    async def fetch_where(
        self,
        collection: str,
        field: str,
        value: Any,
        *,
        ignore_case: bool = False,
    ) -> list[Record]:
        raise NotImplementedError

    async def insert(self, collection: str, record: Record) -> str:
        raise NotImplementedError


def _column_names(model: type[Any]) -> list[str]:
    return [column.name for column in model.__table__.columns]


def _to_record(item: Any) -> Record:
    return {name: getattr(item, name) for name in _column_names(type(item))}


class SqlAlchemyRecordStore:
    """Record store backed by SQLAlchemy async sessions.

    Every call opens its own session, so concurrent callers never share one.
    Results are plain dicts keyed by column name; nothing is cached.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    def _model_for(self, collection: str, operation: str) -> type[Any]:
        model = COLLECTION_MODELS.get(collection)
        if model is None:
            raise StoreError(collection, operation, LookupError(f"unknown collection {collection!r}"))
        return model

    def _column_for(self, model: type[Any], collection: str, field: str, operation: str) -> Any:
        if field not in _column_names(model):
            raise StoreError(collection, operation, LookupError(f"unknown field {field!r}"))
        return model.__table__.columns[field]

    async def fetch_all(self, collection: str) -> list[Record]:
        model = self._model_for(collection, "fetch_all")
        stmt = select(model).order_by(model.id.asc())
        return await self._fetch(collection, "fetch_all", stmt)

    async def fetch_where(
        self,
        collection: str,
        field: str,
        value: Any,
        *,
        ignore_case: bool = False,
    ) -> list[Record]:
        model = self._model_for(collection, "fetch_where")
        column = self._column_for(model, collection, field, "fetch_where")
        if ignore_case and isinstance(value, str):
            condition = func.lower(column) == value.lower()
        else:
            condition = column == value
        stmt = select(model).where(condition).order_by(model.id.asc())
        return await self._fetch(collection, "fetch_where", stmt)

    async def insert(self, collection: str, record: Record) -> str:
        model = self._model_for(collection, "insert")
        unknown_fields = sorted(key for key in record if key not in _column_names(model))
        if unknown_fields:
            raise StoreError(collection, "insert", LookupError(f"unknown fields {unknown_fields}"))

        try:
            async with self._session_factory() as session:
                item = model(**record)
                session.add(item)
                await session.flush()
                new_id = str(item.id)
                await session.commit()
            return new_id
        except IntegrityError as exc:
            logger.warning(
                "record_store_conflict",
                extra={"collection": collection, "operation": "insert"},
            )
            raise StoreConflictError(collection, "insert", exc) from exc
        except (SQLAlchemyError, OSError) as exc:
            logger.error(
                "record_store_failed",
                extra={"collection": collection, "operation": "insert", "error": exc.__class__.__name__},
            )
            raise StoreError(collection, "insert", exc) from exc

    async def _fetch(self, collection: str, operation: str, stmt: Any) -> list[Record]:
        try:
            async with self._session_factory() as session:
                items = (await session.scalars(stmt)).all()
        except (SQLAlchemyError, OSError) as exc:
            logger.error(
                "record_store_failed",
                extra={"collection": collection, "operation": operation, "error": exc.__class__.__name__},
            )
            raise StoreError(collection, operation, exc) from exc
        return [_to_record(item) for item in items]
