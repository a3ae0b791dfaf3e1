from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Generic, TypeVar, cast
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from .exceptions import (
    DoesNotExistError,
    MultipleObjectsReturnedError,
    UniqueViolationError,
)
from .models import Model
from .queryset import QuerySet

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.sql import ColumnElement

T = TypeVar("T", bound=Model)
PrimaryKey = int | str | UUID


class ModelManager(Generic[T]):
    """
    Entry point for model-level database operations.

    Write helpers only ``flush``; the caller owns the transaction and decides
    when to commit, so a change and its audit row land together.
    """

    def __init__(self, model: type[T]):
        self._model = model

    def _get_queryset(self) -> QuerySet[T]:
        return QuerySet(self._model, select(self._model))

    def all(self) -> QuerySet[T]:
        return self._get_queryset()

    def filter(self, *conditions: ColumnElement[bool], **kwargs: Any) -> QuerySet[T]:
        return self._get_queryset().filter(*conditions, **kwargs)

    def exclude(self, *conditions: ColumnElement[bool], **kwargs: Any) -> QuerySet[T]:
        return self._get_queryset().exclude(*conditions, **kwargs)

    def search(self, term: str | None, *columns: Any) -> QuerySet[T]:
        return self._get_queryset().search(term, *columns)

    def none(self) -> QuerySet[T]:
        return self._get_queryset().none()

    def order_by(self, *criterion: Any) -> QuerySet[T]:
        return self._get_queryset().order_by(*criterion)

    def limit(self, count: int) -> QuerySet[T]:
        return self._get_queryset().limit(count)

    def offset(self, count: int) -> QuerySet[T]:
        return self._get_queryset().offset(count)

    def select_related(self, *fields: str) -> QuerySet[T]:
        return self._get_queryset().select_related(*fields)

    def prefetch_related(self, *fields: str) -> QuerySet[T]:
        return self._get_queryset().prefetch_related(*fields)

    def annotate(self, **expressions: ColumnElement[Any]) -> QuerySet[T]:
        return self._get_queryset().annotate(**expressions)

    async def get(
        self,
        db: AsyncSession,
        *conditions: ColumnElement[bool],
        **kwargs: Any,
    ) -> T:
        """
        Retrieve a single object matching the given conditions.

        Raises:
            DoesNotExistError: If no object matches.
            MultipleObjectsReturnedError: If more than one object matches.
        """
        objs = await self.filter(*conditions, **kwargs).limit(2).fetch(db)

        if not objs:
            msg = f"{self._model.__name__} matching query does not exist"
            raise DoesNotExistError(msg)
        if len(objs) > 1:
            msg = f"get() returned more than one {self._model.__name__}"
            raise MultipleObjectsReturnedError(msg)
        return objs[0]

    async def get_or_none(
        self,
        db: AsyncSession,
        *conditions: ColumnElement[bool],
        **kwargs: Any,
    ) -> T | None:
        return await self.filter(*conditions, **kwargs).first(db)

    async def get_by_pk(self, db: AsyncSession, pk: PrimaryKey) -> T | None:
        """
        Retrieve a single object by primary key, or None.
        """
        return cast("T | None", await db.get(self._model, pk))

    async def create(self, db: AsyncSession, **fields: Any) -> T:
        """
        Add a new instance and flush it so defaults and the primary key are
        populated. Does not commit.

        Raises:
            UniqueViolationError: If the flush hits a unique constraint.
        """
        instance: T = self._model(**fields)
        db.add(instance)
        await self.flush(db)
        return instance

    async def get_or_create(
        self,
        db: AsyncSession,
        defaults: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> tuple[T, bool]:
        """
        Look up an object with the given kwargs, creating one if necessary.
        Return a tuple of (object, created).
        """
        instance = await self.get_or_none(db, **kwargs)
        if instance is not None:
            return instance, False
        return await self.create(db, **{**kwargs, **(defaults or {})}), True

    async def flush(self, db: AsyncSession) -> None:
        """
        Flush pending changes, translating unique-constraint failures.

        The session is rolled back before the error propagates.
        """
        try:
            await db.flush()
        except IntegrityError as e:
            await db.rollback()
            field = unique_violation_field(self._model.__tablename__, e)
            if field is None and not _is_unique_violation(e):
                raise
            raise UniqueViolationError(self._model.__tablename__, field) from e


_UNIQUE_MARKERS = ("unique", "duplicate key")


def _is_unique_violation(exc: IntegrityError) -> bool:
    text = str(exc.orig).lower()
    return any(marker in text for marker in _UNIQUE_MARKERS)


def unique_violation_field(table: str, exc: IntegrityError) -> str | None:
    """
    Recover the column behind a unique violation from the driver message.

    SQLite reports ``UNIQUE constraint failed: posts.slug``; PostgreSQL names
    the constraint, which follows the ``uq_<table>_<column>`` convention.
    """
    text = str(exc.orig)
    match = re.search(rf"\b{re.escape(table)}\.(\w+)", text)
    if match:
        return match.group(1)
    match = re.search(rf"uq_{re.escape(table)}_(\w+)", text)
    if match:
        return match.group(1)
    return None
