from __future__ import annotations

from typing import (
    TYPE_CHECKING,
    Any,
    Generic,
    Mapping,
    Sequence,
    Type,
    TypeVar,
    cast,
)

from sqlalchemy import delete, false, func, or_, select
from sqlalchemy.orm import joinedload, selectinload

from .models import Model

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.sql import ColumnElement, Select


T = TypeVar("T", bound=Model)


class QuerySet(Generic[T]):
    """
    Lazy, immutable query builder for a specific model.

    A QuerySet wraps a SQLAlchemy ``Select`` statement. Every chainable method
    returns a new QuerySet; SQL is emitted only by the async terminal methods
    (``fetch``, ``first``, ``count``, ``exists``, ``delete``).

    Examples:
        >>> qs = Post.objects.filter(status="published").order_by("-created_at")
        >>> posts = await qs.limit(10).fetch(db)
    """

    def __init__(
        self,
        model: Type[T],
        stmt: Select,
        _annotations: Mapping[str, ColumnElement[Any]] | None = None,
    ):
        self.model: Type[T] = model
        self._stmt: Select = stmt
        self._annotations: Mapping[str, ColumnElement[Any]] = _annotations or {}

    def _clone(self, stmt: Select | None = None) -> QuerySet[T]:
        return QuerySet(
            self.model,
            stmt if stmt is not None else self._stmt,
            _annotations=dict(self._annotations),
        )

    @property
    def statement(self) -> Select:
        return self._stmt

    # --- Condition helpers ---

    def _column(self, name: str) -> Any:
        try:
            return getattr(self.model, name)
        except AttributeError:
            msg = f"{self.model.__name__} has no field '{name}'"
            raise ValueError(msg) from None

    def _conditions(
        self, conditions: Sequence[ColumnElement[bool]], kwargs: Mapping[str, Any]
    ) -> list[ColumnElement[bool]]:
        exprs = list(conditions)
        for name, value in kwargs.items():
            column = self._column(name)
            exprs.append(column.is_(None) if value is None else column == value)
        return exprs

    # --- Chainable methods ---

    def filter(self, *conditions: ColumnElement[bool], **kwargs: Any) -> QuerySet[T]:
        """
        Add WHERE criteria. Keyword arguments are equality lookups.

        Example:
            >>> Post.objects.filter(Post.category_id == cid, status="draft")
            # SELECT * FROM posts WHERE category_id = :cid AND status = 'draft';
        """
        exprs = self._conditions(conditions, kwargs)
        if not exprs:
            return self
        return self._clone(self._stmt.where(*exprs))

    def exclude(self, *conditions: ColumnElement[bool], **kwargs: Any) -> QuerySet[T]:
        """
        Add negated WHERE criteria.

        Example:
            >>> Post.objects.exclude(id=post.id)
            # SELECT * FROM posts WHERE NOT (id = :id);
        """
        exprs = self._conditions(conditions, kwargs)
        if not exprs:
            return self
        stmt = self._stmt
        for expr in exprs:
            stmt = stmt.where(~expr)
        return self._clone(stmt)

    def search(self, term: str | None, *columns: Any) -> QuerySet[T]:
        """
        Case-insensitive substring match OR-ed across ``columns``.

        ``%`` and ``_`` in the term are matched literally.

        Example:
            >>> Post.objects.search("news", Post.title, Post.excerpt)
            # ... WHERE lower(title) LIKE '%news%' OR lower(excerpt) LIKE '%news%'
        """
        if not term or not columns:
            return self
        clauses = [
            (self._column(c) if isinstance(c, str) else c).icontains(
                term, autoescape=True
            )
            for c in columns
        ]
        return self._clone(self._stmt.where(or_(*clauses)))

    def none(self) -> QuerySet[T]:
        """Return a QuerySet that matches nothing."""
        return self._clone(self._stmt.where(false()))

    def order_by(self, *criterion: Any) -> QuerySet[T]:
        """
        Add ORDER BY criteria. Strings prefixed with ``-`` sort descending.

        Example:
            >>> Post.objects.order_by("-created_at")
            # SELECT * FROM posts ORDER BY created_at DESC;
        """
        clauses = []
        for item in criterion:
            if isinstance(item, str):
                if item.startswith("-"):
                    clauses.append(self._column(item[1:]).desc())
                else:
                    clauses.append(self._column(item).asc())
            else:
                clauses.append(item)
        return self._clone(self._stmt.order_by(*clauses))

    def limit(self, count: int) -> QuerySet[T]:
        return self._clone(self._stmt.limit(count))

    def offset(self, count: int) -> QuerySet[T]:
        return self._clone(self._stmt.offset(count))

    def select_related(self, *fields: str) -> QuerySet[T]:
        """
        Eagerly load many-to-one relationships with a JOIN.

        Example:
            >>> Post.objects.select_related("author", "category")
        """
        stmt = self._stmt
        for field in fields:
            stmt = stmt.options(joinedload(self._column(field)))
        return self._clone(stmt)

    def prefetch_related(self, *fields: str) -> QuerySet[T]:
        """
        Eagerly load collections with one extra SELECT ... IN per relationship.

        Example:
            >>> Post.objects.prefetch_related("tags")
        """
        stmt = self._stmt
        for field in fields:
            stmt = stmt.options(selectinload(self._column(field)))
        return self._clone(stmt)

    def populate_existing(self) -> QuerySet[T]:
        """
        Overwrite instances already in the session's identity map with the
        freshly loaded rows, eager-loaded relationships included.

        Use after a commit when relationships may have changed; pending
        changes on the affected instances are discarded.
        """
        return self._clone(self._stmt.execution_options(populate_existing=True))

    def annotate(self, **expressions: ColumnElement[Any]) -> QuerySet[T]:
        """
        Attach calculated columns, exposed as attributes on fetched instances.

        Use correlated scalar subqueries so no GROUP BY is required.

        Example:
            >>> post_count = (
            ...     select(func.count(Post.id))
            ...     .where(Post.category_id == Category.id)
            ...     .scalar_subquery()
            ... )
            >>> Category.objects.annotate(post_count=post_count)
        """
        stmt = self._stmt
        annotations = dict(self._annotations)
        for name, expr in expressions.items():
            labelled = expr.label(name)
            stmt = stmt.add_columns(labelled)
            annotations[name] = labelled
        return QuerySet(self.model, stmt, _annotations=annotations)

    # --- Terminal methods ---

    def _attach(self, row: Any) -> T:
        instance = cast("T", row[0])
        for i, key in enumerate(self._annotations.keys(), start=1):
            setattr(instance, key, row[i])
        return instance

    async def fetch(self, db: AsyncSession) -> Sequence[T]:
        """
        Execute query and return results as model instances.

        Example:
            >>> posts = await Post.objects.all().fetch(db)
        """
        result = await db.execute(self._stmt)
        if not self._annotations:
            return result.scalars().unique().all()
        return [self._attach(row) for row in result.unique().all()]

    async def first(self, db: AsyncSession) -> T | None:
        result = await db.execute(self._stmt.limit(1))
        if not self._annotations:
            return result.scalars().unique().one_or_none()
        row = result.unique().one_or_none()
        return self._attach(row) if row is not None else None

    async def count(self, db: AsyncSession) -> int:
        """
        Count rows matching the WHERE criteria, ignoring ordering, paging and
        eager-load options.

        Example:
            >>> await Post.objects.filter(status="draft").count(db)
            # SELECT count(*) FROM posts WHERE status = 'draft';
        """
        stmt = select(func.count()).select_from(self.model)
        if self._stmt.whereclause is not None:
            stmt = stmt.where(self._stmt.whereclause)
        return await db.scalar(stmt) or 0

    async def exists(self, db: AsyncSession) -> bool:
        return await self.count(db) > 0

    async def delete(self, db: AsyncSession) -> int:
        """
        Delete all records matched by the query. Does not commit.

        Example:
            >>> await GalleryMedia.objects.filter(gallery_id=gid).delete(db)
        """
        where_clause = self._stmt.whereclause
        # Prevent accidental full-table deletions.
        if where_clause is None:
            msg = "Refusing to delete without filters"
            raise ValueError(msg)

        result = await db.execute(delete(self.model).where(where_clause))
        return getattr(result, "rowcount", 0)
