from __future__ import annotations

from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Generic,
    Literal,
    Mapping,
    Optional,
    Sequence,
    TypeVar,
)

from sqlalchemy import select

from .exceptions import InvalidFilterError
from .models import Model
from .queryset import QuerySet

if TYPE_CHECKING:
    from cms_core.schemas import PaginationParams
    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.sql import ColumnElement

T = TypeVar("T", bound=Model)

Lookup = Literal["exact", "prefix"]


@dataclass(frozen=True)
class Filter:
    """
    A filterable column of a listing.

    Attributes:
        column: Model attribute the value is compared against.
        lookup: ``exact`` for equality, ``prefix`` for a case-sensitive
            ``LIKE 'value%'`` match (used for MIME families such as ``image/``).
        null_token: Raw value that selects rows where the column IS NULL.
        coerce: Converts the raw value before comparison; a ``ValueError``
            raised here becomes an ``InvalidFilterError``.
    """

    column: str
    lookup: Lookup = "exact"
    null_token: Optional[str] = None
    coerce: Optional[Callable[[Any], Any]] = None


@dataclass
class ListResult(Generic[T]):
    items: Sequence[T]
    total: int


@dataclass
class ListQuery(Generic[T]):
    """
    Generic paginated listing over one model.

    Every listing in the API is built from one of these: equality/prefix
    filters, a case-insensitive search OR-ed over a few text columns, an
    optional visibility clause and a fixed ordering. The same filtered
    QuerySet drives both the page query and the count query, so ``total``
    always agrees with what the pages contain.

    Example:
        >>> posts = ListQuery(
        ...     Post,
        ...     filters=(Filter("status"), Filter("category_id", coerce=UUID)),
        ...     search=("title", "excerpt"),
        ... )
        >>> result = await posts.execute(db, params, {"status": "draft"})
    """

    model: type[T]
    filters: Sequence[Filter] = ()
    search: Sequence[str] = ()
    ordering: Sequence[str] = ("-created_at",)
    _by_column: dict[str, Filter] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._by_column = {f.column: f for f in self.filters}

    def _clause(self, flt: Filter, value: Any) -> ColumnElement[bool]:
        column = getattr(self.model, flt.column)
        if flt.null_token is not None and value == flt.null_token:
            return column.is_(None)
        if flt.coerce is not None:
            try:
                value = flt.coerce(value)
            except (TypeError, ValueError):
                msg = f"Invalid value for filter '{flt.column}': {value!r}"
                raise InvalidFilterError(flt.column, msg) from None
        if flt.lookup == "prefix":
            return column.startswith(value, autoescape=True)
        return column == value

    def filtered(
        self,
        params: PaginationParams,
        values: Mapping[str, Any] | None = None,
        *,
        scope: ColumnElement[bool] | None = None,
        base: QuerySet[T] | None = None,
    ) -> QuerySet[T]:
        """
        Apply filters, search and scope without ordering or paging.

        ``values`` maps column names to raw filter values; ``None`` entries
        are skipped. Unknown column names raise ``ValueError``.
        """
        qs = base if base is not None else QuerySet(self.model, select(self.model))

        clauses = []
        for column, value in (values or {}).items():
            if value is None:
                continue
            flt = self._by_column.get(column)
            if flt is None:
                msg = f"{self.model.__name__} listing cannot filter on '{column}'"
                raise ValueError(msg)
            clauses.append(self._clause(flt, value))
        if scope is not None:
            clauses.append(scope)

        qs = qs.filter(*clauses)
        return qs.search(params.search, *self.search)

    async def execute(
        self,
        db: AsyncSession,
        params: PaginationParams,
        values: Mapping[str, Any] | None = None,
        *,
        scope: ColumnElement[bool] | None = None,
        base: QuerySet[T] | None = None,
    ) -> ListResult[T]:
        """
        Run the count and page queries sequentially on ``db``.
        """
        qs = self.filtered(params, values, scope=scope, base=base)
        total = await qs.count(db)
        items = await (
            qs.order_by(*self.ordering)
            .offset(params.get_offset())
            .limit(params.limit)
            .fetch(db)
        )
        return ListResult(items=items, total=total)
