"""
Core response schemas shared across packages.
"""

import math
from typing import Any, Generic, Sequence, TypeVar

from pydantic import BaseModel, Field

from .base import CamelModel
from .parameter import PaginationParams

T = TypeVar("T")


class PaginationMeta(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


class PaginatedResponse(CamelModel, Generic[T]):
    """
    Generic paginated response envelope.

    Example:
        >>> data = PaginatedResponse[int].build([1, 2], total=41, page=1, limit=20)
        >>> data.model_dump(by_alias=True)["pagination"]
        {'page': 1, 'limit': 20, 'total': 41, 'totalPages': 3}
    """

    items: list[T] = Field(..., description="Items in the current page")
    pagination: PaginationMeta

    @classmethod
    def build(
        cls,
        items: Sequence[Any],
        *,
        total: int,
        page: int,
        limit: int,
    ) -> "PaginatedResponse[T]":
        return cls(
            items=list(items),
            pagination=PaginationMeta(
                page=page,
                limit=limit,
                total=total,
                total_pages=math.ceil(total / limit) if limit else 0,
            ),
        )

    @classmethod
    def from_params(
        cls, items: Sequence[Any], *, total: int, params: PaginationParams
    ) -> "PaginatedResponse[T]":
        return cls.build(items, total=total, page=params.page, limit=params.limit)


class ErrorResponse(BaseModel):
    """Shape of every JSON error body."""

    error: str
    message: str
