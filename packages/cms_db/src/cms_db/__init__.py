from .db import close_db, create_all, get_db, get_session_factory, init_db
from .exceptions import (
    CMSDBError,
    DoesNotExistError,
    InvalidFilterError,
    MultipleObjectsReturnedError,
    UniqueViolationError,
)
from .listing import Filter, ListQuery, ListResult
from .models import Model, TimestampMixin, utcnow
from .queryset import QuerySet

__all__ = [
    "CMSDBError",
    "DoesNotExistError",
    "Filter",
    "InvalidFilterError",
    "ListQuery",
    "ListResult",
    "Model",
    "MultipleObjectsReturnedError",
    "QuerySet",
    "TimestampMixin",
    "UniqueViolationError",
    "close_db",
    "create_all",
    "get_db",
    "get_session_factory",
    "init_db",
    "utcnow",
]
