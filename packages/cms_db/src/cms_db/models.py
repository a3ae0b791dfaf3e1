from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, ClassVar

from sqlalchemy import DateTime, MetaData, Uuid
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .exceptions import DoesNotExistError, MultipleObjectsReturnedError

if TYPE_CHECKING:
    from .manager import ModelManager


# Named constraints let unique violations be traced back to their column
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Model(AsyncAttrs, DeclarativeBase):
    """
    Base class for all database models.
    Provides an automatic `objects` manager and a UUID `id` primary key.

    Example:
        >>> class Category(Model):
        ...     __tablename__ = "categories"
        ...     name: Mapped[str] = mapped_column()
    """

    __abstract__ = True
    metadata = MetaData(naming_convention=NAMING_CONVENTION)
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    objects: ClassVar[ModelManager[Any]]

    # Model-specific exception aliases
    DoesNotExist = DoesNotExistError
    MultipleObjectsReturned = MultipleObjectsReturnedError

    def __init_subclass__(cls, **kwargs: Any):
        super().__init_subclass__(**kwargs)
        from .manager import ModelManager

        if not cls.__dict__.get("__abstract__"):
            cls.objects = ModelManager(cls)


class TimestampMixin:
    """
    Mixin that adds `created_at` and `updated_at` fields to a model.

    Timestamps are generated in Python so rows created within the same second
    still sort newest-first.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
