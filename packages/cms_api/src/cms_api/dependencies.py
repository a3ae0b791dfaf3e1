from typing import Optional

from cms_core.config import CMSSettings, cms_settings
from cms_core.schemas import PaginationParams
from fastapi import Query, Request

from .storage import Storage, storage_from_settings


def get_settings(request: Request) -> CMSSettings:
    return getattr(request.app.state, "settings", None) or cms_settings


def get_pagination(
    request: Request,
    page: int = Query(1, description="1-indexed page number"),
    limit: Optional[int] = Query(None, description="Items per page"),
    search: Optional[str] = Query(None, description="Case-insensitive substring filter"),
) -> PaginationParams:
    """Pagination query parameters, bounded by the application's settings."""
    return PaginationParams.model_validate(
        {"page": page, "limit": limit, "search": search},
        context={"settings": get_settings(request)},
    )


def get_storage(request: Request) -> Storage:
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        storage = storage_from_settings(get_settings(request))
        request.app.state.storage = storage
    return storage
