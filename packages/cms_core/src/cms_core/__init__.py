from .config import CMSSettings, cms_settings
from .exceptions import CMSError
from .schemas import CamelModel, PaginatedResponse, PaginationParams

__all__ = [
    "CMSError",
    "CMSSettings",
    "CamelModel",
    "PaginatedResponse",
    "PaginationParams",
    "cms_settings",
]
