from .base import CamelModel
from .parameter import PaginationParams
from .response import ErrorResponse, PaginatedResponse, PaginationMeta

__all__ = [
    "CamelModel",
    "ErrorResponse",
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
]
