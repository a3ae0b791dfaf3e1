from typing import Any


class CMSError(Exception):
    """
    Base class for every expected, client-visible failure.

    Each subclass fixes an error ``code`` and HTTP ``status_code``; ``extra``
    carries additional fields merged into the JSON error body.

    Example:
        >>> raise NotFoundError("Post not found")
    """

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: str | None = None, **extra: Any):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.extra}


class UnauthorizedError(CMSError):
    """Raised when the bearer token is missing, malformed, or invalid."""

    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "Missing or invalid authorization header"


class ForbiddenError(CMSError):
    """Raised when the caller lacks the permission or ownership required."""

    code = "FORBIDDEN"
    status_code = 403
    default_message = "You do not have permission to perform this action"


class NotFoundError(CMSError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Resource not found"


class ValidationFailedError(CMSError):
    code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "Request validation failed"


class InvalidParentError(CMSError):
    code = "INVALID_PARENT"
    status_code = 400
    default_message = "A page cannot be its own parent"


class DuplicateSlugError(CMSError):
    code = "DUPLICATE_SLUG"
    status_code = 409
    default_message = "A resource with this slug already exists"


class DuplicateNameError(CMSError):
    code = "DUPLICATE_NAME"
    status_code = 409
    default_message = "A resource with this name already exists"


class CategoryHasPostsError(CMSError):
    """Raised when deleting a category that still has posts; carries postCount."""

    code = "CATEGORY_HAS_POSTS"
    status_code = 400
    default_message = "Cannot delete category with associated posts"

    def __init__(self, post_count: int, message: str | None = None):
        super().__init__(message, postCount=post_count)
        self.post_count = post_count


class UploadFailedError(CMSError):
    code = "UPLOAD_FAILED"
    status_code = 500
    default_message = "Failed to upload file"
