class CMSDBError(Exception):
    """Base class for all CMS DB exceptions."""


class DoesNotExistError(CMSDBError, LookupError):
    """Raised when a single object was expected but none was found."""


class MultipleObjectsReturnedError(CMSDBError, LookupError):
    """Raised when a single object was expected but multiple were found."""


class UniqueViolationError(CMSDBError):
    """
    Raised when a flush hits a unique constraint.

    ``field`` names the offending column when it can be recovered from the
    driver message, otherwise it is None.
    """

    def __init__(self, table: str, field: str | None, message: str = ""):
        self.table = table
        self.field = field
        super().__init__(message or f"Unique constraint violated on {table}.{field}")


class InvalidFilterError(CMSDBError, ValueError):
    """Raised when a listing filter value cannot be converted for its column."""

    def __init__(self, column: str, message: str):
        self.column = column
        super().__init__(message)
