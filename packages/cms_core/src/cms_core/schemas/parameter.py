from typing import Annotated, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from cms_core.config import CMSSettings, cms_settings


class PaginationParams(BaseModel):
    """
    Page-based pagination and free-text search for list endpoints.

    Defaults and bounds come from the ``settings`` entry of the validation
    context, falling back to the process-wide ``cms_settings``.

    Examples
    --------
    Default initialization::

        >>> params = PaginationParams()
        >>> (params.page, params.get_offset())
        (1, 0)

    Page-based offset calculation::

        >>> PaginationParams(page=3, limit=10).get_offset()
        20

    Bounds from an application's own settings::

        >>> settings = cms_settings.model_copy(update={"MAX_API_LIMIT": 5})
        >>> PaginationParams.model_validate(
        ...     {"limit": 50}, context={"settings": settings}
        ... ).limit
        5
    """

    model_config = ConfigDict(
        populate_by_name=True,
        # Extra query params must not cause validation errors
        extra="ignore",
    )

    page: Annotated[int, Field(default=1, description="1-indexed page number")]
    limit: Annotated[
        int | None,
        Field(default=None, description="Items per page"),
    ]
    search: Annotated[
        str | None,
        Field(default=None, description="Case-insensitive substring filter"),
    ]

    @field_validator("search")
    @classmethod
    def _blank_search_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @model_validator(mode="after")
    def _validate_bounds(self, info: ValidationInfo) -> Self:
        """
        Clamps values to system limits.

        >>> PaginationParams(limit=9999).limit  # if max is 100
        100
        """
        settings: CMSSettings = (info.context or {}).get("settings") or cms_settings
        if self.limit is None:
            self.limit = settings.DEFAULT_LIST_PER_PAGE
        self.limit = max(
            settings.MIN_LIST_PER_PAGE, min(self.limit, settings.MAX_API_LIMIT)
        )
        self.page = max(1, self.page)
        return self

    def get_offset(self) -> int:
        return (self.page - 1) * self.limit
