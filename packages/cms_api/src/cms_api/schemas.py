"""
Request and response schemas. Field names are snake_case in Python and
camelCase on the wire.
"""

import uuid
from datetime import datetime
from typing import Annotated, Any, ClassVar, Generic, Literal, Optional, TypeVar

from cms_core.schemas import CamelModel
from pydantic import AliasChoices, Field, StringConstraints, model_validator

T = TypeVar("T")

Status = Literal["draft", "published"]
EntityType = Literal["yayasan", "school"]

SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"

ContentTitle = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=5, max_length=500)
]
ContentSlug = Annotated[
    str, StringConstraints(min_length=5, max_length=500, pattern=SLUG_PATTERN)
]
Body = Annotated[str, StringConstraints(min_length=50)]
Excerpt = Annotated[str, StringConstraints(max_length=500)]
CategoryName = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=2, max_length=100)
]
CategorySlug = Annotated[
    str, StringConstraints(min_length=2, max_length=100, pattern=SLUG_PATTERN)
]
GalleryTitle = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=2, max_length=500)
]
GallerySlug = Annotated[
    str, StringConstraints(min_length=2, max_length=500, pattern=SLUG_PATTERN)
]
TagName = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)
]


class ItemsResponse(CamelModel, Generic[T]):
    """Unpaginated ``{items: [...]}`` envelope."""

    items: list[T]


class DeleteResponse(CamelModel):
    success: bool = True


class PartialUpdate(CamelModel):
    """
    Base for partial updates: only fields present in the body are applied,
    and an explicit null is rejected for columns that cannot be empty.
    """

    non_nullable: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="after")
    def _reject_nulls(self):
        for name in self.non_nullable:
            if name in self.model_fields_set and getattr(self, name) is None:
                msg = f"{name} cannot be null"
                raise ValueError(msg)
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# --- Shared summaries ---


class UserSummary(CamelModel):
    id: str
    name: str
    email: Optional[str] = None


class CategorySummary(CamelModel):
    id: uuid.UUID
    name: str
    slug: str


class TagRead(CamelModel):
    id: uuid.UUID
    name: str
    slug: str


# --- Posts ---


class PostCreate(CamelModel):
    title: ContentTitle
    slug: ContentSlug
    content: Body
    excerpt: Optional[Excerpt] = None
    category_id: Optional[uuid.UUID] = None
    featured_image_id: Optional[uuid.UUID] = None
    tags: Optional[list[TagName]] = None
    status: Status = "draft"
    entity_type: EntityType = "school"


class PostUpdate(PartialUpdate):
    non_nullable = ("title", "slug", "content", "status", "entity_type")

    title: Optional[ContentTitle] = None
    slug: Optional[ContentSlug] = None
    content: Optional[Body] = None
    excerpt: Optional[Excerpt] = None
    category_id: Optional[uuid.UUID] = None
    featured_image_id: Optional[uuid.UUID] = None
    tags: Optional[list[TagName]] = None
    status: Optional[Status] = None
    entity_type: Optional[EntityType] = None


class PostListItem(CamelModel):
    id: uuid.UUID
    title: str
    slug: str
    excerpt: Optional[str] = None
    status: Status
    entity_type: EntityType
    category_id: Optional[uuid.UUID] = None
    published_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    author: Optional[UserSummary] = None
    category: Optional[CategorySummary] = None


class PostRead(PostListItem):
    content: str
    author_id: str
    featured_image_id: Optional[uuid.UUID] = None
    tags: list[TagRead] = []


# --- Pages ---


class PageCreate(CamelModel):
    title: ContentTitle
    slug: ContentSlug
    content: Body
    parent_id: Optional[uuid.UUID] = None
    status: Status = "draft"
    entity_type: EntityType = "school"


class PageUpdate(PartialUpdate):
    non_nullable = ("title", "slug", "content", "status", "entity_type")

    title: Optional[ContentTitle] = None
    slug: Optional[ContentSlug] = None
    content: Optional[Body] = None
    parent_id: Optional[uuid.UUID] = None
    status: Optional[Status] = None
    entity_type: Optional[EntityType] = None


class PageListItem(CamelModel):
    id: uuid.UUID
    title: str
    slug: str
    status: Status
    entity_type: EntityType
    parent_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime
    author: Optional[UserSummary] = None


class PageRead(PageListItem):
    content: str
    author_id: str


class PageTreeNode(CamelModel):
    id: uuid.UUID
    title: str
    slug: str
    status: Status
    entity_type: EntityType
    parent_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime
    children: list["PageTreeNode"] = []


# --- Categories ---


class CategoryCreate(CamelModel):
    name: CategoryName
    slug: CategorySlug
    description: Optional[str] = None


class CategoryUpdate(PartialUpdate):
    non_nullable = ("name", "slug")

    name: Optional[CategoryName] = None
    slug: Optional[CategorySlug] = None
    description: Optional[str] = None


class CategoryRead(CamelModel):
    id: uuid.UUID
    name: str
    slug: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    post_count: int = 0


class CategoryOption(CamelModel):
    id: uuid.UUID
    name: str
    slug: str
    post_count: int = 0


# --- Media ---


class MediaRead(CamelModel):
    id: uuid.UUID
    filename: str
    original_name: str
    mime_type: str
    size: int
    url: str
    bucket: str
    path: str
    alt_text: Optional[str] = None
    caption: Optional[str] = None
    uploaded_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class MediaUpdate(PartialUpdate):
    alt_text: Optional[Annotated[str, StringConstraints(max_length=500)]] = None
    caption: Optional[str] = None


class UploadUrlRequest(CamelModel):
    filename: Annotated[str, StringConstraints(min_length=1, max_length=255)]
    content_type: str


class UploadUrlResponse(CamelModel):
    key: str
    upload_url: str
    method: Literal["PUT", "POST"]
    expires_in: Optional[int] = None


# --- Galleries ---


class GalleryCreate(CamelModel):
    title: GalleryTitle
    slug: GallerySlug
    description: Optional[str] = None
    entity_type: EntityType = "school"


class GalleryUpdate(PartialUpdate):
    non_nullable = ("title", "slug", "entity_type")

    title: Optional[GalleryTitle] = None
    slug: Optional[GallerySlug] = None
    description: Optional[str] = None
    entity_type: Optional[EntityType] = None


class GalleryItemRead(CamelModel):
    id: uuid.UUID
    media_id: uuid.UUID
    order: int
    media: MediaRead


class GalleryListItem(CamelModel):
    id: uuid.UUID
    title: str
    slug: str
    description: Optional[str] = None
    entity_type: EntityType
    created_at: datetime
    updated_at: datetime
    media_count: int = 0


class GalleryRead(GalleryListItem):
    items: list[GalleryItemRead] = []


class GalleryMediaIds(CamelModel):
    """Body of the gallery add/remove/reorder endpoints."""

    media_ids: Annotated[list[uuid.UUID], Field(min_length=1)]


# --- Stats & activity ---


class StatusCounts(CamelModel):
    total: int
    published: int
    draft: int


class Overview(CamelModel):
    posts: StatusCounts
    pages: StatusCounts
    categories: int
    media: int


class CategoryPostCount(CamelModel):
    id: uuid.UUID
    name: str
    slug: str
    post_count: int


class AuthorName(CamelModel):
    id: str
    name: str


class RecentItem(CamelModel):
    id: uuid.UUID
    title: str
    status: Status
    entity_type: EntityType
    created_at: datetime
    author: Optional[AuthorName] = None


class RecentContent(CamelModel):
    posts: list[RecentItem]
    pages: list[RecentItem]


class StatsResponse(CamelModel):
    overview: Overview
    posts_by_category: list[CategoryPostCount]
    recent_content: RecentContent


class ActivityRead(CamelModel):
    id: uuid.UUID
    action: str
    entity_type: str
    entity_id: uuid.UUID
    meta: Optional[dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("meta", "metadata"),
        serialization_alias="metadata",
    )
    created_at: datetime
    user: Optional[UserSummary] = None


class HealthResponse(CamelModel):
    status: str
    timestamp: datetime
