import uuid
from typing import Optional

from cms_authorization import AuthContext, get_auth_context, require_permission
from cms_authorization.permissions import CATEGORIES_MANAGE
from cms_core.exceptions import (
    CategoryHasPostsError,
    DuplicateNameError,
    DuplicateSlugError,
    NotFoundError,
)
from cms_core.schemas import PaginatedResponse, PaginationParams
from cms_db import ListQuery, QuerySet, get_db
from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..access import ensure_user, visibility_clause
from ..activity import CREATE, DELETE, UPDATE, record_activity
from ..dependencies import get_pagination
from ..models import Category, Post
from ..schemas import (
    CategoryCreate,
    CategoryOption,
    CategoryRead,
    CategoryUpdate,
    DeleteResponse,
    ItemsResponse,
    PostListItem,
)
from .posts import post_list_queryset, post_listing

router = APIRouter(prefix="/categories", tags=["categories"])

category_listing = ListQuery(Category, search=("name",))


def _with_post_count() -> QuerySet[Category]:
    post_count = (
        select(func.count(Post.id))
        .where(Post.category_id == Category.id)
        .correlate(Category)
        .scalar_subquery()
    )
    return Category.objects.all().annotate(post_count=post_count)


async def _get_category(db: AsyncSession, **lookup) -> Category:
    category = await _with_post_count().filter(**lookup).populate_existing().first(db)
    if category is None:
        raise NotFoundError("Category not found")
    return category


async def _ensure_unique(
    db: AsyncSession,
    *,
    slug: Optional[str] = None,
    name: Optional[str] = None,
    exclude_id: Optional[uuid.UUID] = None,
) -> None:
    """
    Raises:
        DuplicateSlugError: Checked first.
        DuplicateNameError: If the slug is free but the name is taken.
    """
    for field, value, error in (
        ("slug", slug, DuplicateSlugError),
        ("name", name, DuplicateNameError),
    ):
        if value is None:
            continue
        qs = Category.objects.filter(**{field: value})
        if exclude_id is not None:
            qs = qs.exclude(id=exclude_id)
        if await qs.exists(db):
            raise error(f"A category with this {field} already exists")


@router.get("", response_model=PaginatedResponse[CategoryRead])
async def list_categories(
    params: PaginationParams = Depends(get_pagination),
    _: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    result = await category_listing.execute(db, params, base=_with_post_count())
    return PaginatedResponse[CategoryRead].from_params(
        [CategoryRead.model_validate(c) for c in result.items],
        total=result.total,
        params=params,
    )


@router.get("/all", response_model=ItemsResponse[CategoryOption])
async def list_all_categories(
    _: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Every category ordered by name, for pickers."""
    categories = await _with_post_count().order_by("name").fetch(db)
    return ItemsResponse[CategoryOption](
        items=[CategoryOption.model_validate(c) for c in categories]
    )


@router.get("/slug/{slug}", response_model=CategoryRead)
async def get_category_by_slug(
    slug: str,
    _: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return CategoryRead.model_validate(await _get_category(db, slug=slug))


@router.get("/{category_id}", response_model=CategoryRead)
async def get_category(
    category_id: uuid.UUID,
    _: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return CategoryRead.model_validate(await _get_category(db, id=category_id))


@router.get("/{category_id}/posts", response_model=PaginatedResponse[PostListItem])
async def list_category_posts(
    category_id: uuid.UUID,
    params: PaginationParams = Depends(get_pagination),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    if not await Category.objects.filter(id=category_id).exists(db):
        raise NotFoundError("Category not found")
    result = await post_listing.execute(
        db,
        params,
        {"category_id": category_id},
        scope=visibility_clause(auth, Post),
        base=post_list_queryset(),
    )
    return PaginatedResponse[PostListItem].from_params(
        [PostListItem.model_validate(p) for p in result.items],
        total=result.total,
        params=params,
    )


@router.post("", response_model=CategoryRead, status_code=201)
async def create_category(
    body: CategoryCreate,
    auth: AuthContext = Depends(require_permission(CATEGORIES_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth)
    await _ensure_unique(db, slug=body.slug, name=body.name)

    category = await Category.objects.create(db, **body.model_dump())
    await record_activity(
        db, auth, CREATE, "category", category.id, name=category.name
    )
    await db.commit()
    return CategoryRead.model_validate(await _get_category(db, id=category.id))


@router.put("/{category_id}", response_model=CategoryRead)
async def update_category(
    category_id: uuid.UUID,
    body: CategoryUpdate,
    auth: AuthContext = Depends(require_permission(CATEGORIES_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth)
    category = await Category.objects.get_by_pk(db, category_id)
    if category is None:
        raise NotFoundError("Category not found")

    changes = body.changes()
    await _ensure_unique(
        db,
        slug=changes.get("slug"),
        name=changes.get("name"),
        exclude_id=category.id,
    )
    for name, value in changes.items():
        setattr(category, name, value)

    await Category.objects.flush(db)
    await record_activity(
        db, auth, UPDATE, "category", category.id, name=category.name
    )
    await db.commit()
    return CategoryRead.model_validate(await _get_category(db, id=category.id))


@router.delete("/{category_id}", response_model=DeleteResponse)
async def delete_category(
    category_id: uuid.UUID,
    auth: AuthContext = Depends(require_permission(CATEGORIES_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    """
    Delete an empty category.

    Raises:
        CategoryHasPostsError: If any post still references the category.
    """
    await ensure_user(db, auth)
    category = await Category.objects.get_by_pk(db, category_id)
    if category is None:
        raise NotFoundError("Category not found")

    post_count = await Post.objects.filter(category_id=category.id).count(db)
    if post_count > 0:
        raise CategoryHasPostsError(post_count)

    name = category.name
    await Category.objects.filter(id=category.id).delete(db)
    await record_activity(db, auth, DELETE, "category", category_id, name=name)
    await db.commit()
    return DeleteResponse()
