import uuid
from typing import Optional

from cms_authorization import AuthContext, get_auth_context, require_permission
from cms_authorization.permissions import (
    POSTS_CREATE,
    POSTS_DELETE,
    POSTS_EDIT,
    POSTS_PUBLISH,
)
from cms_core.exceptions import DuplicateSlugError, NotFoundError, ValidationFailedError
from cms_core.schemas import PaginatedResponse, PaginationParams
from cms_db import Filter, ListQuery, QuerySet, get_db, utcnow
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..access import ensure_can_modify, ensure_user, is_visible, visibility_clause
from ..activity import CREATE, DELETE, PUBLISH, UNPUBLISH, UPDATE, record_activity
from ..dependencies import get_pagination
from ..models import STATUS_DRAFT, STATUS_PUBLISHED, Category, Media, Post
from ..schemas import (
    DeleteResponse,
    EntityType,
    ItemsResponse,
    PostCreate,
    PostListItem,
    PostRead,
    PostUpdate,
    Status,
    TagRead,
)
from .tags import resolve_tags

router = APIRouter(prefix="/posts", tags=["posts"])

post_listing = ListQuery(
    Post,
    filters=(Filter("status"), Filter("entity_type"), Filter("category_id")),
    search=("title", "excerpt"),
)


def post_list_queryset() -> QuerySet[Post]:
    return Post.objects.all().select_related("author", "category")


def _post_detail() -> QuerySet[Post]:
    return post_list_queryset().prefetch_related("tags")


async def _get_visible_post(db: AsyncSession, auth: AuthContext, **lookup) -> Post:
    post = await _post_detail().filter(**lookup).first(db)
    if post is None or not is_visible(auth, post):
        raise NotFoundError("Post not found")
    return post


async def _reload(db: AsyncSession, post_id: uuid.UUID) -> PostRead:
    post = await _post_detail().filter(id=post_id).populate_existing().first(db)
    return PostRead.model_validate(post)


async def check_post_references(
    db: AsyncSession,
    category_id: Optional[uuid.UUID],
    featured_image_id: Optional[uuid.UUID],
) -> None:
    """
    Raises:
        ValidationFailedError: If a referenced category or image does not exist.
    """
    if category_id is not None and not await Category.objects.filter(
        id=category_id
    ).exists(db):
        raise ValidationFailedError("Category not found", field="categoryId")
    if featured_image_id is not None and not await Media.objects.filter(
        id=featured_image_id
    ).exists(db):
        raise ValidationFailedError("Media not found", field="featuredImageId")


async def _ensure_slug_free(
    db: AsyncSession, slug: str, exclude_id: Optional[uuid.UUID] = None
) -> None:
    qs = Post.objects.filter(slug=slug)
    if exclude_id is not None:
        qs = qs.exclude(id=exclude_id)
    if await qs.exists(db):
        raise DuplicateSlugError("A post with this slug already exists")


@router.get("", response_model=PaginatedResponse[PostListItem])
async def list_posts(
    params: PaginationParams = Depends(get_pagination),
    status: Optional[Status] = None,
    entity_type: Optional[EntityType] = Query(None, alias="entityType"),
    category_id: Optional[uuid.UUID] = Query(None, alias="categoryId"),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """
    List posts, newest first.

    Callers without ``content:read_all`` see published posts and their own
    drafts.
    """
    result = await post_listing.execute(
        db,
        params,
        {"status": status, "entity_type": entity_type, "category_id": category_id},
        scope=visibility_clause(auth, Post),
        base=post_list_queryset(),
    )
    return PaginatedResponse[PostListItem].from_params(
        [PostListItem.model_validate(p) for p in result.items],
        total=result.total,
        params=params,
    )


@router.get("/slug/{slug}", response_model=PostRead)
async def get_post_by_slug(
    slug: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return PostRead.model_validate(await _get_visible_post(db, auth, slug=slug))


@router.get("/{post_id}", response_model=PostRead)
async def get_post(
    post_id: uuid.UUID,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return PostRead.model_validate(await _get_visible_post(db, auth, id=post_id))


@router.get("/{post_id}/tags", response_model=ItemsResponse[TagRead])
async def get_post_tags(
    post_id: uuid.UUID,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    post = await _get_visible_post(db, auth, id=post_id)
    return ItemsResponse[TagRead](items=[TagRead.model_validate(t) for t in post.tags])


@router.post("", response_model=PostRead, status_code=201)
async def create_post(
    body: PostCreate,
    auth: AuthContext = Depends(require_permission(POSTS_CREATE)),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth)
    await _ensure_slug_free(db, body.slug)
    await check_post_references(db, body.category_id, body.featured_image_id)

    tags = await resolve_tags(db, body.tags or [])
    post = await Post.objects.create(
        db,
        **body.model_dump(exclude={"tags"}),
        author_id=auth.subject,
        published_at=utcnow() if body.status == STATUS_PUBLISHED else None,
        tags=tags,
    )
    await record_activity(db, auth, CREATE, "post", post.id, title=post.title)
    await db.commit()
    return await _reload(db, post.id)


@router.put("/{post_id}", response_model=PostRead)
async def update_post(
    post_id: uuid.UUID,
    body: PostUpdate,
    auth: AuthContext = Depends(require_permission(POSTS_EDIT)),
    db: AsyncSession = Depends(get_db),
):
    """
    Apply the fields present in the body. ``tags`` replaces the whole set.
    """
    await ensure_user(db, auth)
    post = await _get_visible_post(db, auth, id=post_id)
    ensure_can_modify(auth, post.author_id, "posts")

    changes = body.changes()
    if "slug" in changes:
        await _ensure_slug_free(db, changes["slug"], exclude_id=post.id)
    await check_post_references(
        db, changes.get("category_id"), changes.get("featured_image_id")
    )

    if "tags" in changes:
        post.tags = await resolve_tags(db, changes.pop("tags") or [])

    new_status = changes.get("status")
    if new_status == STATUS_PUBLISHED and post.status != STATUS_PUBLISHED:
        post.published_at = utcnow()
    elif new_status == STATUS_DRAFT:
        post.published_at = None

    for name, value in changes.items():
        setattr(post, name, value)

    await Post.objects.flush(db)
    await record_activity(db, auth, UPDATE, "post", post.id, title=post.title)
    await db.commit()
    return await _reload(db, post.id)


@router.delete("/{post_id}", response_model=DeleteResponse)
async def delete_post(
    post_id: uuid.UUID,
    auth: AuthContext = Depends(require_permission(POSTS_DELETE)),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth)
    post = await _get_visible_post(db, auth, id=post_id)
    ensure_can_modify(auth, post.author_id, "posts", action="delete")
    title = post.title

    await Post.objects.filter(id=post.id).delete(db)
    await record_activity(db, auth, DELETE, "post", post_id, title=title)
    await db.commit()
    return DeleteResponse()


@router.patch("/{post_id}/publish", response_model=PostRead)
async def toggle_post_publish(
    post_id: uuid.UUID,
    auth: AuthContext = Depends(require_permission(POSTS_PUBLISH)),
    db: AsyncSession = Depends(get_db),
):
    """Flip draft and published; ``publishedAt`` is set or cleared to match."""
    await ensure_user(db, auth)
    post = await _get_visible_post(db, auth, id=post_id)
    ensure_can_modify(auth, post.author_id, "posts")

    if post.status == STATUS_PUBLISHED:
        post.status = STATUS_DRAFT
        post.published_at = None
        action = UNPUBLISH
    else:
        post.status = STATUS_PUBLISHED
        post.published_at = utcnow()
        action = PUBLISH

    await Post.objects.flush(db)
    await record_activity(db, auth, action, "post", post.id, title=post.title)
    await db.commit()
    return await _reload(db, post.id)
