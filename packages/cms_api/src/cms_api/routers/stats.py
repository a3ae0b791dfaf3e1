from typing import Any, Optional

from cms_authorization import AuthContext, get_auth_context
from cms_core.config import CMSSettings
from cms_db import get_db
from fastapi import APIRouter, Depends, Query
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..access import ownership_clause
from ..dependencies import get_settings
from ..models import STATUS_DRAFT, STATUS_PUBLISHED, Activity, Category, Media, Page, Post
from ..schemas import (
    ActivityRead,
    CategoryPostCount,
    EntityType,
    ItemsResponse,
    Overview,
    RecentContent,
    RecentItem,
    StatsResponse,
    StatusCounts,
)

router = APIRouter(prefix="/stats", tags=["stats"])

RECENT_LIMIT = 5
DEFAULT_ACTIVITY_LIMIT = 20


def _content_conditions(
    model: Any, auth: AuthContext, entity_type: Optional[str]
) -> list[Any]:
    conditions = []
    if entity_type is not None:
        conditions.append(model.entity_type == entity_type)
    owned = ownership_clause(auth, model.author_id)
    if owned is not None:
        conditions.append(owned)
    return conditions


async def _status_counts(
    db: AsyncSession, model: Any, conditions: list[Any]
) -> StatusCounts:
    rows = await db.execute(
        select(model.status, func.count()).where(*conditions).group_by(model.status)
    )
    by_status = dict(rows.tuples().all())
    return StatusCounts(
        total=sum(by_status.values()),
        published=by_status.get(STATUS_PUBLISHED, 0),
        draft=by_status.get(STATUS_DRAFT, 0),
    )


async def _posts_by_category(
    db: AsyncSession, conditions: list[Any]
) -> list[CategoryPostCount]:
    """Every category with the number of matching posts, busiest first."""
    post_count = func.count(Post.id)
    stmt = (
        select(Category.id, Category.name, Category.slug, post_count.label("post_count"))
        .outerjoin(Post, and_(Post.category_id == Category.id, *conditions))
        .group_by(Category.id, Category.name, Category.slug)
        .order_by(post_count.desc(), Category.name)
    )
    rows = await db.execute(stmt)
    return [CategoryPostCount.model_validate(dict(row)) for row in rows.mappings().all()]


async def _recent(db: AsyncSession, model: Any, conditions: list[Any]) -> list[RecentItem]:
    items = (
        await model.objects.filter(*conditions)
        .select_related("author")
        .order_by("-created_at")
        .limit(RECENT_LIMIT)
        .fetch(db)
    )
    return [RecentItem.model_validate(item) for item in items]


@router.get("", response_model=StatsResponse)
async def get_stats(
    entity_type: Optional[EntityType] = Query(None, alias="entityType"),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """
    Dashboard overview. Post and page figures are limited to the caller's own
    content unless they hold ``content:read_all``; category and media totals
    are global.
    """
    post_conditions = _content_conditions(Post, auth, entity_type)
    page_conditions = _content_conditions(Page, auth, entity_type)

    overview = Overview(
        posts=await _status_counts(db, Post, post_conditions),
        pages=await _status_counts(db, Page, page_conditions),
        categories=await Category.objects.all().count(db),
        media=await Media.objects.all().count(db),
    )
    return StatsResponse(
        overview=overview,
        posts_by_category=await _posts_by_category(db, post_conditions),
        recent_content=RecentContent(
            posts=await _recent(db, Post, post_conditions),
            pages=await _recent(db, Page, page_conditions),
        ),
    )


@router.get("/activity", response_model=ItemsResponse[ActivityRead])
async def get_activity_feed(
    limit: int = Query(DEFAULT_ACTIVITY_LIMIT),
    auth: AuthContext = Depends(get_auth_context),
    settings: CMSSettings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    """Newest activity first; callers without ``content:read_all`` see their own."""
    limit = max(1, min(limit, settings.MAX_API_LIMIT))
    qs = Activity.objects.all().select_related("user")
    owned = ownership_clause(auth, Activity.user_id)
    if owned is not None:
        qs = qs.filter(owned)
    activities = await qs.order_by("-created_at").limit(limit).fetch(db)
    return ItemsResponse[ActivityRead](
        items=[ActivityRead.model_validate(a) for a in activities]
    )
