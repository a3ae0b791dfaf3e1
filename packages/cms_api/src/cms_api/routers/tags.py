import re
from collections.abc import Iterable

from cms_authorization import AuthContext, get_auth_context
from cms_db import get_db
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Tag
from ..schemas import ItemsResponse, TagRead

router = APIRouter(prefix="/tags", tags=["tags"])

TAG_SEARCH_LIMIT = 20


def slugify_tag(name: str) -> str:
    """
    >>> slugify_tag("  Open  Day ")
    'open-day'
    """
    return re.sub(r"\s+", "-", name.strip().lower())


async def resolve_tags(db: AsyncSession, names: Iterable[str]) -> list[Tag]:
    """Find or create a tag per distinct slug, preserving first-seen order."""
    tags: dict[str, Tag] = {}
    for name in names:
        slug = slugify_tag(name)
        if not slug or slug in tags:
            continue
        tag, _ = await Tag.objects.get_or_create(
            db, slug=slug, defaults={"name": name.strip()}
        )
        tags[slug] = tag
    return list(tags.values())


@router.get("", response_model=ItemsResponse[TagRead])
async def list_tags(
    _: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    tags = await Tag.objects.all().order_by("name").fetch(db)
    return ItemsResponse[TagRead](items=[TagRead.model_validate(t) for t in tags])


@router.get("/search", response_model=ItemsResponse[TagRead])
async def search_tags(
    q: str = Query("", max_length=100),
    _: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    tags = (
        await Tag.objects.search(q.strip(), "name", "slug")
        .order_by("name")
        .limit(TAG_SEARCH_LIMIT)
        .fetch(db)
    )
    return ItemsResponse[TagRead](items=[TagRead.model_validate(t) for t in tags])
