import uuid
from typing import Optional

from cms_authorization import AuthContext, get_auth_context, require_permission
from cms_authorization.permissions import GALLERIES_MANAGE
from cms_core.exceptions import DuplicateSlugError, NotFoundError, ValidationFailedError
from cms_core.schemas import PaginatedResponse, PaginationParams
from cms_db import Filter, ListQuery, QuerySet, get_db
from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..access import ensure_user
from ..activity import CREATE, DELETE, UPDATE, record_activity
from ..dependencies import get_pagination
from ..models import Gallery, GalleryMedia, Media
from ..schemas import (
    DeleteResponse,
    EntityType,
    GalleryCreate,
    GalleryListItem,
    GalleryMediaIds,
    GalleryRead,
    GalleryUpdate,
)

router = APIRouter(prefix="/galleries", tags=["galleries"])

gallery_listing = ListQuery(
    Gallery,
    filters=(Filter("entity_type"),),
    search=("title",),
)


def _with_media_count() -> QuerySet[Gallery]:
    media_count = (
        select(func.count(GalleryMedia.id))
        .where(GalleryMedia.gallery_id == Gallery.id)
        .correlate(Gallery)
        .scalar_subquery()
    )
    return Gallery.objects.all().annotate(media_count=media_count)


async def _get_gallery(db: AsyncSession, **lookup) -> Gallery:
    gallery = (
        await _with_media_count()
        .prefetch_related("items")
        .filter(**lookup)
        .populate_existing()
        .first(db)
    )
    if gallery is None:
        raise NotFoundError("Gallery not found")
    return gallery


async def _ensure_slug_free(
    db: AsyncSession, slug: str, exclude_id: Optional[uuid.UUID] = None
) -> None:
    qs = Gallery.objects.filter(slug=slug)
    if exclude_id is not None:
        qs = qs.exclude(id=exclude_id)
    if await qs.exists(db):
        raise DuplicateSlugError("A gallery with this slug already exists")


async def _ensure_media_exist(db: AsyncSession, media_ids: list[uuid.UUID]) -> None:
    found = set(
        await db.scalars(select(Media.id).where(Media.id.in_(set(media_ids))))
    )
    missing = [str(m) for m in media_ids if m not in found]
    if missing:
        raise ValidationFailedError(
            "Media not found", field="mediaIds", missing=missing
        )


def _unique(ids: list[uuid.UUID]) -> list[uuid.UUID]:
    return list(dict.fromkeys(ids))


@router.get("", response_model=PaginatedResponse[GalleryListItem])
async def list_galleries(
    params: PaginationParams = Depends(get_pagination),
    entity_type: Optional[EntityType] = Query(None, alias="entityType"),
    _: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    result = await gallery_listing.execute(
        db, params, {"entity_type": entity_type}, base=_with_media_count()
    )
    return PaginatedResponse[GalleryListItem].from_params(
        [GalleryListItem.model_validate(g) for g in result.items],
        total=result.total,
        params=params,
    )


@router.get("/slug/{slug}", response_model=GalleryRead)
async def get_gallery_by_slug(
    slug: str,
    _: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return GalleryRead.model_validate(await _get_gallery(db, slug=slug))


@router.get("/{gallery_id}", response_model=GalleryRead)
async def get_gallery(
    gallery_id: uuid.UUID,
    _: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return GalleryRead.model_validate(await _get_gallery(db, id=gallery_id))


@router.post("", response_model=GalleryRead, status_code=201)
async def create_gallery(
    body: GalleryCreate,
    auth: AuthContext = Depends(require_permission(GALLERIES_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth)
    await _ensure_slug_free(db, body.slug)

    gallery = await Gallery.objects.create(db, **body.model_dump())
    await record_activity(db, auth, CREATE, "gallery", gallery.id, title=gallery.title)
    await db.commit()
    return GalleryRead.model_validate(await _get_gallery(db, id=gallery.id))


@router.put("/{gallery_id}", response_model=GalleryRead)
async def update_gallery(
    gallery_id: uuid.UUID,
    body: GalleryUpdate,
    auth: AuthContext = Depends(require_permission(GALLERIES_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth)
    gallery = await _get_gallery(db, id=gallery_id)

    changes = body.changes()
    if "slug" in changes:
        await _ensure_slug_free(db, changes["slug"], exclude_id=gallery.id)
    for name, value in changes.items():
        setattr(gallery, name, value)

    await Gallery.objects.flush(db)
    await record_activity(db, auth, UPDATE, "gallery", gallery.id, title=gallery.title)
    await db.commit()
    return GalleryRead.model_validate(await _get_gallery(db, id=gallery.id))


@router.delete("/{gallery_id}", response_model=DeleteResponse)
async def delete_gallery(
    gallery_id: uuid.UUID,
    auth: AuthContext = Depends(require_permission(GALLERIES_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    """Delete a gallery. The media themselves are kept."""
    await ensure_user(db, auth)
    gallery = await Gallery.objects.get_by_pk(db, gallery_id)
    if gallery is None:
        raise NotFoundError("Gallery not found")
    title = gallery.title

    await Gallery.objects.filter(id=gallery.id).delete(db)
    await record_activity(db, auth, DELETE, "gallery", gallery_id, title=title)
    await db.commit()
    return DeleteResponse()


@router.post("/{gallery_id}/media", response_model=GalleryRead)
async def add_gallery_media(
    gallery_id: uuid.UUID,
    body: GalleryMediaIds,
    auth: AuthContext = Depends(require_permission(GALLERIES_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    """Append media to the end of the gallery; media already present are skipped."""
    await ensure_user(db, auth)
    gallery = await _get_gallery(db, id=gallery_id)
    media_ids = _unique(body.media_ids)
    await _ensure_media_exist(db, media_ids)

    present = {item.media_id for item in gallery.items}
    position = max((item.order for item in gallery.items), default=-1) + 1
    added = []
    for media_id in media_ids:
        if media_id in present:
            continue
        gallery.items.append(GalleryMedia(media_id=media_id, order=position))
        position += 1
        added.append(str(media_id))

    await Gallery.objects.flush(db)
    await record_activity(
        db, auth, UPDATE, "gallery", gallery.id, operation="add_media", mediaIds=added
    )
    await db.commit()
    return GalleryRead.model_validate(await _get_gallery(db, id=gallery.id))


@router.delete("/{gallery_id}/media", response_model=GalleryRead)
async def remove_gallery_media(
    gallery_id: uuid.UUID,
    body: GalleryMediaIds,
    auth: AuthContext = Depends(require_permission(GALLERIES_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    """Remove media from the gallery and close the gaps in the ordering."""
    await ensure_user(db, auth)
    gallery = await _get_gallery(db, id=gallery_id)
    to_remove = set(body.media_ids)

    removed = [item for item in gallery.items if item.media_id in to_remove]
    for item in removed:
        gallery.items.remove(item)
    for position, item in enumerate(gallery.items):
        item.order = position

    await Gallery.objects.flush(db)
    await record_activity(
        db,
        auth,
        UPDATE,
        "gallery",
        gallery.id,
        operation="remove_media",
        mediaIds=[str(item.media_id) for item in removed],
    )
    await db.commit()
    return GalleryRead.model_validate(await _get_gallery(db, id=gallery.id))


@router.put("/{gallery_id}/media/reorder", response_model=GalleryRead)
async def reorder_gallery_media(
    gallery_id: uuid.UUID,
    body: GalleryMediaIds,
    auth: AuthContext = Depends(require_permission(GALLERIES_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    """
    Put the listed media first, in the given order. Media not listed keep
    their relative order after them.

    Raises:
        ValidationFailedError: If a listed media is not in the gallery.
    """
    await ensure_user(db, auth)
    gallery = await _get_gallery(db, id=gallery_id)
    media_ids = _unique(body.media_ids)

    by_media = {item.media_id: item for item in gallery.items}
    missing = [str(m) for m in media_ids if m not in by_media]
    if missing:
        raise ValidationFailedError(
            "Media not in gallery", field="mediaIds", missing=missing
        )

    listed = [by_media[m] for m in media_ids]
    listed_ids = set(media_ids)
    rest = [item for item in gallery.items if item.media_id not in listed_ids]
    for position, item in enumerate(listed + rest):
        item.order = position

    await Gallery.objects.flush(db)
    await record_activity(
        db,
        auth,
        UPDATE,
        "gallery",
        gallery.id,
        operation="reorder_media",
        mediaIds=[str(m) for m in media_ids],
    )
    await db.commit()
    return GalleryRead.model_validate(await _get_gallery(db, id=gallery.id))
