import logging
import uuid
from typing import Optional

from cms_authorization import AuthContext, get_auth_context, require_permission
from cms_authorization.permissions import MEDIA_DELETE, MEDIA_UPLOAD
from cms_core.config import CMSSettings
from cms_core.exceptions import NotFoundError, UploadFailedError, ValidationFailedError
from cms_core.schemas import PaginatedResponse, PaginationParams
from cms_db import Filter, ListQuery, get_db
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from ..access import ensure_user
from ..activity import CREATE, DELETE, UPDATE, record_activity
from ..dependencies import get_pagination, get_settings, get_storage
from ..models import Media
from ..schemas import (
    DeleteResponse,
    MediaRead,
    MediaUpdate,
    UploadUrlRequest,
    UploadUrlResponse,
)
from ..storage import Storage, StorageError, build_object_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/media", tags=["media"])

media_listing = ListQuery(
    Media,
    filters=(Filter("mime_type", lookup="prefix"),),
    search=("original_name", "alt_text"),
)


def _normalize_content_type(content_type: Optional[str]) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def check_content_type(content_type: str, settings: CMSSettings) -> None:
    if content_type not in settings.ALLOWED_MEDIA_TYPES:
        raise ValidationFailedError("Invalid file type", field="file")


def _discard_object(storage: Storage, key: str) -> None:
    try:
        storage.delete(key)
    except (StorageError, OSError):
        logger.warning("Could not remove stored object %s", key, exc_info=True)


async def _get_media(db: AsyncSession, media_id: uuid.UUID) -> Media:
    media = await Media.objects.get_by_pk(db, media_id)
    if media is None:
        raise NotFoundError("Media not found")
    return media


@router.get("", response_model=PaginatedResponse[MediaRead])
async def list_media(
    params: PaginationParams = Depends(get_pagination),
    mime_type: Optional[str] = Query(
        None, alias="mimeType", description="MIME prefix such as 'image/'"
    ),
    _: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    result = await media_listing.execute(db, params, {"mime_type": mime_type or None})
    return PaginatedResponse[MediaRead].from_params(
        [MediaRead.model_validate(m) for m in result.items],
        total=result.total,
        params=params,
    )


@router.get("/{media_id}", response_model=MediaRead)
async def get_media(
    media_id: uuid.UUID,
    _: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return MediaRead.model_validate(await _get_media(db, media_id))


@router.post("/upload-url", response_model=UploadUrlResponse)
async def create_upload_url(
    body: UploadUrlRequest,
    _: AuthContext = Depends(require_permission(MEDIA_UPLOAD)),
    settings: CMSSettings = Depends(get_settings),
    storage: Storage = Depends(get_storage),
):
    """
    Reserve an object key for an upload.

    Backends that support direct uploads return a presigned ``PUT`` URL;
    otherwise the client posts the file to ``/media/upload``.
    """
    content_type = _normalize_content_type(body.content_type)
    check_content_type(content_type, settings)

    key = build_object_key(body.filename)
    try:
        presigned = await run_in_threadpool(
            storage.presign_put, key, content_type=content_type
        )
    except StorageError as e:
        raise UploadFailedError() from e

    if presigned is None:
        return UploadUrlResponse(
            key=key,
            upload_url=f"{settings.API_PREFIX}/media/upload",
            method="POST",
        )
    return UploadUrlResponse(
        key=key,
        upload_url=presigned,
        method="PUT",
        expires_in=settings.PRESIGNED_URL_EXPIRES,
    )


@router.post("/upload", response_model=MediaRead, status_code=201)
async def upload_media(
    file: Optional[UploadFile] = File(None),
    alt_text: Optional[str] = Form(None, alias="altText", max_length=500),
    caption: Optional[str] = Form(None),
    auth: AuthContext = Depends(require_permission(MEDIA_UPLOAD)),
    settings: CMSSettings = Depends(get_settings),
    storage: Storage = Depends(get_storage),
    db: AsyncSession = Depends(get_db),
):
    """
    Store one file and record it.

    Type and size are checked before anything is written. If the database
    write fails after the object was stored, the object is removed again.
    """
    if file is None or not file.filename:
        raise ValidationFailedError("No file provided", field="file")

    content_type = _normalize_content_type(file.content_type)
    check_content_type(content_type, settings)

    max_bytes = settings.MAX_UPLOAD_BYTES
    data = await file.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise ValidationFailedError(
            f"File too large (max {max_bytes // (1024 * 1024)}MB)", field="file"
        )

    await ensure_user(db, auth)

    key = build_object_key(file.filename)
    try:
        await run_in_threadpool(
            storage.put_bytes, key, data, content_type=content_type
        )
    except (StorageError, OSError) as e:
        raise UploadFailedError() from e

    try:
        media = await Media.objects.create(
            db,
            filename=key,
            original_name=file.filename,
            mime_type=content_type,
            size=len(data),
            url=storage.url_for(key),
            bucket=storage.bucket,
            path=key,
            alt_text=alt_text or None,
            caption=caption or None,
            uploaded_by=auth.subject,
        )
        await record_activity(
            db, auth, CREATE, "media", media.id, filename=file.filename
        )
        await db.commit()
    except Exception:
        await run_in_threadpool(_discard_object, storage, key)
        raise

    return MediaRead.model_validate(media)


@router.put("/{media_id}", response_model=MediaRead)
async def update_media(
    media_id: uuid.UUID,
    body: MediaUpdate,
    auth: AuthContext = Depends(require_permission(MEDIA_UPLOAD)),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth)
    media = await _get_media(db, media_id)

    for name, value in body.changes().items():
        setattr(media, name, value)

    await Media.objects.flush(db)
    await record_activity(
        db, auth, UPDATE, "media", media.id, filename=media.original_name
    )
    await db.commit()
    await db.refresh(media)
    return MediaRead.model_validate(media)


@router.delete("/{media_id}", response_model=DeleteResponse)
async def delete_media(
    media_id: uuid.UUID,
    auth: AuthContext = Depends(require_permission(MEDIA_DELETE)),
    storage: Storage = Depends(get_storage),
    db: AsyncSession = Depends(get_db),
):
    """
    Delete the record, then the stored object. Posts using it as featured
    image lose the reference; galleries drop it.
    """
    await ensure_user(db, auth)
    media = await _get_media(db, media_id)
    key, original_name = media.path, media.original_name

    await Media.objects.filter(id=media.id).delete(db)
    await record_activity(
        db, auth, DELETE, "media", media_id, filename=original_name
    )
    await db.commit()

    await run_in_threadpool(_discard_object, storage, key)
    return DeleteResponse()
