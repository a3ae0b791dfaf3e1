import uuid
from collections import defaultdict
from typing import Optional

from cms_authorization import AuthContext, get_auth_context, require_permission
from cms_authorization.permissions import PAGES_CREATE, PAGES_DELETE, PAGES_EDIT
from cms_core.exceptions import DuplicateSlugError, InvalidParentError, NotFoundError
from cms_core.schemas import PaginatedResponse, PaginationParams
from cms_db import Filter, ListQuery, QuerySet, get_db
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..access import ensure_can_modify, ensure_user, is_visible, visibility_clause
from ..activity import CREATE, DELETE, PUBLISH, UNPUBLISH, UPDATE, record_activity
from ..dependencies import get_pagination
from ..models import STATUS_DRAFT, STATUS_PUBLISHED, Page
from ..schemas import (
    DeleteResponse,
    EntityType,
    PageCreate,
    PageListItem,
    PageRead,
    PageTreeNode,
    PageUpdate,
    Status,
)

router = APIRouter(prefix="/pages", tags=["pages"])

ROOT_TOKEN = "null"

page_listing = ListQuery(
    Page,
    filters=(
        Filter("status"),
        Filter("entity_type"),
        Filter("parent_id", null_token=ROOT_TOKEN, coerce=uuid.UUID),
    ),
    search=("title",),
)


def _page_queryset() -> QuerySet[Page]:
    return Page.objects.all().select_related("author")


async def _get_visible_page(db: AsyncSession, auth: AuthContext, **lookup) -> Page:
    page = await _page_queryset().filter(**lookup).first(db)
    if page is None or not is_visible(auth, page):
        raise NotFoundError("Page not found")
    return page


async def _reload(db: AsyncSession, page_id: uuid.UUID) -> PageRead:
    page = await _page_queryset().filter(id=page_id).populate_existing().first(db)
    return PageRead.model_validate(page)


async def _ensure_slug_free(
    db: AsyncSession, slug: str, exclude_id: Optional[uuid.UUID] = None
) -> None:
    qs = Page.objects.filter(slug=slug)
    if exclude_id is not None:
        qs = qs.exclude(id=exclude_id)
    if await qs.exists(db):
        raise DuplicateSlugError("A page with this slug already exists")


async def check_parent(
    db: AsyncSession, parent_id: uuid.UUID, page_id: Optional[uuid.UUID] = None
) -> None:
    """
    Validate a new parent for ``page_id`` (``None`` for a page being created).

    Raises:
        InvalidParentError: If the parent does not exist, is the page itself,
            or is one of its descendants.
    """
    if page_id is not None and parent_id == page_id:
        raise InvalidParentError("A page cannot be its own parent")

    seen: set[uuid.UUID] = set()
    current: Optional[uuid.UUID] = parent_id
    while current is not None and current not in seen:
        seen.add(current)
        node = await Page.objects.get_by_pk(db, current)
        if node is None:
            raise InvalidParentError("Parent page not found")
        if page_id is not None and node.parent_id == page_id:
            raise InvalidParentError("A page cannot be moved under its own descendant")
        current = node.parent_id


def build_page_tree(pages: list[Page]) -> list[PageTreeNode]:
    """
    Nest ``pages`` by parent. A page whose parent is not in ``pages`` (hidden
    from the caller or filtered out) becomes a root. Sibling order follows
    the input order.
    """
    ids = {p.id for p in pages}
    children: dict[Optional[uuid.UUID], list[Page]] = defaultdict(list)
    for page in pages:
        parent = page.parent_id if page.parent_id in ids else None
        children[parent].append(page)

    def nodes(parent_id: Optional[uuid.UUID]) -> list[PageTreeNode]:
        return [
            PageTreeNode(
                id=p.id,
                title=p.title,
                slug=p.slug,
                status=p.status,
                entity_type=p.entity_type,
                parent_id=p.parent_id,
                created_at=p.created_at,
                updated_at=p.updated_at,
                children=nodes(p.id),
            )
            for p in children.get(parent_id, [])
        ]

    return nodes(None)


@router.get("", response_model=PaginatedResponse[PageListItem])
async def list_pages(
    params: PaginationParams = Depends(get_pagination),
    status: Optional[Status] = None,
    entity_type: Optional[EntityType] = Query(None, alias="entityType"),
    parent_id: Optional[str] = Query(
        None, alias="parentId", description="Parent page id, or 'null' for root pages"
    ),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    result = await page_listing.execute(
        db,
        params,
        {"status": status, "entity_type": entity_type, "parent_id": parent_id},
        scope=visibility_clause(auth, Page),
        base=_page_queryset(),
    )
    return PaginatedResponse[PageListItem].from_params(
        [PageListItem.model_validate(p) for p in result.items],
        total=result.total,
        params=params,
    )


@router.get("/tree", response_model=list[PageTreeNode])
async def get_page_tree(
    entity_type: Optional[EntityType] = Query(None, alias="entityType"),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    qs = Page.objects.all()
    scope = visibility_clause(auth, Page)
    if scope is not None:
        qs = qs.filter(scope)
    if entity_type is not None:
        qs = qs.filter(entity_type=entity_type)
    pages = await qs.order_by("-created_at").fetch(db)
    return build_page_tree(list(pages))


@router.get("/slug/{slug}", response_model=PageRead)
async def get_page_by_slug(
    slug: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return PageRead.model_validate(await _get_visible_page(db, auth, slug=slug))


@router.get("/{page_id}", response_model=PageRead)
async def get_page(
    page_id: uuid.UUID,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return PageRead.model_validate(await _get_visible_page(db, auth, id=page_id))


@router.post("", response_model=PageRead, status_code=201)
async def create_page(
    body: PageCreate,
    auth: AuthContext = Depends(require_permission(PAGES_CREATE)),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth)
    await _ensure_slug_free(db, body.slug)
    if body.parent_id is not None:
        await check_parent(db, body.parent_id)

    page = await Page.objects.create(db, **body.model_dump(), author_id=auth.subject)
    await record_activity(db, auth, CREATE, "page", page.id, title=page.title)
    await db.commit()
    return await _reload(db, page.id)


@router.put("/{page_id}", response_model=PageRead)
async def update_page(
    page_id: uuid.UUID,
    body: PageUpdate,
    auth: AuthContext = Depends(require_permission(PAGES_EDIT)),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth)
    page = await _get_visible_page(db, auth, id=page_id)
    ensure_can_modify(auth, page.author_id, "pages")

    changes = body.changes()
    if "slug" in changes:
        await _ensure_slug_free(db, changes["slug"], exclude_id=page.id)
    if changes.get("parent_id") is not None:
        await check_parent(db, changes["parent_id"], page.id)

    for name, value in changes.items():
        setattr(page, name, value)

    await Page.objects.flush(db)
    await record_activity(db, auth, UPDATE, "page", page.id, title=page.title)
    await db.commit()
    return await _reload(db, page.id)


@router.delete("/{page_id}", response_model=DeleteResponse)
async def delete_page(
    page_id: uuid.UUID,
    auth: AuthContext = Depends(require_permission(PAGES_DELETE)),
    db: AsyncSession = Depends(get_db),
):
    """Delete a page. Its children become root pages."""
    await ensure_user(db, auth)
    page = await _get_visible_page(db, auth, id=page_id)
    ensure_can_modify(auth, page.author_id, "pages", action="delete")
    title = page.title

    await Page.objects.filter(id=page.id).delete(db)
    await record_activity(db, auth, DELETE, "page", page_id, title=title)
    await db.commit()
    return DeleteResponse()


@router.patch("/{page_id}/publish", response_model=PageRead)
async def toggle_page_publish(
    page_id: uuid.UUID,
    auth: AuthContext = Depends(require_permission(PAGES_EDIT)),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth)
    page = await _get_visible_page(db, auth, id=page_id)
    ensure_can_modify(auth, page.author_id, "pages")

    if page.status == STATUS_PUBLISHED:
        page.status, action = STATUS_DRAFT, UNPUBLISH
    else:
        page.status, action = STATUS_PUBLISHED, PUBLISH

    await Page.objects.flush(db)
    await record_activity(db, auth, action, "page", page.id, title=page.title)
    await db.commit()
    return await _reload(db, page.id)
