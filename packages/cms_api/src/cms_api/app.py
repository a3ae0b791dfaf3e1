from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from cms_authentication import BearerAuthenticationMiddleware, JWTAuthenticationBackend
from cms_authentication.backend import AuthenticationBackend
from cms_authorization import RolePolicy
from cms_core.config import CMSSettings, cms_settings
from cms_core.logging import setup_logging
from cms_db import close_db, create_all, get_session_factory, init_db, utcnow
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .access import sync_roles
from .errors import InternalErrorMiddleware, register_exception_handlers
from .middleware import REQUEST_ID_HEADER, RequestContextMiddleware
from .routers import categories, galleries, media, pages, posts, stats, tags
from .schemas import HealthResponse
from .storage import LocalStorage, Storage, storage_from_settings

logger = logging.getLogger(__name__)

ROUTERS = (
    posts.router,
    pages.router,
    categories.router,
    media.router,
    galleries.router,
    tags.router,
    stats.router,
)


@asynccontextmanager
async def lifespan(app: CMSApp) -> AsyncIterator[None]:
    settings = app.settings
    if app.configure_logging:
        setup_logging(settings.LOG_LEVEL)

    init_db(
        settings.DATABASE_URL,
        echo=settings.DB_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
    )
    await create_all()
    async with get_session_factory()() as db:
        await sync_roles(db, app.role_policy)
    logger.info(
        "CMS API ready (%s, roles: %s)",
        settings.ENVIRONMENT,
        ", ".join(app.role_policy.roles),
    )
    try:
        yield
    finally:
        await close_db()


class CMSApp(FastAPI):
    """
    FastAPI application carrying the CMS collaborators on ``state``.

    ``settings``, ``role_policy`` and ``storage`` are resolved once here and
    read back by the request dependencies, so tests can inject their own.
    """

    def __init__(
        self,
        *,
        settings: CMSSettings,
        role_policy: RolePolicy,
        storage: Storage,
        configure_logging: bool = True,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("lifespan", lifespan)
        super().__init__(**kwargs)
        self.configure_logging = configure_logging
        self.state.settings = settings
        self.state.role_policy = role_policy
        self.state.storage = storage

    @property
    def settings(self) -> CMSSettings:
        return self.state.settings

    @property
    def role_policy(self) -> RolePolicy:
        return self.state.role_policy

    @property
    def storage(self) -> Storage:
        return self.state.storage

    def include_cms_routers(self, prefix: str) -> None:
        for router in ROUTERS:
            self.include_router(router, prefix=prefix)

    def mount_local_media(self) -> None:
        """Serve locally stored uploads when their public URL is a path."""
        storage = self.storage
        if not isinstance(storage, LocalStorage):
            return
        base = storage.public_base_url.rstrip("/")
        if not base.startswith("/"):
            return
        storage.root.mkdir(parents=True, exist_ok=True)
        self.mount(base, StaticFiles(directory=storage.root), name="media-files")


async def health() -> HealthResponse:
    return HealthResponse(status="ok", timestamp=utcnow())


def create_app(
    settings: Optional[CMSSettings] = None,
    *,
    role_policy: Optional[RolePolicy] = None,
    storage: Optional[Storage] = None,
    auth_backend: Optional[AuthenticationBackend] = None,
    configure_logging: bool = True,
) -> CMSApp:
    """
    Build the CMS application.

    Every collaborator defaults to what ``settings`` describes.

    Example:
        >>> app = create_app(CMSSettings(DATABASE_URL="sqlite+aiosqlite:///cms.db"))
    """
    settings = settings or cms_settings

    app = CMSApp(
        settings=settings,
        role_policy=role_policy or RolePolicy.from_settings(settings),
        storage=storage or storage_from_settings(settings),
        configure_logging=configure_logging,
        title="CMS API",
        description="Content management API for posts, pages, media and galleries",
        version="1.0.0",
    )

    # Last added runs first: request context, CORS, authentication, then
    # the internal error fallback closest to the routes
    app.add_middleware(InternalErrorMiddleware)
    app.add_middleware(
        BearerAuthenticationMiddleware,
        backend=auth_backend or JWTAuthenticationBackend.from_settings(settings),
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )
    app.add_middleware(RequestContextMiddleware)

    register_exception_handlers(app)
    app.add_api_route("/", health, methods=["GET"], response_model=HealthResponse)
    app.include_cms_routers(settings.API_PREFIX.rstrip("/"))
    app.mount_local_media()
    return app
