from typing import Any, AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from cms_api import CMSApp, create_app
from cms_api.storage import LocalStorage
from cms_core.config import CMSSettings
from httpx import ASGITransport, AsyncClient, Response

from .factories import PNG_BYTES, category_body, post_body
from .tokens import ADMIN, SECRET, headers_for


@pytest.fixture
def settings(tmp_path) -> CMSSettings:
    return CMSSettings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'cms.db'}",
        JWT_SECRET=SECRET,
        JWT_ALGORITHMS=["HS256"],
        JWKS_URL=None,
        ROLE_POLICY_FILE=None,
        ROLE_PERMISSIONS=None,
        STORAGE_BACKEND="local",
        STORAGE_ROOT=str(tmp_path / "storage"),
    )


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(root=tmp_path / "storage")


@pytest.fixture
def app(settings: CMSSettings, storage: LocalStorage) -> CMSApp:
    return create_app(settings, storage=storage, configure_logging=False)


@pytest_asyncio.fixture
async def client(app: CMSApp) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against a started app (tables created, roles synced)."""
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            yield c


@pytest.fixture
def create_post(client: AsyncClient) -> Callable[..., Awaitable[dict[str, Any]]]:
    async def _create(
        slug: str = "hello-world", *, user=ADMIN, **overrides: Any
    ) -> dict[str, Any]:
        response = await client.post(
            "/cms/posts", json=post_body(slug, **overrides), headers=headers_for(user)
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture
def create_category(client: AsyncClient) -> Callable[..., Awaitable[dict[str, Any]]]:
    async def _create(slug: str = "news", **overrides: Any) -> dict[str, Any]:
        response = await client.post(
            "/cms/categories",
            json=category_body(slug, **overrides),
            headers=headers_for(ADMIN),
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture
def upload(client: AsyncClient) -> Callable[..., Awaitable[Response]]:
    async def _upload(
        filename: str = "photo.png",
        data: bytes = PNG_BYTES,
        content_type: str = "image/png",
        *,
        user=ADMIN,
        **form: str,
    ) -> Response:
        return await client.post(
            "/cms/media/upload",
            files={"file": (filename, data, content_type)},
            data=form,
            headers=headers_for(user),
        )

    return _upload
