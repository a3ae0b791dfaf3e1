import pytest_asyncio
from cms_db import db as db_module
from sqlalchemy.ext.asyncio import AsyncSession

from . import models  # noqa: F401


@pytest_asyncio.fixture
async def init_test_db(tmp_path):
    """Initialize a file-backed SQLite database per test."""
    db_module.init_db(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await db_module.create_all()

    yield

    await db_module.close_db()


@pytest_asyncio.fixture
async def db_session(init_test_db) -> AsyncSession:  # noqa: ARG001
    """Provide a database session for tests."""

    async for session in db_module.get_db():
        yield session
