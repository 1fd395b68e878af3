"""
Pytest configuration and shared fixtures for testing.
Sets up a throwaway SQLite database, media root and test client.
"""

import os

# Must be set before any app imports
os.environ["TEST_MODE"] = "1"  # disables rate limiting
os.environ["ENABLE_METRICS"] = "true"
os.environ["SKIP_ENV_FILE"] = "1"
os.environ.setdefault("APP_ENV", "test")
os.environ["DB_URL"] = "sqlite+aiosqlite:///./journal_test.db"  # replaced per test below
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-journal-service-0123456789")
os.environ["CACHE_ENABLED"] = "false"
os.environ["LOG_FILE"] = ""

import io

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from starlette.datastructures import Headers
from fastapi import UploadFile

from app.main import app
from app.db import Base
from app import db as app_db
from app.config import settings
from app import models  # noqa: F401  (registers tables on Base.metadata)


# Smallest valid PNG (1x1 transparent pixel)
PNG_BYTES = (
    b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x06\x00\x00\x00"
    b"\x1f\x15\xc4\x89\x00\x00\x00\rIDATx\x9cc\xf8\x0f\x00\x00\x01\x01\x00\x05\x18\xd8N\x00"
    b"\x00\x00\x00IEND\xaeB`\x82"
)
PASSWORD = "password1"


def make_upload(data: bytes = PNG_BYTES, filename: str = "pic.png", content_type: str = "image/png") -> UploadFile:
    """Build an UploadFile the way FastAPI hands one to a route."""
    return UploadFile(
        file=io.BytesIO(data),
        filename=filename,
        headers=Headers({"content-type": content_type}),
    )


@pytest_asyncio.fixture(scope="function")
async def test_db_engine(tmp_path):
    """Fresh SQLite database per test, swapped in for the app's session factory."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'journal_test.db'}",
        echo=False,
        poolclass=NullPool,
    )

    test_session_maker = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    original_session = app_db.async_session
    app_db.async_session = test_session_maker

    # Tests create tables directly; production uses Alembic migrations
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    app_db.async_session = original_session

    await engine.dispose()


@pytest.fixture(autouse=True)
def media_root(tmp_path, monkeypatch):
    """Point image storage at a per-test directory."""
    root = tmp_path / "media"
    root.mkdir()
    monkeypatch.setattr(settings, "MEDIA_ROOT", str(root))
    return root


@pytest_asyncio.fixture(scope="function")
async def client(test_db_engine):
    """Test HTTP client bound to the test database."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        timeout=30.0
    ) as ac:
        yield ac


async def register(client: AsyncClient, email: str, password: str = PASSWORD) -> dict:
    """Register through the API and return id, token and auth headers."""
    response = await client.post("/auth/register", json={
        "email": email,
        "password": password,
        "password_confirmation": password,
    })
    assert response.status_code == 200, response.text
    user = response.json()["data"]["user"]
    return {
        "id": user["details"]["id"],
        "token": user["token"],
        "headers": {"Authorization": f"Bearer {user['token']}"},
    }


@pytest_asyncio.fixture
async def alice(client):
    return await register(client, "alice@example.com")


@pytest_asyncio.fixture
async def bob(client):
    return await register(client, "bob@example.com")


@pytest.fixture
def register_payload():
    return {
        "email": "a@example.com",
        "password": PASSWORD,
        "password_confirmation": PASSWORD,
    }
