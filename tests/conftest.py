"""
Test configuration and fixtures for the UX Audit API.

The database URL and upload directory are pointed at temporary locations
before any application module is imported, so every test run works on a
throwaway SQLite database.
"""

import os
import tempfile

from dotenv import load_dotenv

load_dotenv()

test_db_url = os.getenv("TEST_DATABASE_URL")
if test_db_url:
    if "postgresql://" in test_db_url and "asyncpg" not in test_db_url:
        test_db_url = test_db_url.replace("postgresql://", "postgresql+asyncpg://")
    os.environ["DATABASE_URL"] = test_db_url
else:
    test_db_path = os.path.join(tempfile.mkdtemp(), "ux_audit_test.db")
    os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{test_db_path}"

os.environ["UPLOAD_DIR"] = os.path.join(tempfile.mkdtemp(), "uploads")
os.environ["LOG_DIR"] = os.path.join(tempfile.mkdtemp(), "logs")
os.environ["GROQ_API_KEY"] = ""

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient


@pytest.fixture(scope="session")
def test_app():
    """Create FastAPI test application."""
    from app.main import app

    return app


@pytest.fixture(scope="function")
def client(test_app):
    """Synchronous client for endpoints that never touch the database."""
    with TestClient(test_app) as test_client:
        yield test_client


@pytest.fixture
async def db_tables():
    """Fresh schema for each test that needs the database."""
    from app.features.audit import models  # noqa: F401  (registers tables)
    from app.platform.db.base import Base
    from app.platform.db.session import engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db_session(db_tables):
    from app.platform.db.session import SessionLocal

    async with SessionLocal() as session:
        yield session


@pytest.fixture
async def async_client(test_app, db_tables):
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://testserver",
    ) as ac:
        yield ac
