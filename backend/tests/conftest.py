"""
Portfolio CMS - Test Configuration & Fixtures
=============================================

Shared fixtures:
- in-memory SQLite engine and repository provider
- application factory and HTTP client
- admin/editor accounts and access tokens
- upload file helpers
"""

import os
import tempfile

# Settings are read at import time; configure the environment first
_TEST_ROOT = tempfile.mkdtemp(prefix="portfolio-cms-tests-")
os.environ.update({
    "ENVIRONMENT": "development",
    "JWT_SECRET": "test-jwt-secret-that-is-at-least-32-characters",
    "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
    "UPLOAD_PATH": os.path.join(_TEST_ROOT, "uploads"),
    "LOG_DIR": os.path.join(_TEST_ROOT, "logs"),
    "PUBLIC_BASE_URL": "http://testserver",
    "FRONTEND_PATH": "",
    "SERVICE_MONITOR_ENABLED": "false",
    "DEFAULT_ADMIN_PASSWORD": "",
})

import pytest
from typing import AsyncGenerator, Callable
from unittest.mock import AsyncMock, Mock

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from portfolio_cms.core.config import Settings, settings
from portfolio_cms.db.session import init_db
from portfolio_cms.main import create_app
from portfolio_cms.repositories.sqlalchemy_repository import SQLAlchemyRepositoryProvider
from portfolio_cms.schemas.user import UserRecord
from portfolio_cms.security.authentication import auth_manager


# ==================== Database ====================

@pytest.fixture
async def test_engine():
    """Shared in-memory database for one test"""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
async def provider(test_engine) -> SQLAlchemyRepositoryProvider:
    return SQLAlchemyRepositoryProvider(test_engine, pool_min_size=5)


# ==================== Application ====================

@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings with a per-test upload directory"""
    return settings.model_copy(update={
        "UPLOAD_PATH": str(tmp_path / "uploads"),
        "SERVICE_MONITOR_ENABLED": False,
        "FRONTEND_PATH": None,
    })


@pytest.fixture
def app(test_settings, provider):
    return create_app(test_settings, provider)


@pytest.fixture
def services(app):
    return app.state.services


@pytest.fixture
def upload_dir(services) -> str:
    return services.uploads.upload_dir


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app without a network socket"""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as http:
        yield http


# ==================== Accounts ====================

async def _create_user(provider, username: str, role: str, password: str = "secret123", status: bool = True) -> UserRecord:
    async with provider.session() as repos:
        return await repos.users.create({
            "username": username,
            "email": f"{username}@example.com",
            "password": auth_manager.hash_password(password),
            "role": role,
            "status": status,
        })


@pytest.fixture
def create_user(provider) -> Callable:
    """Factory for stored accounts"""
    async def factory(username: str, role: str = "editor", password: str = "secret123", status: bool = True):
        return await _create_user(provider, username, role, password, status)
    return factory


@pytest.fixture
async def admin_user(provider) -> UserRecord:
    return await _create_user(provider, "admin", "admin", password="admin123")


@pytest.fixture
async def editor_user(provider) -> UserRecord:
    return await _create_user(provider, "editor", "editor", password="editor123")


@pytest.fixture
def admin_headers(admin_user) -> dict:
    return {"Authorization": f"Bearer {auth_manager.issue_token(admin_user)}"}


@pytest.fixture
def editor_headers(editor_user) -> dict:
    return {"Authorization": f"Bearer {auth_manager.issue_token(editor_user)}"}


# ==================== Uploads ====================

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def image_file() -> Callable:
    """Multipart file tuple for an image upload"""
    def factory(name: str = "image.png", content: bytes = PNG_BYTES, content_type: str = "image/png"):
        return (name, content, content_type)
    return factory


@pytest.fixture
def uploaded_files(upload_dir) -> Callable:
    """Names currently stored in the upload directory"""
    def listing():
        return sorted(os.listdir(upload_dir)) if os.path.isdir(upload_dir) else []
    return listing


# ==================== Mocks ====================

@pytest.fixture
def mock_alerts():
    alerts = Mock()
    alerts.alert = Mock()
    alerts.recent = Mock(return_value=[])
    return alerts


@pytest.fixture
def async_mock():
    return AsyncMock


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: API tests over the ASGI app")
