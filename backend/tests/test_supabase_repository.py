"""
Unit Tests: Supabase Repository Backend
=======================================

Tests covering:
1. PostgREST request handling and error mapping
2. Query parameters built by the repositories
3. View counting and pagination totals
"""

from datetime import date

import aiohttp
import pytest
from unittest.mock import AsyncMock, MagicMock, Mock

from portfolio_cms.core.exceptions import DatabaseException, ValidationException
from portfolio_cms.repositories.supabase_repository import (
    SupabaseArticleRepository,
    SupabaseProductRepository,
    SupabaseRepositoryProvider,
    SupabaseRestClient,
    SupabaseUserRepository,
    parse_content_range,
)


def product_row(**overrides):
    row = {
        "id": 1,
        "title": "Portfolio",
        "cover": "http://testserver/uploads/cover.png",
        "description": None,
        "stars": 3,
        "tags": ["web"],
        "date": "2024-05-01",
        "images": [{"url": "http://testserver/uploads/a.png", "order": 0}],
        "view_count": 4,
        "status": True,
        "featured": False,
    }
    row.update(overrides)
    return row


def user_row(**overrides):
    row = {
        "id": 1,
        "username": "admin",
        "email": "admin@example.com",
        "password": "hash",
        "role": "admin",
        "status": True,
    }
    row.update(overrides)
    return row


@pytest.fixture
def rest_client():
    client = Mock()
    client.select = AsyncMock(return_value=([], None))
    client.insert = AsyncMock()
    client.update = AsyncMock(return_value=[])
    client.delete = AsyncMock(return_value=[])
    return client


class TestParseContentRange:

    @pytest.mark.parametrize("header,expected", [
        ("0-9/42", 42),
        ("*/0", 0),
        ("0-9/*", None),
        ("", None),
        (None, None),
    ])
    def test_total(self, header, expected):
        assert parse_content_range(header) == expected


class TestSupabaseRestClient:
    """Test suite for the PostgREST client"""

    @pytest.fixture
    def client(self):
        return SupabaseRestClient("https://project.supabase.co/", "service-key", timeout=5)

    def attach_response(self, client, status=200, body=None, headers=None):
        response = Mock()
        response.status = status
        response.headers = headers or {}
        response.json = AsyncMock(return_value=body)

        context = MagicMock()
        context.__aenter__.return_value = response
        context.__aexit__.return_value = False

        session = Mock()
        session.closed = False
        session.request = Mock(return_value=context)
        client.session = session
        return session

    def test_base_url_and_headers(self, client):
        assert client.base_url == "https://project.supabase.co/rest/v1"
        assert client.headers["apikey"] == "service-key"
        assert client.headers["Authorization"] == "Bearer service-key"

    @pytest.mark.asyncio
    async def test_select_with_count(self, client):
        session = self.attach_response(client, body=[{"id": 1}], headers={"Content-Range": "0-0/7"})

        rows, total = await client.select("products", {"status": "eq.true"}, count=True)

        assert rows == [{"id": 1}]
        assert total == 7
        method, url = session.request.call_args.args
        assert (method, url) == ("GET", "https://project.supabase.co/rest/v1/products")
        assert session.request.call_args.kwargs["params"] == {"select": "*", "status": "eq.true"}
        assert session.request.call_args.kwargs["headers"] == {"Prefer": "count=exact"}

    @pytest.mark.asyncio
    async def test_insert_serializes_dates(self, client):
        session = self.attach_response(client, body=[{"id": 3}])

        row = await client.insert("products", {"date": date(2024, 1, 2)})

        assert row == {"id": 3}
        assert session.request.call_args.kwargs["json"] == {"date": "2024-01-02"}

    @pytest.mark.asyncio
    async def test_conflict_is_validation_error(self, client):
        self.attach_response(client, status=409, body={"message": "duplicate key value"})

        with pytest.raises(ValidationException) as exc_info:
            await client.insert("users", {"username": "admin"})

        assert exc_info.value.details.message == "duplicate key value"

    @pytest.mark.asyncio
    async def test_error_status_is_database_error(self, client):
        self.attach_response(client, status=500, body={"message": "boom"})

        with pytest.raises(DatabaseException) as exc_info:
            await client.select("users", {})

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_transport_error_is_database_error(self, client):
        session = self.attach_response(client)
        session.request = Mock(side_effect=aiohttp.ClientConnectionError("refused"))

        with pytest.raises(DatabaseException):
            await client.ping()

    @pytest.mark.asyncio
    async def test_close_drops_session(self, client):
        session = self.attach_response(client)
        session.close = AsyncMock()

        await client.close()

        session.close.assert_awaited_once()
        assert client.session is None


class TestSupabaseRepositories:
    """Test suite for repository query building"""

    @pytest.mark.asyncio
    async def test_get_by_username(self, rest_client):
        rest_client.select.return_value = ([user_row()], None)
        repo = SupabaseUserRepository(rest_client)

        user = await repo.get_by_username("admin")

        assert user.username == "admin"
        rest_client.select.assert_awaited_once_with("users", {"username": "eq.admin", "limit": 1})

    @pytest.mark.asyncio
    async def test_find_conflict_excludes_id(self, rest_client):
        repo = SupabaseUserRepository(rest_client)

        assert await repo.find_conflict("admin", "admin@example.com", exclude_id=2) is None

        params = rest_client.select.call_args.args[1]
        assert params["or"] == '(username.eq."admin",email.eq."admin@example.com")'
        assert params["id"] == "neq.2"

    @pytest.mark.asyncio
    async def test_count_by_role_uses_exact_count(self, rest_client):
        rest_client.select.return_value = ([user_row()], 2)
        repo = SupabaseUserRepository(rest_client)

        assert await repo.count_by_role("admin") == 2
        assert rest_client.select.call_args.kwargs["count"] is True

    @pytest.mark.asyncio
    async def test_list_published_params(self, rest_client):
        rest_client.select.return_value = ([product_row()], 13)
        repo = SupabaseProductRepository(rest_client)

        products, total = await repo.list_published(page=2, limit=5, sort="stars", descending=False, featured=True)

        assert total == 13
        assert products[0].images[0].url.endswith("a.png")
        params = rest_client.select.call_args.args[1]
        assert params == {
            "status": "eq.true",
            "order": "stars.asc,id.desc",
            "featured": "eq.true",
            "offset": 5,
            "limit": 5,
        }

    @pytest.mark.asyncio
    async def test_article_featured_column(self, rest_client):
        repo = SupabaseArticleRepository(rest_client)

        await repo.list_published(page=1, limit=10, featured=True)

        assert rest_client.select.call_args.args[1]["is_featured"] == "eq.true"

    @pytest.mark.asyncio
    async def test_list_all_keyword(self, rest_client):
        repo = SupabaseProductRepository(rest_client)

        await repo.list_all(page=1, limit=10, keyword="shop", status=False)

        params = rest_client.select.call_args.args[1]
        assert params["title"] == "ilike.*shop*"
        assert params["status"] == "eq.false"

    @pytest.mark.asyncio
    async def test_increment_views(self, rest_client):
        rest_client.select.return_value = ([{"id": 1, "view_count": 4}], None)
        rest_client.update.return_value = [product_row(view_count=5)]
        repo = SupabaseProductRepository(rest_client)

        product = await repo.increment_views(1)

        assert product.view_count == 5
        rest_client.update.assert_awaited_once_with("products", {"id": "eq.1"}, {"view_count": 5})

    @pytest.mark.asyncio
    async def test_increment_views_missing(self, rest_client):
        repo = SupabaseProductRepository(rest_client)

        assert await repo.increment_views(9) is None
        rest_client.update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_reports_missing_row(self, rest_client):
        repo = SupabaseProductRepository(rest_client)

        assert await repo.delete(1) is False


class TestSupabaseRepositoryProvider:

    @pytest.mark.asyncio
    async def test_provider_has_no_pool(self, rest_client):
        rest_client.base_url = "https://project.supabase.co/rest/v1"
        provider = SupabaseRepositoryProvider(rest_client)

        assert provider.pool_handle() is None
        assert provider.describe()["backend"] == "supabase"

        async with provider.session() as repos:
            assert isinstance(repos.products, SupabaseProductRepository)

    @pytest.mark.asyncio
    async def test_reconnect_resets_session(self, rest_client):
        rest_client.reset = AsyncMock()
        rest_client.ping = AsyncMock()
        provider = SupabaseRepositoryProvider(rest_client)

        await provider.reconnect()

        rest_client.reset.assert_awaited_once()
        rest_client.ping.assert_awaited_once()
