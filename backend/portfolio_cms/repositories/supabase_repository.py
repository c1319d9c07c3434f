"""
Supabase repository backend

Talks to the project's PostgREST endpoint (``/rest/v1``) over aiohttp. Tables
and columns match the SQLAlchemy models.
"""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, AsyncIterator, Dict, Generic, List, Optional, Tuple, Type, TypeVar

import aiohttp
from pydantic import BaseModel

from portfolio_cms.core.exceptions import DatabaseException, ValidationException
from portfolio_cms.schemas.article import ArticleResponse
from portfolio_cms.schemas.product import ProductResponse
from portfolio_cms.schemas.user import UserRecord
from .base import (
    ArticleRepository,
    ProductRepository,
    Repositories,
    RepositoryProvider,
    UserRepository,
)

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=BaseModel)


def _serialize(values: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: value.isoformat() if isinstance(value, (date, datetime)) else value
        for key, value in values.items()
    }


def parse_content_range(header: Optional[str]) -> Optional[int]:
    """Total row count from a PostgREST Content-Range header such as ``0-9/42``"""
    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else None


class SupabaseRestClient:
    """Minimal PostgREST client"""

    def __init__(self, url: str, key: str, timeout: int = 10):
        self.base_url = f"{url.rstrip('/')}/rest/v1"
        self.headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.logger = logging.getLogger(self.__class__.__name__)
        self.session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self.timeout, headers=self.headers)
        return self.session

    async def request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
        prefer: Optional[str] = None,
    ) -> Tuple[Any, Optional[int]]:
        """
        Send one PostgREST request

        Returns:
            (decoded body, total count from Content-Range when requested)

        Raises:
            ValidationException: On a uniqueness conflict (409)
            DatabaseException: On any other error response or transport failure
        """
        session = await self._ensure_session()
        headers = {"Prefer": prefer} if prefer else None
        url = f"{self.base_url}/{table}"
        try:
            async with session.request(method, url, params=params, json=payload, headers=headers) as response:
                body = await response.json(content_type=None)
                if response.status == 409:
                    message = (body or {}).get("message", "Conflict") if isinstance(body, dict) else "Conflict"
                    raise ValidationException(message)
                if response.status >= 400:
                    message = body.get("message") if isinstance(body, dict) else None
                    raise DatabaseException(
                        message or f"Supabase returned HTTP {response.status}",
                        operation=method,
                        table=table,
                    )
                return body, parse_content_range(response.headers.get("Content-Range"))
        except (aiohttp.ClientError, TimeoutError) as e:
            self.logger.error(f"Supabase {method} {table} failed: {e}")
            raise DatabaseException(str(e) or "Supabase request failed", operation=method, table=table) from e

    async def select(self, table: str, params: Dict[str, Any], count: bool = False) -> Tuple[List[Dict[str, Any]], Optional[int]]:
        rows, total = await self.request(
            "GET", table, params={"select": "*", **params}, prefer="count=exact" if count else None
        )
        return rows or [], total

    async def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        rows, _ = await self.request("POST", table, payload=_serialize(values), prefer="return=representation")
        return rows[0]

    async def update(self, table: str, filters: Dict[str, Any], values: Dict[str, Any]) -> List[Dict[str, Any]]:
        rows, _ = await self.request("PATCH", table, params=filters, payload=_serialize(values), prefer="return=representation")
        return rows or []

    async def delete(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        rows, _ = await self.request("DELETE", table, params=filters, prefer="return=representation")
        return rows or []

    async def ping(self) -> None:
        await self.request("GET", "users", params={"select": "id", "limit": 1})

    async def reset(self) -> None:
        await self.close()
        await self._ensure_session()

    async def close(self) -> None:
        if self.session is not None:
            await self.session.close()
            self.session = None


class _SupabaseRepository:
    table: str

    def __init__(self, client: SupabaseRestClient):
        self.client = client

    async def _first(self, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        rows, _ = await self.client.select(self.table, {**params, "limit": 1})
        return rows[0] if rows else None

    async def _update_row(self, item_id: int, values: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        rows = await self.client.update(
            self.table,
            {"id": f"eq.{item_id}"},
            {**values, "updated_at": datetime.now(timezone.utc)},
        )
        return rows[0] if rows else None

    async def _delete_row(self, item_id: int) -> bool:
        rows = await self.client.delete(self.table, {"id": f"eq.{item_id}"})
        return bool(rows)


class SupabaseUserRepository(_SupabaseRepository, UserRepository):
    table = "users"

    async def get(self, user_id: int) -> Optional[UserRecord]:
        row = await self._first({"id": f"eq.{user_id}"})
        return UserRecord.model_validate(row) if row else None

    async def get_by_username(self, username: str) -> Optional[UserRecord]:
        row = await self._first({"username": f"eq.{username}"})
        return UserRecord.model_validate(row) if row else None

    async def find_conflict(self, username: Optional[str], email: Optional[str], exclude_id: Optional[int] = None) -> Optional[UserRecord]:
        clauses = []
        if username:
            clauses.append(f'username.eq."{username}"')
        if email:
            clauses.append(f'email.eq."{email}"')
        if not clauses:
            return None
        params = {"or": f"({','.join(clauses)})"}
        if exclude_id is not None:
            params["id"] = f"neq.{exclude_id}"
        row = await self._first(params)
        return UserRecord.model_validate(row) if row else None

    async def list(self) -> List[UserRecord]:
        rows, _ = await self.client.select(self.table, {"order": "id.asc"})
        return [UserRecord.model_validate(row) for row in rows]

    async def count_by_role(self, role: str) -> int:
        _, total = await self.client.select(self.table, {"role": f"eq.{role}", "limit": 1}, count=True)
        return total or 0

    async def create(self, values: Dict[str, Any]) -> UserRecord:
        now = datetime.now(timezone.utc)
        row = await self.client.insert(self.table, {**values, "created_at": now, "updated_at": now})
        logger.info(f"Created user {row.get('id')}: {row.get('username')}")
        return UserRecord.model_validate(row)

    async def update(self, user_id: int, values: Dict[str, Any]) -> Optional[UserRecord]:
        row = await self._update_row(user_id, values)
        return UserRecord.model_validate(row) if row else None

    async def delete(self, user_id: int) -> bool:
        return await self._delete_row(user_id)


class _SupabaseContentRepository(_SupabaseRepository, Generic[S]):
    schema: Type[S]
    featured_field: str

    async def get(self, item_id: int) -> Optional[S]:
        row = await self._first({"id": f"eq.{item_id}"})
        return self.schema.model_validate(row) if row else None

    async def _page(self, params: Dict[str, Any], page: int, limit: int) -> Tuple[List[S], int]:
        rows, total = await self.client.select(
            self.table,
            {**params, "offset": (page - 1) * limit, "limit": limit},
            count=True,
        )
        return [self.schema.model_validate(row) for row in rows], total if total is not None else len(rows)

    async def list_published(
        self,
        page: int,
        limit: int,
        sort: str = "created_at",
        descending: bool = True,
        featured: Optional[bool] = None,
    ) -> Tuple[List[S], int]:
        params = {
            "status": "eq.true",
            "order": f"{sort}.{'desc' if descending else 'asc'},id.desc",
        }
        if featured is not None:
            params[self.featured_field] = f"eq.{str(featured).lower()}"
        return await self._page(params, page, limit)

    async def list_all(
        self,
        page: int,
        limit: int,
        keyword: Optional[str] = None,
        status: Optional[bool] = None,
    ) -> Tuple[List[S], int]:
        params: Dict[str, Any] = {"order": "id.desc"}
        if keyword:
            params["title"] = f"ilike.*{keyword}*"
        if status is not None:
            params["status"] = f"eq.{str(status).lower()}"
        return await self._page(params, page, limit)

    async def create(self, values: Dict[str, Any]) -> S:
        now = datetime.now(timezone.utc)
        row = await self.client.insert(self.table, {**values, "created_at": now, "updated_at": now})
        logger.info(f"Created {self.table} row {row.get('id')}: {row.get('title')}")
        return self.schema.model_validate(row)

    async def update(self, item_id: int, values: Dict[str, Any]) -> Optional[S]:
        row = await self._update_row(item_id, values)
        return self.schema.model_validate(row) if row else None

    async def delete(self, item_id: int) -> bool:
        return await self._delete_row(item_id)

    async def increment_views(self, item_id: int) -> Optional[S]:
        current = await self._first({"id": f"eq.{item_id}", "select": "id,view_count"})
        if current is None:
            return None
        rows = await self.client.update(
            self.table,
            {"id": f"eq.{item_id}"},
            {"view_count": (current.get("view_count") or 0) + 1},
        )
        return self.schema.model_validate(rows[0]) if rows else None


class SupabaseProductRepository(_SupabaseContentRepository[ProductResponse], ProductRepository):
    table = "products"
    schema = ProductResponse


class SupabaseArticleRepository(_SupabaseContentRepository[ArticleResponse], ArticleRepository):
    table = "articles"
    schema = ArticleResponse


class SupabaseRepositoryProvider(RepositoryProvider):
    """Repositories over the hosted REST API; there is no local pool to monitor"""

    backend = "supabase"

    def __init__(self, client: SupabaseRestClient):
        self.client = client

    @asynccontextmanager
    async def session(self) -> AsyncIterator[Repositories]:
        yield Repositories(
            users=SupabaseUserRepository(self.client),
            products=SupabaseProductRepository(self.client),
            articles=SupabaseArticleRepository(self.client),
        )

    async def initialize(self) -> None:
        await self.client.ping()

    async def ping(self) -> None:
        await self.client.ping()

    async def reconnect(self) -> None:
        await self.client.reset()
        await self.client.ping()

    async def close(self) -> None:
        await self.client.close()

    def describe(self) -> Dict[str, Any]:
        return {"backend": self.backend, "url": self.client.base_url}
