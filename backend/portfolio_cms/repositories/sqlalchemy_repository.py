"""
SQLAlchemy repository backend

One AsyncSession per request; every write commits immediately and rolls back
on failure.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Generic, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy import select, func, or_, update as sql_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from portfolio_cms.core.config import settings
from portfolio_cms.core.exceptions import DatabaseException, ValidationException
from portfolio_cms.db.session import build_session_factory, cleanup_db_connections, init_db, ping, get_pool_status
from portfolio_cms.models import Article, Product, User
from portfolio_cms.monitoring.pool_monitor import SQLAlchemyPoolHandle
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


class _SessionRepository:
    model: Any

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _commit(self, operation: str) -> None:
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Integrity error during {operation} on {self.model.__tablename__}: {e.orig}")
            raise ValidationException(f"{operation} violates a uniqueness or integrity constraint") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Database error during {operation} on {self.model.__tablename__}: {e}")
            raise DatabaseException(str(e), operation=operation, table=self.model.__tablename__) from e

    async def _get_row(self, item_id: int):
        result = await self.db.execute(select(self.model).where(self.model.id == item_id))
        return result.scalar_one_or_none()

    async def _delete_row(self, item_id: int) -> bool:
        row = await self._get_row(item_id)
        if row is None:
            return False
        await self.db.delete(row)
        await self._commit("delete")
        logger.info(f"Deleted {self.model.__tablename__} row {item_id}")
        return True


class SQLAlchemyUserRepository(_SessionRepository, UserRepository):
    model = User

    async def get(self, user_id: int) -> Optional[UserRecord]:
        row = await self._get_row(user_id)
        return UserRecord.model_validate(row) if row else None

    async def get_by_username(self, username: str) -> Optional[UserRecord]:
        result = await self.db.execute(select(User).where(User.username == username))
        row = result.scalar_one_or_none()
        return UserRecord.model_validate(row) if row else None

    async def find_conflict(self, username: Optional[str], email: Optional[str], exclude_id: Optional[int] = None) -> Optional[UserRecord]:
        conditions = []
        if username:
            conditions.append(User.username == username)
        if email:
            conditions.append(User.email == email)
        if not conditions:
            return None
        query = select(User).where(or_(*conditions))
        if exclude_id is not None:
            query = query.where(User.id != exclude_id)
        result = await self.db.execute(query.limit(1))
        row = result.scalar_one_or_none()
        return UserRecord.model_validate(row) if row else None

    async def list(self) -> List[UserRecord]:
        result = await self.db.execute(select(User).order_by(User.id))
        return [UserRecord.model_validate(row) for row in result.scalars().all()]

    async def count_by_role(self, role: str) -> int:
        result = await self.db.execute(select(func.count()).select_from(User).where(User.role == role))
        return result.scalar_one()

    async def create(self, values: Dict[str, Any]) -> UserRecord:
        user = User(**values)
        self.db.add(user)
        await self._commit("create")
        await self.db.refresh(user)
        logger.info(f"Created user {user.id}: {user.username}")
        return UserRecord.model_validate(user)

    async def update(self, user_id: int, values: Dict[str, Any]) -> Optional[UserRecord]:
        user = await self._get_row(user_id)
        if user is None:
            return None
        for key, value in values.items():
            setattr(user, key, value)
        await self._commit("update")
        await self.db.refresh(user)
        return UserRecord.model_validate(user)

    async def delete(self, user_id: int) -> bool:
        return await self._delete_row(user_id)


class _SQLAlchemyContentRepository(_SessionRepository, Generic[S]):
    schema: Type[S]
    featured_field: str

    async def get(self, item_id: int) -> Optional[S]:
        row = await self._get_row(item_id)
        return self.schema.model_validate(row) if row else None

    async def _page(self, conditions: list, order_by, page: int, limit: int) -> Tuple[List[S], int]:
        total_query = select(func.count()).select_from(self.model)
        query = select(self.model)
        if conditions:
            total_query = total_query.where(*conditions)
            query = query.where(*conditions)

        total = (await self.db.execute(total_query)).scalar_one()
        result = await self.db.execute(
            query.order_by(*order_by).offset((page - 1) * limit).limit(limit)
        )
        return [self.schema.model_validate(row) for row in result.scalars().all()], total

    async def list_published(
        self,
        page: int,
        limit: int,
        sort: str = "created_at",
        descending: bool = True,
        featured: Optional[bool] = None,
    ) -> Tuple[List[S], int]:
        conditions = [self.model.status.is_(True)]
        if featured is not None:
            conditions.append(getattr(self.model, self.featured_field).is_(featured))
        column = getattr(self.model, sort)
        order_by = [column.desc() if descending else column.asc(), self.model.id.desc()]
        return await self._page(conditions, order_by, page, limit)

    async def list_all(
        self,
        page: int,
        limit: int,
        keyword: Optional[str] = None,
        status: Optional[bool] = None,
    ) -> Tuple[List[S], int]:
        conditions = []
        if keyword:
            conditions.append(self.model.title.ilike(f"%{keyword}%"))
        if status is not None:
            conditions.append(self.model.status.is_(status))
        return await self._page(conditions, [self.model.id.desc()], page, limit)

    async def create(self, values: Dict[str, Any]) -> S:
        row = self.model(**values)
        self.db.add(row)
        await self._commit("create")
        await self.db.refresh(row)
        logger.info(f"Created {self.model.__tablename__} row {row.id}: {row.title}")
        return self.schema.model_validate(row)

    async def update(self, item_id: int, values: Dict[str, Any]) -> Optional[S]:
        row = await self._get_row(item_id)
        if row is None:
            return None
        for key, value in values.items():
            setattr(row, key, value)
        await self._commit("update")
        await self.db.refresh(row)
        return self.schema.model_validate(row)

    async def delete(self, item_id: int) -> bool:
        return await self._delete_row(item_id)

    async def increment_views(self, item_id: int) -> Optional[S]:
        await self.db.execute(
            sql_update(self.model)
            .where(self.model.id == item_id)
            .values(view_count=self.model.view_count + 1)
        )
        await self._commit("increment_views")
        row = await self._get_row(item_id)
        if row is None:
            return None
        await self.db.refresh(row)
        return self.schema.model_validate(row)


class SQLAlchemyProductRepository(_SQLAlchemyContentRepository[ProductResponse], ProductRepository):
    model = Product
    schema = ProductResponse


class SQLAlchemyArticleRepository(_SQLAlchemyContentRepository[ArticleResponse], ArticleRepository):
    model = Article
    schema = ArticleResponse


class SQLAlchemyRepositoryProvider(RepositoryProvider):
    """Repositories over an async engine and its connection pool"""

    backend = "sqlalchemy"

    def __init__(self, engine: AsyncEngine, session_factory: Optional[async_sessionmaker] = None, pool_min_size: int = settings.DB_POOL_MIN):
        self.engine = engine
        self.session_factory = session_factory or build_session_factory(engine)
        self.pool_min_size = pool_min_size

    @asynccontextmanager
    async def session(self) -> AsyncIterator[Repositories]:
        async with self.session_factory() as db:
            try:
                yield Repositories(
                    users=SQLAlchemyUserRepository(db),
                    products=SQLAlchemyProductRepository(db),
                    articles=SQLAlchemyArticleRepository(db),
                )
            except Exception:
                await db.rollback()
                raise

    async def initialize(self) -> None:
        await init_db(self.engine)
        await ping(self.engine, timeout=10)

    async def ping(self) -> None:
        await ping(self.engine)

    async def reconnect(self) -> None:
        # Dispose drops every pooled connection; the next checkout reconnects
        await self.engine.dispose()
        await ping(self.engine)

    async def close(self) -> None:
        await cleanup_db_connections(self.engine)

    def pool_handle(self) -> SQLAlchemyPoolHandle:
        return SQLAlchemyPoolHandle(self.engine, min_size=self.pool_min_size)

    def describe(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "dialect": self.engine.dialect.name,
            "pool": get_pool_status(self.engine),
        }
