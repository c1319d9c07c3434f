"""
Repository interfaces

Route handlers depend only on these; each persistence backend provides one
implementation per entity plus a provider that opens them per request.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

from portfolio_cms.schemas.article import ArticleResponse
from portfolio_cms.schemas.product import ProductResponse
from portfolio_cms.schemas.user import UserRecord

T = TypeVar("T")

PRODUCT_SORT_FIELDS = {
    "date": "date",
    "createdAt": "created_at",
    "created_at": "created_at",
    "title": "title",
    "stars": "stars",
    "viewCount": "view_count",
    "view_count": "view_count",
    "id": "id",
}


class UserRepository(ABC):

    @abstractmethod
    async def get(self, user_id: int) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def get_by_username(self, username: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def find_conflict(self, username: Optional[str], email: Optional[str], exclude_id: Optional[int] = None) -> Optional[UserRecord]:
        """Another account already using the username or email"""

    @abstractmethod
    async def list(self) -> List[UserRecord]:
        ...

    @abstractmethod
    async def count_by_role(self, role: str) -> int:
        ...

    @abstractmethod
    async def create(self, values: Dict[str, Any]) -> UserRecord:
        ...

    @abstractmethod
    async def update(self, user_id: int, values: Dict[str, Any]) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def delete(self, user_id: int) -> bool:
        ...


class ContentRepository(ABC, Generic[T]):
    """Shared operations for products and articles"""

    @abstractmethod
    async def get(self, item_id: int) -> Optional[T]:
        ...

    @abstractmethod
    async def list_published(
        self,
        page: int,
        limit: int,
        sort: str = "created_at",
        descending: bool = True,
        featured: Optional[bool] = None,
    ) -> Tuple[List[T], int]:
        """Published items only, with the total matching count"""

    @abstractmethod
    async def list_all(
        self,
        page: int,
        limit: int,
        keyword: Optional[str] = None,
        status: Optional[bool] = None,
    ) -> Tuple[List[T], int]:
        """Admin listing: title search and status filter, newest id first"""

    @abstractmethod
    async def create(self, values: Dict[str, Any]) -> T:
        ...

    @abstractmethod
    async def update(self, item_id: int, values: Dict[str, Any]) -> Optional[T]:
        ...

    @abstractmethod
    async def delete(self, item_id: int) -> bool:
        ...

    @abstractmethod
    async def increment_views(self, item_id: int) -> Optional[T]:
        ...


class ProductRepository(ContentRepository[ProductResponse]):
    featured_field = "featured"


class ArticleRepository(ContentRepository[ArticleResponse]):
    featured_field = "is_featured"


@dataclass
class Repositories:
    users: UserRepository
    products: ProductRepository
    articles: ArticleRepository


class RepositoryProvider(ABC):
    """Opens repositories for one unit of work and owns the backend connection"""

    backend: str = "unknown"

    @abstractmethod
    def session(self) -> AbstractAsyncContextManager[Repositories]:
        ...

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare and verify the backend; raises when it is unreachable"""

    @abstractmethod
    async def ping(self) -> None:
        ...

    @abstractmethod
    async def reconnect(self) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    def pool_handle(self):
        """Handle for the pool monitor, or None when the backend has no local pool"""
        return None

    def describe(self) -> Dict[str, Any]:
        return {"backend": self.backend}
