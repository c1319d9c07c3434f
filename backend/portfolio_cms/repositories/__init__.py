"""
Persistence behind one repository interface with swappable backends
"""

from portfolio_cms.core.config import Settings
from .base import (
    ArticleRepository,
    ContentRepository,
    ProductRepository,
    PRODUCT_SORT_FIELDS,
    Repositories,
    RepositoryProvider,
    UserRepository,
)


def create_repository_provider(config: Settings) -> RepositoryProvider:
    """Build the provider selected by PERSISTENCE_BACKEND"""
    if config.PERSISTENCE_BACKEND == "supabase":
        from .supabase_repository import SupabaseRepositoryProvider, SupabaseRestClient

        client = SupabaseRestClient(config.SUPABASE_URL, config.SUPABASE_KEY, timeout=config.SUPABASE_TIMEOUT)
        return SupabaseRepositoryProvider(client)

    from portfolio_cms.db.session import engine, AsyncSessionLocal
    from .sqlalchemy_repository import SQLAlchemyRepositoryProvider

    return SQLAlchemyRepositoryProvider(engine, AsyncSessionLocal, pool_min_size=config.DB_POOL_MIN)


__all__ = [
    "ArticleRepository",
    "ContentRepository",
    "ProductRepository",
    "PRODUCT_SORT_FIELDS",
    "Repositories",
    "RepositoryProvider",
    "UserRepository",
    "create_repository_provider",
]
