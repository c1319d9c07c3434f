from .base import Base
from .user import User
from .product import Product
from .article import Article

__all__ = [
    "Base",
    "User",
    "Product",
    "Article"
]
