"""
Pydantic schemas for articles
"""

from datetime import datetime
from typing import Optional

from .common import CamelModel


class ArticleResponse(CamelModel):
    """Schema for article response"""
    id: int
    title: str
    cover: str
    content: str
    status: bool = True
    view_count: int = 0
    is_featured: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
