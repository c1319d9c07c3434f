"""
Pydantic schemas for portfolio products and their image galleries
"""

import datetime as dt
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from .common import CamelModel


class GalleryImage(CamelModel):
    """One gallery entry; order is the display position"""
    url: str
    order: int = 0


class ProductResponse(CamelModel):
    """Schema for product response"""
    id: int
    title: str
    cover: str
    description: Optional[str] = None
    stars: int = 0
    tags: List[str] = []
    date: Optional[dt.date] = None
    images: List[GalleryImage] = []
    view_count: int = 0
    status: bool = True
    featured: bool = False
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @field_validator("images", mode="before")
    @classmethod
    def normalize_legacy_images(cls, v: Any):
        # Older rows stored bare URL strings
        if not v:
            return []
        return [
            {"url": item, "order": index} if isinstance(item, str) else item
            for index, item in enumerate(v)
        ]

    @field_validator("tags", mode="before")
    @classmethod
    def default_tags(cls, v: Any):
        return v or []


class ReorderImagesRequest(BaseModel):
    """Full new gallery order, as URLs or {url} objects"""
    images: Any = None


class ImageOrderItem(BaseModel):
    index: int
    order: int


class UpdateImageOrderRequest(BaseModel):
    """Targeted order changes by current gallery index"""
    image_order: Any = Field(default=None, alias="imageOrder")

    model_config = {"populate_by_name": True}

