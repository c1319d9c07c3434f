from datetime import date

from sqlalchemy import Column, Integer, String, Boolean, Text, Date, JSON, Index

from .base import Base, TimestampMixin


class Product(Base, TimestampMixin):
    """Portfolio item with a cover image and an ordered gallery"""
    __tablename__ = "products"
    __table_args__ = (
        Index("ix_products_status_date", "status", "date"),
        Index("ix_products_featured", "featured"),
        {"comment": "Portfolio items"},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    cover = Column(String(255), nullable=False, comment="Cover image URL")
    description = Column(Text, nullable=True)
    stars = Column(Integer, nullable=False, default=0, comment="Rating 0-5")
    tags = Column(JSON, nullable=False, default=list)
    date = Column(Date, nullable=False, default=date.today)
    images = Column(JSON, nullable=False, default=list, comment="[{url, order}]")
    view_count = Column(Integer, nullable=False, default=0)
    status = Column(Boolean, nullable=False, default=True, comment="Published flag")
    featured = Column(Boolean, nullable=False, default=False)

    def __repr__(self):
        return f"<Product(id={self.id}, title='{self.title}', status={self.status})>"
