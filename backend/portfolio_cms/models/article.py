from sqlalchemy import Column, Integer, String, Boolean, Text, Index

from .base import Base, TimestampMixin


class Article(Base, TimestampMixin):
    """Rich-text article with a cover image"""
    __tablename__ = "articles"
    __table_args__ = (
        Index("ix_articles_status_created", "status", "created_at"),
        {"comment": "Blog articles"},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    cover = Column(String(255), nullable=False, comment="Cover image URL")
    content = Column(Text, nullable=False, comment="HTML produced by the rich-text editor")
    status = Column(Boolean, nullable=False, default=True, comment="Published flag")
    view_count = Column(Integer, nullable=False, default=0)
    is_featured = Column(Boolean, nullable=False, default=False)

    def __repr__(self):
        return f"<Article(id={self.id}, title='{self.title}', status={self.status})>"
