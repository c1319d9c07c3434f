from sqlalchemy import Column, DateTime
from datetime import datetime, timezone

from portfolio_cms.db.session import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    """Created/updated timestamp mixin"""
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


__all__ = ["Base", "TimestampMixin", "utcnow"]
