from sqlalchemy import Column, Integer, String, Boolean

from .base import Base, TimestampMixin


class User(Base, TimestampMixin):
    """CMS account; role is either admin or editor"""
    __tablename__ = "users"
    __table_args__ = {"comment": "CMS accounts"}

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(50), unique=True, nullable=False, index=True, comment="Login name")
    password = Column(String(100), nullable=False, comment="bcrypt hash")
    email = Column(String(100), unique=True, nullable=False, index=True, comment="User email")
    role = Column(String(20), nullable=False, default="editor", comment="admin or editor")
    status = Column(Boolean, nullable=False, default=True, comment="Disabled accounts cannot log in")

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', role='{self.role}')>"
