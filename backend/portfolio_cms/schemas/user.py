"""
Pydantic schemas for user accounts and authentication
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from .common import CamelModel


class UserRole(str, Enum):
    """Account roles"""
    ADMIN = "admin"
    EDITOR = "editor"


class LoginRequest(BaseModel):
    """Login credentials; presence is checked by the handler so a missing field is a 400"""
    username: Optional[str] = None
    password: Optional[str] = None


class UserCreate(BaseModel):
    """Schema for creating an account"""
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=6, max_length=100)
    email: EmailStr
    role: UserRole = UserRole.EDITOR
    status: bool = True


class UserUpdate(BaseModel):
    """Schema for partially updating an account"""
    username: Optional[str] = Field(None, min_length=3, max_length=50)
    password: Optional[str] = Field(None, min_length=6, max_length=100)
    email: Optional[EmailStr] = None
    role: Optional[UserRole] = None
    status: Optional[bool] = None


class UserResponse(CamelModel):
    """Public view of an account"""
    id: int
    username: str
    email: str
    role: UserRole
    status: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserRecord(UserResponse):
    """Stored account including the password hash; never returned by the API"""
    password: str

    def public(self) -> UserResponse:
        return UserResponse.model_validate(self.model_dump(exclude={"password"}))


class LoginResponse(CamelModel):
    token: str
    user: UserResponse
