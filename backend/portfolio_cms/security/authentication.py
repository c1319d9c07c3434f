"""
JWT bearer authentication with admin and editor roles

Tokens carry the user's id, username, email and role; requests are
authorized from those claims alone.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, ValidationError

from portfolio_cms.core.config import Settings, settings
from portfolio_cms.core.exceptions import AuthenticationException, AuthorizationException
from portfolio_cms.schemas.user import UserRecord, UserRole

logger = logging.getLogger(__name__)

TOKEN_TYPE = "access"

password_hasher = CryptContext(schemes=["bcrypt"], deprecated="auto")

# auto_error off so a missing header becomes our 401 envelope
bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    id: int
    username: str
    email: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class AuthenticationManager:
    """Password hashing plus issuing and decoding access tokens"""

    def __init__(self, config: Settings = settings):
        self.secret = config.JWT_SECRET
        self.algorithm = config.JWT_ALGORITHM
        self.lifetime = timedelta(minutes=config.JWT_EXPIRE_MINUTES)

    def hash_password(self, password: str) -> str:
        return password_hasher.hash(password)

    def check_password(self, password: str, stored_hash: str) -> bool:
        try:
            return password_hasher.verify(password, stored_hash)
        except ValueError:
            logger.warning("Stored password hash is not a valid bcrypt hash")
            return False

    def issue_token(self, user: UserRecord, expires_delta: Optional[timedelta] = None) -> str:
        issued_at = datetime.now(timezone.utc)
        claims: Dict[str, Any] = {
            "sub": str(user.id),
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "role": UserRole(user.role).value,
            "type": TOKEN_TYPE,
            "iat": issued_at,
            "exp": issued_at + (expires_delta or self.lifetime),
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def decode_token(self, token: str) -> CurrentUser:
        """
        Decode an access token into the caller's identity

        Raises:
            AuthenticationException: expired, malformed, wrong type or missing claims
        """
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise AuthenticationException("Token has expired")
        except JWTError as e:
            logger.warning(f"Rejected bearer token: {e}")
            raise AuthenticationException("Invalid token")

        if claims.get("type") != TOKEN_TYPE:
            raise AuthenticationException("Invalid token type")

        try:
            return CurrentUser.model_validate(claims)
        except ValidationError:
            raise AuthenticationException("Invalid token payload")


auth_manager = AuthenticationManager()


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> CurrentUser:
    if credentials is None or not credentials.credentials:
        raise AuthenticationException("No token provided")
    return auth_manager.decode_token(credentials.credentials)


async def get_admin_user(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not current_user.is_admin:
        raise AuthorizationException("Admin access required", required_role=UserRole.ADMIN.value)
    return current_user
