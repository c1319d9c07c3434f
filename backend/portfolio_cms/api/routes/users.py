"""
User accounts and login
"""

from fastapi import APIRouter, Depends
import logging

from portfolio_cms.core.dependencies import get_repositories
from portfolio_cms.core.exceptions import (
    AuthenticationException,
    AuthorizationException,
    NotFoundException,
    ValidationException,
)
from portfolio_cms.repositories import Repositories
from portfolio_cms.schemas.user import LoginRequest, LoginResponse, UserCreate, UserUpdate
from portfolio_cms.security.authentication import (
    CurrentUser,
    auth_manager,
    get_admin_user,
    get_current_user,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/login")
async def login(
    credentials: LoginRequest,
    repos: Repositories = Depends(get_repositories),
):
    """
    Exchange username and password for an access token
    """
    if not credentials.username or not credentials.password:
        raise ValidationException("Username and password are required", field="username")

    user = await repos.users.get_by_username(credentials.username)
    if user is None or not auth_manager.check_password(credentials.password, user.password):
        logger.warning(f"Failed login attempt for {credentials.username}")
        raise AuthenticationException("Invalid username or password")

    if not user.status:
        raise AuthorizationException("Account is disabled")

    token = auth_manager.issue_token(user)
    logger.info(f"User {user.username} logged in")
    return {
        "success": True,
        "message": "Login successful",
        "data": LoginResponse(token=token, user=user.public()),
    }


@router.get("/profile")
async def get_profile(
    current_user: CurrentUser = Depends(get_current_user),
    repos: Repositories = Depends(get_repositories),
):
    user = await repos.users.get(current_user.id)
    if user is None:
        raise NotFoundException("User", current_user.id)
    return {"success": True, "data": user.public()}


@router.get("/")
async def list_users(
    _: CurrentUser = Depends(get_admin_user),
    repos: Repositories = Depends(get_repositories),
):
    users = await repos.users.list()
    return {"success": True, "data": [user.public() for user in users]}


@router.post("/", status_code=201)
async def create_user(
    data: UserCreate,
    admin: CurrentUser = Depends(get_admin_user),
    repos: Repositories = Depends(get_repositories),
):
    """
    Create an account (admin only); usernames and emails must be unique
    """
    if await repos.users.find_conflict(data.username, data.email):
        raise ValidationException("Username or email already exists", field="username")

    values = data.model_dump()
    values["role"] = data.role.value
    values["password"] = auth_manager.hash_password(data.password)
    user = await repos.users.create(values)
    logger.info(f"Admin {admin.username} created user {user.username}")
    return {"success": True, "message": "User created", "data": user.public()}


@router.put("/{user_id}")
async def update_user(
    user_id: int,
    data: UserUpdate,
    admin: CurrentUser = Depends(get_admin_user),
    repos: Repositories = Depends(get_repositories),
):
    values = data.model_dump(exclude_unset=True, exclude_none=True)
    if not values:
        raise ValidationException("No fields to update")

    if await repos.users.get(user_id) is None:
        raise NotFoundException("User", user_id)

    if await repos.users.find_conflict(values.get("username"), values.get("email"), exclude_id=user_id):
        raise ValidationException("Username or email already exists", field="username")

    if "password" in values:
        values["password"] = auth_manager.hash_password(values["password"])
    if "role" in values:
        values["role"] = values["role"].value

    user = await repos.users.update(user_id, values)
    if user is None:
        raise NotFoundException("User", user_id)
    logger.info(f"Admin {admin.username} updated user {user_id}")
    return {"success": True, "message": "User updated", "data": user.public()}


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    admin: CurrentUser = Depends(get_admin_user),
    repos: Repositories = Depends(get_repositories),
):
    if user_id == admin.id:
        raise ValidationException("You cannot delete your own account", field="id", value=user_id)

    if not await repos.users.delete(user_id):
        raise NotFoundException("User", user_id)
    logger.info(f"Admin {admin.username} deleted user {user_id}")
    return {"success": True, "message": "User deleted"}
