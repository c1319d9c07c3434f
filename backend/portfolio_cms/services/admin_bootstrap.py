"""
Default administrator account
"""

import logging
from typing import Optional

from portfolio_cms.core.config import Settings
from portfolio_cms.repositories import RepositoryProvider
from portfolio_cms.schemas.user import UserRecord, UserRole
from portfolio_cms.security.authentication import auth_manager

logger = logging.getLogger(__name__)


async def ensure_default_admin(provider: RepositoryProvider, config: Settings) -> Optional[UserRecord]:
    """
    Create the configured admin account when no admin exists yet

    Returns:
        The created account, or None when nothing was created
    """
    if not config.DEFAULT_ADMIN_PASSWORD:
        logger.debug("DEFAULT_ADMIN_PASSWORD not set, skipping admin bootstrap")
        return None

    async with provider.session() as repos:
        if await repos.users.count_by_role(UserRole.ADMIN.value) > 0:
            return None
        if await repos.users.find_conflict(config.DEFAULT_ADMIN_USERNAME, config.DEFAULT_ADMIN_EMAIL):
            logger.warning(
                f"Cannot create default admin: {config.DEFAULT_ADMIN_USERNAME} or "
                f"{config.DEFAULT_ADMIN_EMAIL} is taken by a non-admin account"
            )
            return None

        admin = await repos.users.create({
            "username": config.DEFAULT_ADMIN_USERNAME,
            "email": config.DEFAULT_ADMIN_EMAIL,
            "password": auth_manager.hash_password(config.DEFAULT_ADMIN_PASSWORD),
            "role": UserRole.ADMIN.value,
            "status": True,
        })
        logger.info(f"Created default admin account {admin.username}")
        return admin
