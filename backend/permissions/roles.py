"""
Role resolution.

A user's role comes from the first source that knows the email:
  1. the userPermissions record in the store
  2. the ALLOWED_USERS setting ("email:role,email:role")
  3. DEV_ADMIN_EMAIL, which always resolves to admin
No match means no access.
"""

import logging
from typing import Optional

from config import Settings, get_settings
from documents.base import DocumentStore
from models.permission import PermissionResult, UserRole
from permissions.store import get_user_permission

logger = logging.getLogger(__name__)


async def get_user_role(
    store: DocumentStore,
    email: Optional[str],
    settings: Optional[Settings] = None,
) -> Optional[UserRole]:
    if not email:
        return None
    settings = settings or get_settings()
    email = email.strip().lower()

    record = await get_user_permission(store, email)
    if record is not None:
        return record.role

    configured = settings.allowed_users_map.get(email)
    if configured:
        return UserRole(configured)

    if settings.dev_admin_email and email == settings.dev_admin_email.strip().lower():
        return UserRole.ADMIN

    return None


async def is_user_allowed(store: DocumentStore, email: Optional[str],
                          settings: Optional[Settings] = None) -> bool:
    return await get_user_role(store, email, settings) is not None


async def can_user_edit(store: DocumentStore, email: Optional[str],
                        settings: Optional[Settings] = None) -> bool:
    role = await get_user_role(store, email, settings)
    return role in (UserRole.ADMIN, UserRole.EDITOR)


async def can_user_read(store: DocumentStore, email: Optional[str],
                        settings: Optional[Settings] = None) -> bool:
    role = await get_user_role(store, email, settings)
    return role in (UserRole.ADMIN, UserRole.EDITOR, UserRole.VIEWER)


async def is_admin(store: DocumentStore, email: Optional[str],
                   settings: Optional[Settings] = None) -> bool:
    return await get_user_role(store, email, settings) == UserRole.ADMIN


async def check_permissions(store: DocumentStore, email: Optional[str],
                            settings: Optional[Settings] = None) -> PermissionResult:
    """The full permission bundle for an email, resolved once."""
    role = await get_user_role(store, email, settings)
    return PermissionResult.for_role(role)
