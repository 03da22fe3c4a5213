"""
Request authentication.

Callers identify themselves with `Authorization: Bearer <email>`; sign-in
happens upstream. The email is looked up through the application's
PermissionsCache, so repeated requests from one user cost one role
resolution per TTL window.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from starlette.requests import HTTPConnection
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from config import Settings, get_settings
from models.permission import UserRole
from permissions.cache import PermissionsCache

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    """The authenticated caller. The lowercased email doubles as the user id."""
    id: str
    email: str
    role: UserRole
    canEdit: bool = False
    isAdmin: bool = False


def get_app_settings(request: HTTPConnection) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


def get_permissions_cache(request: HTTPConnection) -> PermissionsCache:
    return request.app.state.permissions_cache


def bearer_email(credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials is None:
        return None
    email = (credentials.credentials or "").strip().lower()
    return email or None


async def resolve_user(cache: PermissionsCache, email: Optional[str]) -> CurrentUser:
    """Turn a bearer email into a CurrentUser.

    Raises:
        HTTPException: 401 without an email, 403 when the email has no role.
    """
    if not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    entry = await cache.get_permissions(email)
    if not entry.isAllowed or entry.role is None:
        if entry.error:
            logger.warning(f"Permission lookup failed for {email}: {entry.error}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    return CurrentUser(
        id=email,
        email=email,
        role=entry.role,
        canEdit=entry.canEdit,
        isAdmin=entry.isAdmin,
    )


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """Dependency: the authenticated caller, or 401/403."""
    return await resolve_user(get_permissions_cache(request), bearer_email(credentials))


async def verify_admin(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[str]:
    """The acting admin's email, or None.

    A bearer email holding the admin role wins; otherwise DEV_ADMIN_EMAIL,
    when configured, is accepted as the acting admin.
    """
    email = bearer_email(credentials)
    if email:
        entry = await get_permissions_cache(request).get_permissions(email)
        if entry.isAdmin:
            return email

    dev_admin = get_app_settings(request).dev_admin_email
    if dev_admin:
        logger.info(f"Using dev admin fallback: {dev_admin}")
        return dev_admin.strip().lower()

    return None
