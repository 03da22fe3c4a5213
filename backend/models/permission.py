"""
Permission model definitions.

Roles are stored per email in the userPermissions collection and decide
what a signed-in user may do:
  admin  → read, edit, manage other users
  editor → read and edit
  viewer → read only
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr


class UserRole(str, Enum):
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


class PermissionResult(BaseModel):
    """The permission bundle answered by POST /api/permissions."""
    isAllowed: bool = False
    canEdit: bool = False
    isAdmin: bool = False
    role: Optional[UserRole] = None

    @classmethod
    def denied(cls) -> "PermissionResult":
        return cls()

    @classmethod
    def for_role(cls, role: Optional[UserRole]) -> "PermissionResult":
        """Derive the full bundle from a single role."""
        return cls(
            isAllowed=role is not None,
            canEdit=role in (UserRole.ADMIN, UserRole.EDITOR),
            isAdmin=role == UserRole.ADMIN,
            role=role,
        )


class UserPermission(BaseModel):
    """A userPermissions record as stored."""
    email: EmailStr
    role: UserRole
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None
    createdBy: str = "system"


class PermissionCheckRequest(BaseModel):
    """Body of POST /api/permissions. Email is checked by the route (400)."""
    email: Optional[str] = None
    action: Optional[str] = None


class AdminUserUpsert(BaseModel):
    """Body of POST /api/admin/users. Both fields are checked by the route."""
    email: Optional[str] = None
    role: Optional[str] = None


class AdminUserDelete(BaseModel):
    """Body of DELETE /api/admin/users."""
    email: Optional[str] = None
