"""
Pydantic models package.
Each module contains models for a specific domain.
"""

from models.note import (
    Block,
    Note,
    NoteCreate,
    NoteInfo,
    NoteType,
    NoteUpdate,
    ReparentRequest,
    TextUpdate,
    TreeNodeResponse,
)
from models.permission import (
    AdminUserDelete,
    AdminUserUpsert,
    PermissionCheckRequest,
    PermissionResult,
    UserPermission,
    UserRole,
)

__all__ = [
    "Block", "Note", "NoteCreate", "NoteInfo", "NoteType", "NoteUpdate",
    "ReparentRequest", "TextUpdate", "TreeNodeResponse",
    "AdminUserDelete", "AdminUserUpsert", "PermissionCheckRequest",
    "PermissionResult", "UserPermission", "UserRole",
]
