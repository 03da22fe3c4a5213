"""
Permissions package.
Role records, role resolution and the per-email permissions cache.
"""

from permissions.cache import (
    HttpPermissionFetcher,
    PermissionsCache,
    PermissionsCacheEntry,
    StorePermissionFetcher,
)
from permissions.roles import check_permissions, get_user_role

__all__ = [
    "HttpPermissionFetcher",
    "PermissionsCache",
    "PermissionsCacheEntry",
    "StorePermissionFetcher",
    "check_permissions",
    "get_user_role",
]
