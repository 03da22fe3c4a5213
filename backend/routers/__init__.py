"""
API routers package.
Each router handles a specific domain of endpoints.
"""

from routers import admin_users, auth, notes, permissions

__all__ = [
    "admin_users",
    "auth",
    "notes",
    "permissions",
]
