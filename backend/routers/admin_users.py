"""
Admin user management router.
Lists, grants and revokes userPermissions records. Admin only.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from database import get_store
from documents.base import DocumentStore
from models.permission import AdminUserDelete, AdminUserUpsert, UserRole
from permissions.store import (
    list_user_permissions,
    remove_user_permission,
    set_user_permission,
)
from routers.auth import get_permissions_cache, verify_admin
from utils.validators import validate_email, validate_role

logger = logging.getLogger(__name__)
router = APIRouter()


def _forbidden() -> JSONResponse:
    return JSONResponse(status_code=403, content={"error": "Admin access required"})


@router.get("")
async def list_users(
    admin_email: Optional[str] = Depends(verify_admin),
    store: DocumentStore = Depends(get_store),
):
    """All users with a stored role, sorted by email."""
    if not admin_email:
        return _forbidden()

    users = await list_user_permissions(store)
    logger.info(f"Retrieved {len(users)} users")
    return {"users": [u.model_dump(mode="json") for u in users]}


@router.post("")
async def upsert_user(
    body: AdminUserUpsert,
    request: Request,
    admin_email: Optional[str] = Depends(verify_admin),
    store: DocumentStore = Depends(get_store),
):
    """Grant or change a user's role."""
    if not admin_email:
        return _forbidden()

    if not body.email or not body.role:
        return JSONResponse(status_code=400, content={"error": "Email and role are required"})

    for valid, message in (validate_email(body.email), validate_role(body.role)):
        if not valid:
            return JSONResponse(status_code=400, content={"error": message})
    role = body.role.strip().lower()

    ok = await set_user_permission(store, body.email.strip(), UserRole(role), created_by=admin_email)
    if not ok:
        return JSONResponse(status_code=500, content={"error": "Failed to set user permissions"})

    get_permissions_cache(request).invalidate_user(body.email)
    logger.info(f"Successfully set permissions for {body.email} to {role}")
    return {"success": True}


@router.delete("")
async def remove_user(
    body: AdminUserDelete,
    request: Request,
    admin_email: Optional[str] = Depends(verify_admin),
    store: DocumentStore = Depends(get_store),
):
    """Remove a user's stored role."""
    if not admin_email:
        return _forbidden()

    if not body.email:
        return JSONResponse(status_code=400, content={"error": "Email is required"})

    ok = await remove_user_permission(store, body.email)
    if not ok:
        return JSONResponse(status_code=500, content={"error": "Failed to remove user permissions"})

    get_permissions_cache(request).invalidate_user(body.email)
    logger.info(f"Successfully removed permissions for {body.email}")
    return {"success": True}


@router.get("/cache")
async def permissions_cache_status(
    request: Request,
    admin_email: Optional[str] = Depends(verify_admin),
):
    """Debug view of the request permissions cache."""
    if not admin_email:
        return _forbidden()
    return {"entries": get_permissions_cache(request).get_cache_status()}
