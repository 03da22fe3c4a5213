"""
Permissions router.
Answers "what may this email do?" for clients and for HttpPermissionFetcher.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from database import get_store
from documents.base import DocumentStore
from models.permission import PermissionCheckRequest
from permissions.roles import check_permissions
from routers.auth import get_app_settings

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("")
async def check_user_permissions(
    body: PermissionCheckRequest,
    request: Request,
    store: DocumentStore = Depends(get_store),
):
    """Return {isAllowed, canEdit, isAdmin, role}, or {result} for one action.

    An unknown action is ignored and the full bundle returned.
    """
    if not body.email:
        return JSONResponse(status_code=400, content={"error": "Email is required"})

    try:
        result = await check_permissions(store, body.email, get_app_settings(request))
    except Exception as e:
        logger.error(f"Error checking permissions: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    permissions = result.model_dump(mode="json")
    if body.action and body.action in permissions:
        return {"result": permissions[body.action]}
    return permissions
