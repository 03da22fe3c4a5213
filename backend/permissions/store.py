"""
userPermissions records in the document store.

One document per user, keyed by a sanitized form of the lowercased
email. Every function here is best-effort: store failures are logged and
reported as None / False / [] so that callers in request handlers and
background fetches never see a raw store exception.
"""

import logging
import re
from typing import List, Optional

from pydantic import ValidationError

from documents.base import SERVER_TIMESTAMP, DocumentStore
from models.permission import UserPermission, UserRole

logger = logging.getLogger(__name__)

PERMISSIONS_COLLECTION = "userPermissions"

_UNSAFE_ID_CHARS = re.compile(r"[.#$\[\]]")


def email_to_doc_id(email: str) -> str:
    """Lowercase the email and replace characters not allowed in ids."""
    return _UNSAFE_ID_CHARS.sub("_", email.lower())


def _permission_path(email: str) -> str:
    return f"{PERMISSIONS_COLLECTION}/{email_to_doc_id(email)}"


async def get_user_permission(store: DocumentStore, email: str) -> Optional[UserPermission]:
    """Stored permission record for an email, or None."""
    try:
        doc = await store.get_document(_permission_path(email))
    except Exception as e:
        logger.error(f"Error getting user permission for {email}: {e}")
        return None
    if doc is None:
        return None
    try:
        return UserPermission.model_validate(doc)
    except ValidationError:
        logger.warning(f"Ignoring malformed permission record for {email}")
        return None


async def set_user_permission(
    store: DocumentStore,
    email: str,
    role: UserRole,
    created_by: str = "system",
) -> bool:
    """Create or update a user's role.

    createdAt and createdBy are written only when the record is new.
    An email the record model would reject on read is refused up front.
    """
    try:
        UserPermission(email=email.lower(), role=role)
    except ValidationError:
        logger.warning(f"Refusing permission record with invalid email {email!r}")
        return False

    path = _permission_path(email)
    try:
        existing = await store.get_document(path)
        fields = {
            "email": email.lower(),
            "role": UserRole(role).value,
            "updatedAt": SERVER_TIMESTAMP,
        }
        if existing is None:
            fields["createdAt"] = SERVER_TIMESTAMP
            fields["createdBy"] = created_by
        await store.set_document(path, fields, merge=True)
        logger.info(f"Set role {fields['role']} for {email.lower()}")
        return True
    except Exception as e:
        logger.error(f"Error setting user permission for {email}: {e}")
        return False


async def remove_user_permission(store: DocumentStore, email: str) -> bool:
    try:
        await store.delete_document(_permission_path(email))
        logger.info(f"Removed permission record for {email.lower()}")
        return True
    except Exception as e:
        logger.error(f"Error removing user permission for {email}: {e}")
        return False


async def list_user_permissions(store: DocumentStore) -> List[UserPermission]:
    """All permission records sorted by email. Malformed records are skipped."""
    try:
        docs = await store.query(PERMISSIONS_COLLECTION)
    except Exception as e:
        logger.error(f"Error listing user permissions: {e}")
        return []

    records = []
    for doc in docs:
        try:
            records.append(UserPermission.model_validate(doc))
        except ValidationError:
            logger.warning(f"Skipping malformed permission record {doc.get('id')}")
    records.sort(key=lambda r: r.email)
    return records
