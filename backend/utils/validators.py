"""
Input validation utilities.
"""

from typing import Tuple

from pydantic import EmailStr, TypeAdapter, ValidationError

from config import VALID_ROLES

# Same rule UserPermission.email applies when records are read back
_EMAIL_ADAPTER = TypeAdapter(EmailStr)


def validate_email(email: str) -> Tuple[bool, str]:
    """
    Validate email format.

    Args:
        email: Email address to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not email:
        return False, "Email is required"

    try:
        _EMAIL_ADAPTER.validate_python(email.strip())
    except ValidationError:
        return False, "Invalid email format"

    return True, ""


def validate_role(role: str) -> Tuple[bool, str]:
    """Check a role name against admin/editor/viewer (case-insensitive)."""
    if not role:
        return False, "Role is required"
    if role.strip().lower() not in VALID_ROLES:
        return False, f"Invalid role: {role}"
    return True, ""


def validate_visibility(visibility: str) -> Tuple[bool, str]:
    """
    Validate a note visibility tag.

    Accepted: party, dm-only, personal:<uid>, shared:<uid,uid,...>
    """
    if visibility in ("party", "dm-only"):
        return True, ""
    if visibility.startswith("personal:") and visibility[len("personal:"):].strip():
        return True, ""
    if visibility.startswith("shared:"):
        uids = [u for u in visibility[len("shared:"):].split(",") if u.strip()]
        if uids:
            return True, ""
    return False, f"Invalid visibility: {visibility}"
