"""
Utility modules package.
"""

from utils.validators import validate_email, validate_role, validate_visibility

__all__ = [
    "validate_email",
    "validate_role",
    "validate_visibility",
]
