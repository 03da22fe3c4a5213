"""
Note-level authorization helpers (coarse, campaign-agnostic).

Visibility tags:
  party            → any signed-in user with a role
  dm-only          → the note's creator only
  personal:<uid>   → that user only
  shared:<a,b,...> → the listed users
Anything else denies. The creator can always read their own note.
"""

from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

READ_ROLES = ("admin", "editor", "viewer")
EDIT_ROLES = ("admin", "editor")


@dataclass(frozen=True)
class Visibility:
    kind: str  # party | dm-only | personal | shared | unknown
    uid: Optional[str] = None
    uids: List[str] = field(default_factory=list)


def parse_visibility(visibility: str) -> Visibility:
    """Parse a stored visibility tag."""
    visibility = visibility or ""
    if visibility == "party":
        return Visibility("party")
    if visibility == "dm-only":
        return Visibility("dm-only")
    if visibility.startswith("personal:"):
        return Visibility("personal", uid=visibility.split(":")[1])
    if visibility.startswith("shared:"):
        rest = visibility[len("shared:"):]
        uids = [s.strip() for s in rest.split(",") if s.strip()]
        return Visibility("shared", uids=uids)
    return Visibility("unknown")


def _get(note: Any, name: str) -> Any:
    if isinstance(note, Mapping):
        return note.get(name)
    return getattr(note, name, None)


def _role_value(role: Any) -> Optional[str]:
    return getattr(role, "value", role)


def can_read(note: Any, user_id: Optional[str], role: Any = None) -> bool:
    """Whether user_id (holding role) may read the note."""
    if _role_value(role) not in READ_ROLES:
        return False

    if user_id is not None and _get(note, "createdBy") == user_id:
        return True

    vis = parse_visibility(_get(note, "visibility") or "")
    if vis.kind == "party":
        return user_id is not None
    if vis.kind == "dm-only":
        return False  # creator already handled above
    if vis.kind == "personal":
        return vis.uid == user_id
    if vis.kind == "shared":
        return bool(user_id) and user_id in vis.uids
    return False


def can_edit(note: Any, user_id: Optional[str], role: Any = None) -> bool:
    """Whether user_id may edit the note: an editing role plus read access."""
    if _role_value(role) not in EDIT_ROLES:
        return False
    return can_read(note, user_id, role)
