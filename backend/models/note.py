"""
Note and block model definitions.

A note is one journal entry or folder in the campaign's shared tree.
Its editable body is stored as an ordered list of line blocks under
notes/<noteId>/blocks; the legacy single-string `content` field is kept
for older documents but no longer written by the editor.

Stored documents use camelCase field names (titleLower, parentId, ...);
the API models below expose the same names so clients can round-trip
documents without a mapping layer.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class NoteType(str, Enum):
    """NOTE: a journal entry. FOLDER: a container for other notes."""
    NOTE = "note"
    FOLDER = "folder"


class Note(BaseModel):
    """
    Full note as stored in the document store.

    Used to validate documents on read: a document that fails validation
    is treated as missing rather than raising into the caller.
    """
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    title: str
    titleLower: Optional[str] = None
    content: str = ""
    adminNotes: Optional[str] = None  # Visible to the admin role only
    createdBy: str
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    links: List[str] = Field(default_factory=list)
    visibility: str = "party"
    template: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    parentId: Optional[str] = None
    noteType: NoteType = NoteType.NOTE
    deleted: bool = False


class NoteCreate(BaseModel):
    """Schema for creating a note, optionally with one initial block."""
    title: str = "Untitled"
    visibility: str = "party"
    tags: List[str] = Field(default_factory=list)
    links: List[str] = Field(default_factory=list)
    template: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    parentId: Optional[str] = None
    noteType: NoteType = NoteType.NOTE
    initialText: str = ""


class NoteUpdate(BaseModel):
    """Partial patch for a note. Only provided fields are written."""
    title: Optional[str] = None
    content: Optional[str] = None
    adminNotes: Optional[str] = None
    visibility: Optional[str] = None
    tags: Optional[List[str]] = None
    links: Optional[List[str]] = None
    template: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    noteType: Optional[NoteType] = None


class ReparentRequest(BaseModel):
    """Move a note under a new parent, or to the root when parentId is null."""
    parentId: Optional[str] = None


class TextUpdate(BaseModel):
    """Full editor buffer to reconcile against the stored blocks."""
    text: str


class Block(BaseModel):
    """One persisted line of a note's body."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    index: int = 0
    type: Literal["line"] = "line"
    text: str = ""
    updatedAt: Optional[datetime] = None
    updatedBy: Optional[str] = None


class NoteInfo(BaseModel):
    """Lightweight projection of a note for the sidebar, search and home page."""
    id: str
    title: str = ""
    parentId: Optional[str] = None
    noteType: NoteType = NoteType.NOTE
    updatedAt: Optional[datetime] = None
    createdBy: str = ""
    visibility: str = "party"


class TreeNodeResponse(BaseModel):
    """A note in the sidebar tree with its sorted children."""
    id: str
    title: str
    noteType: NoteType
    parentId: Optional[str] = None
    children: List["TreeNodeResponse"] = Field(default_factory=list)


TreeNodeResponse.model_rebuild()
