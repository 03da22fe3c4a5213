"""
Journal package.
Notes, blocks, the shared notes cache, the sidebar tree and live editing.
"""

from journal.notes_cache import NotesCache
from journal.editor import BlockEditor, EditorState, NoteEditor, Selection

__all__ = [
    "NotesCache",
    "BlockEditor",
    "EditorState",
    "NoteEditor",
    "Selection",
]
