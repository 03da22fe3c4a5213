"""
Note and block operations against the document store.

Notes live in the "notes" collection; each note's body lines live in its
"notes/<noteId>/blocks" sub-collection. Every function takes the store
explicitly so callers (routers, editor sessions, tests) decide which
backend they talk to.

Reads validate documents with the Note/Block models. A malformed note is
reported as None by single reads and skipped by list reads; it never
raises into the caller.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from documents.base import SERVER_TIMESTAMP, DocumentStore, Subscription
from models.note import Block, Note

logger = logging.getLogger(__name__)

NOTES_COLLECTION = "notes"


def note_path(note_id: str) -> str:
    return f"{NOTES_COLLECTION}/{note_id}"


def blocks_path(note_id: str) -> str:
    return f"{NOTES_COLLECTION}/{note_id}/blocks"


def block_path(note_id: str, block_id: str) -> str:
    return f"{blocks_path(note_id)}/{block_id}"


def parse_note(doc: Optional[Dict[str, Any]]) -> Optional[Note]:
    """Validate a stored note document; None when missing or malformed."""
    if doc is None:
        return None
    try:
        return Note.model_validate(doc)
    except ValidationError as e:
        logger.warning(f"Skipping malformed note {doc.get('id')}: {e.error_count()} error(s)")
        return None


def parse_block(doc: Dict[str, Any]) -> Block:
    """Build a Block from a stored document, defaulting missing fields."""
    return Block(
        id=doc.get("id"),
        index=doc.get("index") or 0,
        type="line",
        text=doc.get("text") or "",
        updatedAt=doc.get("updatedAt"),
        updatedBy=doc.get("updatedBy"),
    )


# ============================================================
# Notes
# ============================================================

async def create_note(store: DocumentStore, note: Dict[str, Any]) -> str:
    """Create a note and return its id.

    titleLower is derived from title; both timestamps come from the store
    clock and the note starts undeleted.
    """
    fields = {k: v for k, v in note.items() if k not in ("createdAt", "updatedAt")}
    fields["titleLower"] = (fields.get("title") or "").lower()
    fields["createdAt"] = SERVER_TIMESTAMP
    fields["updatedAt"] = SERVER_TIMESTAMP
    fields["deleted"] = False
    note_id = await store.create_document(NOTES_COLLECTION, fields)
    logger.info(f"Note created: {note_id} ({fields.get('title')!r})")
    return note_id


async def update_note(store: DocumentStore, note_id: str, updates: Dict[str, Any]) -> None:
    """Patch a note. Always refreshes updatedAt; refreshes titleLower with title.

    Raises:
        DocumentNotFoundError: If the note does not exist.
    """
    payload = dict(updates)
    payload["updatedAt"] = SERVER_TIMESTAMP
    if isinstance(updates.get("title"), str):
        payload["titleLower"] = updates["title"].lower()
    await store.update_document(note_path(note_id), payload)


async def get_note(store: DocumentStore, note_id: str) -> Optional[Note]:
    return parse_note(await store.get_document(note_path(note_id)))


async def subscribe_note(
    store: DocumentStore,
    note_id: str,
    callback: Callable[[Optional[Note]], None],
) -> Subscription:
    """Watch one note; the callback gets None while it is missing or malformed."""
    return await store.subscribe_document(
        note_path(note_id),
        lambda doc: callback(parse_note(doc)),
    )


async def list_notes(store: DocumentStore, include_deleted: bool = False) -> List[Note]:
    """All well-formed notes in insertion order."""
    notes = []
    for doc in await store.query(NOTES_COLLECTION):
        note = parse_note(doc)
        if note is None:
            continue
        if note.deleted and not include_deleted:
            continue
        notes.append(note)
    return notes


async def link_notes(store: DocumentStore, note_id: str, linked_ids: List[str]) -> None:
    """Replace a note's outgoing links."""
    await store.update_document(note_path(note_id), {
        "links": list(linked_ids),
        "updatedAt": SERVER_TIMESTAMP,
    })


async def get_notes_by_tag(store: DocumentStore, tag: str) -> List[Note]:
    docs = await store.query(NOTES_COLLECTION, [("tags", "array-contains", tag)])
    return [n for n in (parse_note(d) for d in docs) if n is not None]


async def get_note_id_by_title(store: DocumentStore, title: str) -> Optional[str]:
    """Id of the first note with exactly this title, or None."""
    docs = await store.query_equals(NOTES_COLLECTION, "title", title)
    return docs[0]["id"] if docs else None


async def get_note_id_by_title_ci(store: DocumentStore, title: str) -> Optional[str]:
    """Case-insensitive title lookup through the derived titleLower field.

    Falls back to an exact title match for legacy notes written before
    titleLower existed.
    """
    lower = (title or "").lower()
    docs = await store.query_equals(NOTES_COLLECTION, "titleLower", lower)
    if docs:
        return docs[0]["id"]
    return await get_note_id_by_title(store, title)


# ============================================================
# Blocks
# ============================================================

async def get_blocks(store: DocumentStore, note_id: str) -> List[Block]:
    docs = await store.query(blocks_path(note_id), order_by="index")
    return [parse_block(d) for d in docs]


async def subscribe_blocks(
    store: DocumentStore,
    note_id: str,
    callback: Callable[[List[Block]], None],
) -> Subscription:
    """Watch a note's blocks, ordered by index."""
    return await store.subscribe_collection(
        blocks_path(note_id),
        lambda docs: callback([parse_block(d) for d in docs]),
        order_by="index",
    )


async def create_block(store: DocumentStore, note_id: str, index: int, text: str,
                       updated_by: Optional[str] = None) -> str:
    fields: Dict[str, Any] = {
        "index": index,
        "type": "line",
        "text": text,
        "updatedAt": SERVER_TIMESTAMP,
    }
    if updated_by:
        fields["updatedBy"] = updated_by
    return await store.create_document(blocks_path(note_id), fields)


async def update_block(store: DocumentStore, note_id: str, block_id: str,
                       updates: Dict[str, Any]) -> None:
    payload = dict(updates)
    payload["updatedAt"] = SERVER_TIMESTAMP
    await store.update_document(block_path(note_id, block_id), payload)


async def delete_block(store: DocumentStore, note_id: str, block_id: str) -> None:
    await store.delete_document(block_path(note_id, block_id))


async def create_note_with_block(store: DocumentStore, note: Dict[str, Any],
                                 initial_text: str = "") -> str:
    """Create a note with an empty legacy body and, if given, one first line."""
    note_id = await create_note(store, {**note, "content": ""})
    if initial_text:
        await create_block(store, note_id, 0, initial_text, note.get("createdBy"))
    return note_id


# ============================================================
# Soft delete / restore
# ============================================================

async def _mark_subtree(store: DocumentStore, note_id: str, deleted: bool) -> int:
    """Set deleted on a note and every descendant.

    Uses an explicit stack instead of recursion. Each node is marked as it
    is visited, so a failure part way leaves a partially marked subtree;
    running the same call again finishes the job. Returns the number of
    notes marked.
    """
    if await store.get_document(note_path(note_id)) is None:
        return 0

    stack = [note_id]
    seen = set()
    marked = 0
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        children = await store.query_equals(NOTES_COLLECTION, "parentId", current)
        stack.extend(child["id"] for child in children)
        await store.update_document(note_path(current), {
            "deleted": deleted,
            "updatedAt": SERVER_TIMESTAMP,
        })
        marked += 1
    return marked


async def soft_delete_note_and_descendants(store: DocumentStore, note_id: str) -> int:
    """Mark a note and all its descendants deleted=True. Blocks are kept."""
    marked = await _mark_subtree(store, note_id, True)
    logger.info(f"Soft-deleted {marked} note(s) under {note_id}")
    return marked


async def restore_note_and_descendants(store: DocumentStore, note_id: str) -> int:
    """Undo soft_delete_note_and_descendants for a subtree."""
    marked = await _mark_subtree(store, note_id, False)
    logger.info(f"Restored {marked} note(s) under {note_id}")
    return marked
