"""
Notes router.
Handles the campaign journal: note CRUD, the sidebar tree, soft delete,
reparenting, line blocks, and live editing over SSE and websockets.

Reads of note lists come from the application's NotesCache; single-note
reads and all writes go to the document store. Every endpoint checks the
caller's role and the note's visibility tag.
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from database import get_store
from documents.base import DocumentNotFoundError, DocumentStore
from journal.editor import NoteEditor, Selection
from journal.notes import (
    create_note_with_block,
    get_blocks,
    get_note,
    get_note_id_by_title_ci,
    list_notes,
    restore_note_and_descendants,
    soft_delete_note_and_descendants,
    subscribe_blocks,
    update_note,
)
from journal.notes_cache import NotesCache
from journal.reconcile import join_blocks, save_text
from journal.tree import TreeNode, build_tree, filter_tree, is_invalid_drop, parent_map
from journal.visibility import can_edit, can_read
from models.note import (
    Block,
    Note,
    NoteCreate,
    NoteInfo,
    NoteUpdate,
    ReparentRequest,
    TextUpdate,
    TreeNodeResponse,
)
from models.permission import UserRole
from routers.auth import (
    CurrentUser,
    get_app_settings,
    get_current_user,
    get_permissions_cache,
    resolve_user,
)
from utils.validators import validate_visibility

logger = logging.getLogger(__name__)
router = APIRouter()

SSE_KEEPALIVE_SECONDS = 15.0

# Websocket close codes for refused sessions
WS_UNAUTHORIZED = 4401
WS_FORBIDDEN = 4403
WS_NOT_FOUND = 4404


def get_notes_cache(request: Request) -> NotesCache:
    return request.app.state.notes_cache


def _note_payload(note: Note, user: CurrentUser) -> Dict[str, Any]:
    """Serialize a note for this caller; adminNotes are for admins only."""
    data = note.model_dump(mode="json")
    if user.role != UserRole.ADMIN:
        data.pop("adminNotes", None)
    return data


def _to_response(nodes: List[TreeNode]) -> List[TreeNodeResponse]:
    return [
        TreeNodeResponse(
            id=n.id,
            title=n.title,
            noteType=n.note.noteType,
            parentId=n.note.parentId,
            children=_to_response(n.children),
        )
        for n in nodes
    ]


async def _load_note(store: DocumentStore, note_id: str, user: CurrentUser,
                     write: bool = False, include_deleted: bool = False) -> Note:
    """Fetch a note the caller may read (or edit), or raise 404/403.

    Soft-deleted notes count as missing unless include_deleted is set.
    """
    note = await get_note(store, note_id)
    if note is None or (note.deleted and not include_deleted):
        raise HTTPException(status_code=404, detail="Note not found")
    allowed = can_edit(note, user.id, user.role) if write else can_read(note, user.id, user.role)
    if not allowed:
        raise HTTPException(status_code=403, detail="Access denied")
    return note


def _readable(notes: List[NoteInfo], user: CurrentUser) -> List[NoteInfo]:
    return [n for n in notes if can_read(n, user.id, user.role)]


# ============================================================
# Lists and lookup
# ============================================================

@router.get("", response_model=List[NoteInfo])
async def list_note_summaries(
    current_user: CurrentUser = Depends(get_current_user),
    cache: NotesCache = Depends(get_notes_cache),
) -> List[NoteInfo]:
    """Summaries of every non-deleted note the caller may read."""
    return _readable(cache.get_all_notes(), current_user)


@router.get("/tree", response_model=List[TreeNodeResponse])
async def get_note_tree(
    q: str = Query("", description="Case-insensitive title filter"),
    current_user: CurrentUser = Depends(get_current_user),
    cache: NotesCache = Depends(get_notes_cache),
) -> List[TreeNodeResponse]:
    """The sidebar forest, naturally sorted and optionally filtered."""
    tree = build_tree(_readable(cache.get_all_notes(), current_user))
    return _to_response(filter_tree(tree, q))


@router.get("/lookup")
async def lookup_note(
    title: str = Query(..., min_length=1),
    current_user: CurrentUser = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
) -> dict:
    """Resolve a wiki-link title to a note id, ignoring case."""
    note_id = await get_note_id_by_title_ci(store, title)
    if note_id is None:
        raise HTTPException(status_code=404, detail="Note not found")
    await _load_note(store, note_id, current_user)
    return {"id": note_id}


# ============================================================
# CRUD
# ============================================================

@router.post("")
async def create_journal_note(
    data: NoteCreate,
    current_user: CurrentUser = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
) -> dict:
    """Create a note or folder, optionally with a first line of text."""
    if not current_user.canEdit:
        raise HTTPException(status_code=403, detail="You don't have permission to create notes")

    valid, message = validate_visibility(data.visibility)
    if not valid:
        raise HTTPException(status_code=400, detail=message)

    if data.parentId:
        parent = await get_note(store, data.parentId)
        if parent is None or parent.deleted:
            raise HTTPException(status_code=400, detail="Parent note not found")

    fields = data.model_dump(exclude={"initialText"}, mode="json")
    fields["createdBy"] = current_user.id
    try:
        note_id = await create_note_with_block(store, fields, data.initialText)
    except Exception as e:
        logger.error(f"Failed to create note: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create note")

    note = await get_note(store, note_id)
    return _note_payload(note, current_user)


@router.get("/{note_id}")
async def get_journal_note(
    note_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
) -> dict:
    note = await _load_note(store, note_id, current_user)
    return _note_payload(note, current_user)


@router.patch("/{note_id}")
async def update_journal_note(
    note_id: str,
    data: NoteUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
) -> dict:
    """Patch note metadata. Only provided fields are written."""
    await _load_note(store, note_id, current_user, write=True)

    updates = data.model_dump(exclude_unset=True, mode="json")
    if "adminNotes" in updates and current_user.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Admin notes are admin only")
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    if "visibility" in updates:
        valid, message = validate_visibility(updates["visibility"] or "")
        if not valid:
            raise HTTPException(status_code=400, detail=message)

    try:
        await update_note(store, note_id, updates)
    except DocumentNotFoundError:
        raise HTTPException(status_code=404, detail="Note not found")

    note = await get_note(store, note_id)
    return _note_payload(note, current_user)


@router.delete("/{note_id}")
async def delete_journal_note(
    note_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
) -> dict:
    """Soft-delete a note and its whole subtree."""
    await _load_note(store, note_id, current_user, write=True)
    try:
        count = await soft_delete_note_and_descendants(store, note_id)
    except Exception as e:
        logger.error(f"Soft delete of {note_id} failed part way: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to delete note")
    return {"success": True, "deleted": count}


@router.post("/{note_id}/restore")
async def restore_journal_note(
    note_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
) -> dict:
    """Undo a soft delete for a note and its whole subtree."""
    await _load_note(store, note_id, current_user, write=True, include_deleted=True)
    try:
        count = await restore_note_and_descendants(store, note_id)
    except Exception as e:
        logger.error(f"Restore of {note_id} failed part way: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to restore note")
    return {"success": True, "restored": count}


@router.put("/{note_id}/parent")
async def reparent_note(
    note_id: str,
    data: ReparentRequest,
    current_user: CurrentUser = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
) -> dict:
    """Move a note under another note, or to the root with parentId null."""
    await _load_note(store, note_id, current_user, write=True)

    if data.parentId:
        target = await get_note(store, data.parentId)
        if target is None or target.deleted:
            raise HTTPException(status_code=400, detail="Target note not found")
        parents = parent_map(await list_notes(store))
        if is_invalid_drop(note_id, data.parentId, parents):
            raise HTTPException(status_code=400, detail="Cannot move a note into itself or its descendants")

    await update_note(store, note_id, {"parentId": data.parentId})
    return {"success": True, "parentId": data.parentId}


# ============================================================
# Blocks
# ============================================================

@router.get("/{note_id}/blocks")
async def get_note_blocks(
    note_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
) -> dict:
    await _load_note(store, note_id, current_user)
    blocks = await get_blocks(store, note_id)
    return {
        "blocks": [b.model_dump(mode="json") for b in blocks],
        "text": join_blocks(blocks),
    }


@router.put("/{note_id}/text")
async def put_note_text(
    note_id: str,
    data: TextUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
) -> dict:
    """Reconcile the stored blocks against a full text buffer, once."""
    await _load_note(store, note_id, current_user, write=True)
    blocks = await get_blocks(store, note_id)
    try:
        writes = await save_text(store, note_id, data.text, blocks, current_user.id)
    except Exception as e:
        logger.error(f"Save error for note {note_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to save note text")
    return {
        "success": True,
        "writes": [{"op": w.op, "index": w.index} for w in writes],
    }


async def block_events(
    store: DocumentStore,
    note_id: str,
    is_disconnected: Callable[[], Awaitable[bool]],
    keepalive: float = SSE_KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """SSE frames for a note's blocks: one per store push, until disconnect."""
    queue: asyncio.Queue = asyncio.Queue()

    def on_blocks(blocks: List[Block]) -> None:
        queue.put_nowait({
            "blocks": [b.model_dump(mode="json") for b in blocks],
            "text": join_blocks(blocks),
        })

    subscription = await subscribe_blocks(store, note_id, on_blocks)
    try:
        while not await is_disconnected():
            try:
                payload = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue
            yield f"data: {json.dumps(payload)}\n\n"
    finally:
        subscription.cancel()
        logger.info(f"Block stream closed for note {note_id}")


@router.get("/{note_id}/blocks/stream")
async def stream_note_blocks(
    note_id: str,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
) -> StreamingResponse:
    await _load_note(store, note_id, current_user)
    return StreamingResponse(
        block_events(store, note_id, request.is_disconnected),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


# ============================================================
# Live editing session
# ============================================================

def _ws_email(websocket: WebSocket, token: Optional[str]) -> Optional[str]:
    """Bearer email from ?token= or the Authorization header."""
    if token:
        return token.strip().lower() or None
    header = websocket.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip().lower()
    return None


@router.websocket("/{note_id}/ws")
async def note_session(websocket: WebSocket, note_id: str, token: Optional[str] = Query(None)):
    """
    One client's editing session on a note.

    Client messages (JSON):
        {"type": "edit", "text": ..., "selectionStart": n, "selectionEnd": n}
        {"type": "focus"} / {"type": "blur"}
        {"type": "title", "title": ...}
        {"type": "focusTitle"} / {"type": "blurTitle"}
        {"type": "adminNotes", "text": ...}   (admin only)

    Server messages (JSON):
        {"type": "note", "note": {...}}       metadata changed
        {"type": "text", "text": ...}         remote body adopted
        {"type": "error", "detail": ...}
    """
    try:
        user = await resolve_user(get_permissions_cache(websocket), _ws_email(websocket, token))
    except HTTPException as e:
        await websocket.close(code=WS_UNAUTHORIZED if e.status_code == 401 else WS_FORBIDDEN)
        return

    store: DocumentStore = websocket.app.state.store
    note = await get_note(store, note_id)
    if note is None or note.deleted:
        await websocket.close(code=WS_NOT_FOUND)
        return
    if not can_read(note, user.id, user.role):
        await websocket.close(code=WS_FORBIDDEN)
        return

    await websocket.accept()
    settings = get_app_settings(websocket)
    outbox: asyncio.Queue = asyncio.Queue()

    def on_note(current: Optional[Note]) -> None:
        if current is not None:
            outbox.put_nowait({"type": "note", "note": _note_payload(current, user)})

    editor = NoteEditor(
        store,
        note_id,
        user_id=user.id,
        role=user.role.value,
        debounce=settings.save_debounce_ms / 1000,
        grace=settings.typing_grace_ms / 1000,
        blur_release=settings.blur_release_ms / 1000,
        on_text=lambda text: outbox.put_nowait({"type": "text", "text": text}),
        on_note=on_note,
    )
    await editor.open()

    async def sender() -> None:
        while True:
            message = await outbox.get()
            await websocket.send_json(message)

    sender_task = asyncio.create_task(sender())
    logger.info(f"Editing session opened: {user.email} on {note_id}")

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except (ValueError, KeyError):
                outbox.put_nowait({"type": "error", "detail": "Invalid message"})
                continue

            kind = message.get("type") if isinstance(message, dict) else None
            if kind in ("edit", "title", "adminNotes") and not editor.can_edit:
                outbox.put_nowait({"type": "error", "detail": "Read-only access"})
                continue

            if kind == "edit":
                text = message.get("text") or ""
                try:
                    if not isinstance(text, str):
                        raise TypeError("text must be a string")
                    selection = Selection(
                        int(message.get("selectionStart", len(text))),
                        int(message.get("selectionEnd", len(text))),
                    )
                except (TypeError, ValueError):
                    outbox.put_nowait({"type": "error", "detail": "Invalid message"})
                    continue
                editor.edit_text(text, selection)
            elif kind == "focus":
                editor.body.focus()
            elif kind == "blur":
                editor.body.blur()
            elif kind == "title":
                editor.edit_title(message.get("title") or "")
            elif kind == "focusTitle":
                editor.focus_title()
            elif kind == "blurTitle":
                editor.blur_title()
            elif kind == "adminNotes":
                if user.role != UserRole.ADMIN:
                    outbox.put_nowait({"type": "error", "detail": "Admin notes are admin only"})
                    continue
                editor.edit_admin_notes(message.get("text") or "")
            else:
                outbox.put_nowait({"type": "error", "detail": f"Unknown message type: {kind}"})
    except WebSocketDisconnect:
        logger.info(f"Editing session closed: {user.email} on {note_id}")
    finally:
        await editor.close()
        sender_task.cancel()
