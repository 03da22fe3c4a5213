"""
Live editing sessions for one open note.

BlockEditor bridges the local text buffer and the note's stored line
blocks. Outbound, every edit restarts a debounce timer; when it fires the
buffer is reconciled against the last-known blocks. Inbound, every block
push is joined into a candidate buffer and adopted only while nobody is
typing locally.

Editor states:

    IDLE ──edit──▶ EDITING ──timer──▶ SAVING ──ok + grace──▶ IDLE
                      ▲                 │  │
                      └──── failure ────┘  └──edit──▶ SAVING_WHILE_EDITING
                                                         │ save done
                                                         ▼
                                                      EDITING

Remote pushes are applied only in IDLE (or on first load / while the
local buffer is empty). While a session is typing, remote changes are
discarded rather than merged: the last local writer wins.

NoteEditor wraps a BlockEditor together with the note's metadata
subscription and the title and admin-notes debouncers.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from documents.base import DocumentStore, Subscription
from journal.debounce import Debouncer
from journal.notes import subscribe_blocks, subscribe_note, update_note
from journal.reconcile import apply_block_writes, join_blocks, plan_block_writes
from journal.visibility import can_edit, can_read
from models.note import Block, Note

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 0.3
DEFAULT_GRACE = 0.05
DEFAULT_BLUR_RELEASE = 0.1


class EditorState(str, Enum):
    IDLE = "idle"
    EDITING = "editing"
    SAVING = "saving"
    SAVING_WHILE_EDITING = "saving_while_editing"


@dataclass
class Selection:
    """Caret/selection offsets into the buffer."""
    start: int = 0
    end: int = 0

    def clamp(self, length: int) -> "Selection":
        return Selection(min(self.start, length), min(self.end, length))


class BlockEditor:
    """
    Reconciles one note's text buffer with its stored blocks.

    Args:
        store: Document store holding the note.
        note_id: The open note.
        user_id: Written to updatedBy on saved blocks.
        debounce: Quiet period before a save pass, in seconds.
        grace: Extra delay after a clean save before remote pushes are
            accepted again.
        blur_release: Delay after losing focus before remote pushes are
            accepted again.
        on_text: Called with the new buffer whenever a remote push is
            adopted.
    """

    def __init__(
        self,
        store: DocumentStore,
        note_id: str,
        user_id: Optional[str] = None,
        debounce: float = DEFAULT_DEBOUNCE,
        grace: float = DEFAULT_GRACE,
        blur_release: float = DEFAULT_BLUR_RELEASE,
        on_text: Optional[Callable[[str], None]] = None,
    ):
        self._store = store
        self.note_id = note_id
        self.user_id = user_id
        self._grace = grace
        self._blur_release = blur_release
        self.on_text = on_text

        self.text = ""
        self.blocks: List[Block] = []
        self.selection = Selection()
        self.state = EditorState.IDLE
        self.loaded = False
        self.last_error: Optional[Exception] = None
        self.dropped_pushes = 0

        self._saver = Debouncer(self._save, debounce)
        self._saves_in_flight = 0
        self._subscription: Optional[Subscription] = None
        self._grace_handle: Optional[asyncio.TimerHandle] = None
        self._blur_handle: Optional[asyncio.TimerHandle] = None

    @property
    def typing(self) -> bool:
        return self.state != EditorState.IDLE

    @property
    def save_pending(self) -> bool:
        return self._saver.pending or self._saves_in_flight > 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def open(self) -> None:
        """Start listening to the note's blocks."""
        self._subscription = await subscribe_blocks(
            self._store, self.note_id, self.on_remote_blocks
        )

    async def close(self) -> None:
        """Stop listening and push out any pending save.

        Writes already dispatched are not cancelled.
        """
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self._cancel_timers()
        self._saver.flush()
        await self._saver.wait()

    async def wait_saved(self) -> None:
        """Wait for running save passes to finish."""
        await self._saver.wait()

    def _cancel_timers(self) -> None:
        for handle in (self._grace_handle, self._blur_handle):
            if handle is not None:
                handle.cancel()
        self._grace_handle = None
        self._blur_handle = None

    # ------------------------------------------------------------------
    # Local input
    # ------------------------------------------------------------------
    def edit(self, text: str, selection: Optional[Selection] = None) -> None:
        """A keystroke: replace the buffer and restart the save timer."""
        self.text = text
        if selection is not None:
            self.selection = selection
        self._cancel_timers()
        if self._saves_in_flight:
            self.state = EditorState.SAVING_WHILE_EDITING
        else:
            self.state = EditorState.EDITING
        self._saver.trigger()

    def focus(self) -> None:
        if self._blur_handle is not None:
            self._blur_handle.cancel()
            self._blur_handle = None
        if self.state == EditorState.IDLE:
            self.state = EditorState.EDITING

    def blur(self) -> None:
        loop = asyncio.get_running_loop()
        if self._blur_handle is not None:
            self._blur_handle.cancel()
        self._blur_handle = loop.call_later(self._blur_release, self._release_after_blur)

    def _release_after_blur(self) -> None:
        self._blur_handle = None
        if self.state == EditorState.EDITING and not self.save_pending:
            self.state = EditorState.IDLE

    # ------------------------------------------------------------------
    # Outbound: buffer → blocks
    # ------------------------------------------------------------------
    async def _save(self) -> None:
        current = self.text
        writes = plan_block_writes(current, self.blocks)
        self._saves_in_flight += 1
        self.state = EditorState.SAVING
        try:
            if writes:
                await apply_block_writes(self._store, self.note_id, writes, self.user_id)
        except Exception as e:
            self._saves_in_flight -= 1
            self.last_error = e
            logger.error(f"Save error for note {self.note_id}: {e}")
            # Keep the typing state so remote pushes cannot overwrite
            # the unsaved buffer; the next edit retries.
            self.state = (
                EditorState.SAVING_WHILE_EDITING if self._saves_in_flight else EditorState.EDITING
            )
            return

        self._saves_in_flight -= 1
        self.last_error = None
        if self._saves_in_flight:
            return  # the later pass settles the state
        if self.text != current or self._saver.pending:
            self.state = EditorState.EDITING
            return
        loop = asyncio.get_running_loop()
        self._grace_handle = loop.call_later(self._grace, self._release_after_save, current)

    def _release_after_save(self, saved_text: str) -> None:
        self._grace_handle = None
        if self.text == saved_text and not self.save_pending and self.state == EditorState.SAVING:
            self.state = EditorState.IDLE

    # ------------------------------------------------------------------
    # Inbound: blocks → buffer
    # ------------------------------------------------------------------
    def on_remote_blocks(self, blocks: List[Block]) -> None:
        self.blocks = list(blocks)
        joined = join_blocks(self.blocks)

        if not self.loaded or self.text == "":
            self.loaded = True
            if joined != self.text:
                self._adopt(joined)
            return

        if self.state != EditorState.IDLE:
            self.dropped_pushes += 1
            return

        if joined != self.text:
            self._adopt(joined)

    def _adopt(self, text: str) -> None:
        self.text = text
        self.selection = self.selection.clamp(len(text))
        if self.on_text is not None:
            try:
                self.on_text(text)
            except Exception as e:
                logger.error(f"on_text callback failed: {e}", exc_info=True)


class NoteEditor:
    """
    An open note: body blocks, title and admin notes, each saved on its
    own debounce timer.

    Args:
        store: Document store holding the note.
        note_id: The open note.
        user_id: The editing user's id.
        role: The editing user's role; decides can_edit/can_read.
        on_note: Called with the note (or None) whenever its metadata
            document changes.
    """

    def __init__(
        self,
        store: DocumentStore,
        note_id: str,
        user_id: Optional[str] = None,
        role: Optional[str] = None,
        debounce: float = DEFAULT_DEBOUNCE,
        grace: float = DEFAULT_GRACE,
        blur_release: float = DEFAULT_BLUR_RELEASE,
        on_text: Optional[Callable[[str], None]] = None,
        on_note: Optional[Callable[[Optional[Note]], None]] = None,
    ):
        self._store = store
        self.note_id = note_id
        self.user_id = user_id
        self.role = role
        self.on_note = on_note

        self.body = BlockEditor(
            store, note_id, user_id,
            debounce=debounce, grace=grace, blur_release=blur_release,
            on_text=on_text,
        )
        self.note: Optional[Note] = None
        self.loaded = False
        self.title = ""
        self.admin_notes = ""
        self.title_focused = False
        self.admin_notes_focused = False

        self._title_saver = Debouncer(self._save_title, debounce)
        self._admin_notes_saver = Debouncer(self._save_admin_notes, debounce)
        self._note_subscription: Optional[Subscription] = None

    @property
    def can_edit(self) -> bool:
        return self.note is not None and can_edit(self.note, self.user_id, self.role)

    @property
    def can_read(self) -> bool:
        return self.note is not None and can_read(self.note, self.user_id, self.role)

    async def open(self) -> None:
        self._note_subscription = await subscribe_note(
            self._store, self.note_id, self._on_remote_note
        )
        await self.body.open()

    async def close(self) -> None:
        if self._note_subscription is not None:
            self._note_subscription.cancel()
            self._note_subscription = None
        self._title_saver.flush()
        self._admin_notes_saver.flush()
        await self.body.close()
        await self._title_saver.wait()
        await self._admin_notes_saver.wait()

    def _on_remote_note(self, note: Optional[Note]) -> None:
        self.note = note
        self.loaded = True
        if note is not None:
            if not self.title_focused:
                self.title = note.title
            if not self.admin_notes_focused:
                self.admin_notes = note.adminNotes or ""
        if self.on_note is not None:
            try:
                self.on_note(note)
            except Exception as e:
                logger.error(f"on_note callback failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Body
    # ------------------------------------------------------------------
    def edit_text(self, text: str, selection: Optional[Selection] = None) -> None:
        self.body.edit(text, selection)

    # ------------------------------------------------------------------
    # Title
    # ------------------------------------------------------------------
    def focus_title(self) -> None:
        self.title_focused = True

    def blur_title(self) -> None:
        self.title_focused = False

    def edit_title(self, title: str) -> None:
        self.title = title
        self._title_saver.trigger()

    async def _save_title(self) -> None:
        title = self.title
        stored = self.note.title if self.note is not None else ""
        if title == stored:
            return
        try:
            await update_note(self._store, self.note_id, {"title": title})
        except Exception as e:
            logger.error(f"Title save failed for note {self.note_id}: {e}")

    # ------------------------------------------------------------------
    # Admin notes
    # ------------------------------------------------------------------
    def focus_admin_notes(self) -> None:
        self.admin_notes_focused = True

    def blur_admin_notes(self) -> None:
        self.admin_notes_focused = False

    def edit_admin_notes(self, text: str) -> None:
        self.admin_notes = text
        self._admin_notes_saver.trigger()

    async def _save_admin_notes(self) -> None:
        text = self.admin_notes
        stored = (self.note.adminNotes or "") if self.note is not None else ""
        if text == stored:
            return
        try:
            await update_note(self._store, self.note_id, {"adminNotes": text})
        except Exception as e:
            logger.error(f"Admin notes save failed for note {self.note_id}: {e}")
