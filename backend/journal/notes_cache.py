"""
Shared realtime mirror of note summaries.

One NotesCache instance holds a single subscription to the notes
collection and fans every push out to all interested consumers (sidebar
tree, search, home page, SSE streams) so they do not each open their own
subscription.

The mirror is rebuilt wholesale on every push: cleared, then refilled
from the snapshot in backend order, skipping soft-deleted notes.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from documents.base import DocumentStore, Subscription
from journal.notes import NOTES_COLLECTION
from models.note import NoteInfo, NoteType

logger = logging.getLogger(__name__)

NotesCallback = Callable[[List[NoteInfo]], None]


class NotesCache:
    """
    Realtime mirror of all non-deleted notes.

    Constructed once per application (or per test) around a store; there
    is no module-level instance.

    Attributes:
        push_count: Number of backend pushes processed, for diagnostics.
    """

    def __init__(self, store: DocumentStore):
        self._store = store
        self._notes: Dict[str, NoteInfo] = {}
        self._subscribers: List[NotesCallback] = []
        self._subscription: Optional[Subscription] = None
        self._starting: Optional[asyncio.Future] = None
        self.push_count = 0

    @property
    def is_subscribed(self) -> bool:
        return self._subscription is not None

    async def subscribe(self, callback: NotesCallback) -> Subscription:
        """Register a consumer.

        The first consumer starts the backend subscription, whose initial
        push reaches it. Consumers arriving while that start is pending
        wait on the same start. Later consumers get the current snapshot
        right away when it is non-empty. Cancelling the returned handle
        removes the consumer; when the last one leaves the backend
        subscription is torn down and the mirror discarded.
        """
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)
            if not self._subscribers:
                self._stop()

        handle = Subscription(_unsubscribe)

        if self._subscription is None:
            if self._starting is None:
                self._starting = asyncio.ensure_future(self._start())
            try:
                await asyncio.shield(self._starting)
            except BaseException:
                # The caller never receives the handle, so drop the consumer here
                handle.cancel()
                raise
        elif self._notes:
            callback(self.get_all_notes())

        return handle

    async def _start(self) -> None:
        logger.info("Starting shared notes subscription")
        try:
            subscription = await self._store.subscribe_collection(
                NOTES_COLLECTION,
                self._on_snapshot,
                on_error=self._on_error,
            )
        finally:
            self._starting = None
        if not self._subscribers:
            # Everyone left while the initial snapshot was loading
            subscription.cancel()
            self._notes.clear()
            return
        self._subscription = subscription

    def _stop(self) -> None:
        if self._subscription is not None:
            logger.info("Stopping shared notes subscription")
            self._subscription.cancel()
            self._subscription = None
        self._notes.clear()

    def _on_snapshot(self, docs: List[dict]) -> None:
        self.push_count += 1
        logger.debug(f"Received {len(docs)} notes from the store")

        self._notes.clear()
        for doc in docs:
            if doc.get("deleted"):
                continue  # soft-deleted
            note_type = doc.get("noteType") or "note"
            self._notes[doc["id"]] = NoteInfo(
                id=doc["id"],
                title=doc.get("title") or "",
                parentId=doc.get("parentId"),
                noteType=note_type if note_type in (t.value for t in NoteType) else NoteType.NOTE,
                updatedAt=doc.get("updatedAt"),
                createdBy=doc.get("createdBy") or "",
                visibility=doc.get("visibility") or "party",
            )

        notes = self.get_all_notes()
        for callback in list(self._subscribers):
            try:
                callback(notes)
            except Exception as e:
                logger.error(f"Notes cache subscriber failed: {e}", exc_info=True)

    def _on_error(self, error: Exception) -> None:
        logger.error(f"Notes subscription error: {error}")

    # ------------------------------------------------------------------
    # Synchronous reads, never touch the store
    # ------------------------------------------------------------------
    def get_note_info(self, note_id: str) -> Optional[NoteInfo]:
        return self._notes.get(note_id)

    def get_all_notes(self) -> List[NoteInfo]:
        return list(self._notes.values())

    def has_notes(self) -> bool:
        return bool(self._notes)

    def subscriber_count(self) -> int:
        return len(self._subscribers)
