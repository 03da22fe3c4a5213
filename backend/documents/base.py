"""
Abstract document store.

Defines the contract every document backend implements: path-addressed
CRUD, one-shot queries, and realtime subscriptions that push the full
matching result set whenever something under the watched path changes.

Paths follow a collection/document alternation:
    notes                      → collection
    notes/<noteId>             → document
    notes/<noteId>/blocks      → sub-collection
    notes/<noteId>/blocks/<id> → document

Documents are plain dicts. Reads always include an "id" key holding the
document's id within its collection.

Typical usage:
    store = MemoryDocumentStore()
    note_id = await store.create_document("notes", {"title": "Session 1"})
    sub = await store.subscribe_collection("notes", lambda docs: print(len(docs)))
    ...
    sub.cancel()
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

# (field, op, value); supported ops: "==" and "array-contains"
WhereClause = Tuple[str, str, Any]
DocCallback = Callable[[Optional[Dict[str, Any]]], None]
DocsCallback = Callable[[List[Dict[str, Any]]], None]
ErrorCallback = Callable[[Exception], None]

SUPPORTED_OPS = ("==", "array-contains")


class _ServerTimestamp:
    """Sentinel replaced by the store's clock at write time."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


class DocumentNotFoundError(LookupError):
    """Raised by update_document when the target document does not exist."""


def generate_id() -> str:
    """Generate a 24-character hex document id."""
    return uuid.uuid4().hex[:24]


def split_document_path(path: str) -> Tuple[str, str]:
    """Split 'a/b/c/d' into ('a/b/c', 'd').

    Raises:
        ValueError: If the path does not address a document.
    """
    parts = [p for p in path.strip("/").split("/") if p]
    if len(parts) < 2 or len(parts) % 2 != 0:
        raise ValueError(f"Not a document path: {path!r}")
    return "/".join(parts[:-1]), parts[-1]


def normalize_collection_path(path: str) -> str:
    """Strip slashes and verify the path addresses a collection."""
    parts = [p for p in path.strip("/").split("/") if p]
    if not parts or len(parts) % 2 != 1:
        raise ValueError(f"Not a collection path: {path!r}")
    return "/".join(parts)


def matches_where(doc: Dict[str, Any], where: Optional[Sequence[WhereClause]]) -> bool:
    """Check a document against a list of where clauses (in-memory)."""
    for field, op, value in where or ():
        if op == "==":
            if doc.get(field) != value:
                return False
        elif op == "array-contains":
            arr = doc.get(field)
            if not isinstance(arr, list) or value not in arr:
                return False
        else:
            raise ValueError(f"Unsupported query operator: {op}")
    return True


def validate_where(where: Optional[Sequence[WhereClause]]) -> None:
    for clause in where or ():
        if len(clause) != 3 or clause[1] not in SUPPORTED_OPS:
            raise ValueError(f"Unsupported where clause: {clause!r}")


class Subscription:
    """Cancellable handle returned by the subscribe_* methods.

    Calling the handle is the same as calling cancel(), so it can be
    passed around wherever a plain unsubscribe function is expected.
    """

    def __init__(self, cancel_fn: Callable[[], None]):
        self._cancel_fn = cancel_fn
        self.active = True

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self._cancel_fn()

    def __call__(self) -> None:
        self.cancel()


@dataclass
class _CollectionListener:
    path: str
    on_data: DocsCallback
    where: Optional[List[WhereClause]] = None
    order_by: Optional[str] = None
    on_error: Optional[ErrorCallback] = None


@dataclass
class _DocumentListener:
    path: str
    on_data: DocCallback
    on_error: Optional[ErrorCallback] = None


class DocumentStore(ABC):
    """
    Abstract base class for document backends.

    Subclasses implement the storage primitives; this class owns the
    listener registry and fans out change notifications. After every
    successful write a subclass calls _publish() so that collection and
    document listeners on the touched path receive a fresh snapshot.

    Listener callbacks run synchronously inside the writer's task, after
    the write has been applied. A callback that raises is logged and
    skipped; it never fails the write.
    """

    backend_name: str = "base"

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._collection_listeners: Dict[str, List[_CollectionListener]] = {}
        self._document_listeners: Dict[str, List[_DocumentListener]] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def connect(self) -> None:
        """Open underlying resources. No-op by default."""

    async def close(self) -> None:
        """Release underlying resources. No-op by default."""

    async def ping(self) -> bool:
        """Readiness probe hook."""
        return True

    # ------------------------------------------------------------------
    # Storage primitives
    # ------------------------------------------------------------------
    @abstractmethod
    async def create_document(self, collection_path: str, fields: Dict[str, Any]) -> str:
        """Create a document with a generated id and return the id."""

    @abstractmethod
    async def update_document(self, doc_path: str, fields: Dict[str, Any]) -> None:
        """Merge fields into an existing document.

        Raises:
            DocumentNotFoundError: If the document does not exist.
        """

    @abstractmethod
    async def set_document(self, doc_path: str, fields: Dict[str, Any],
                           merge: bool = False) -> None:
        """Create or overwrite a document at a known path."""

    @abstractmethod
    async def delete_document(self, doc_path: str) -> None:
        """Delete a document. Deleting a missing document is a no-op."""

    @abstractmethod
    async def get_document(self, doc_path: str) -> Optional[Dict[str, Any]]:
        """Read a single document, or None if it does not exist."""

    @abstractmethod
    async def query(self, collection_path: str,
                    where: Optional[Sequence[WhereClause]] = None,
                    order_by: Optional[str] = None) -> List[Dict[str, Any]]:
        """Run a one-shot query against a collection.

        Results are in insertion order unless order_by names a field,
        in which case they are sorted ascending by that field (missing
        values first, ties kept in insertion order).
        """

    async def query_equals(self, collection_path: str, field: str,
                           value: Any) -> List[Dict[str, Any]]:
        """One-shot equality query on a single field."""
        return await self.query(collection_path, [(field, "==", value)])

    # ------------------------------------------------------------------
    # Realtime subscriptions
    # ------------------------------------------------------------------
    async def subscribe_collection(
        self,
        collection_path: str,
        on_data: DocsCallback,
        where: Optional[Sequence[WhereClause]] = None,
        order_by: Optional[str] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """Watch a collection.

        The current result set is pushed before this coroutine returns,
        then again after every write under the collection.
        """
        path = normalize_collection_path(collection_path)
        validate_where(where)
        listener = _CollectionListener(
            path=path,
            on_data=on_data,
            where=list(where) if where else None,
            order_by=order_by,
            on_error=on_error,
        )
        self._collection_listeners.setdefault(path, []).append(listener)

        def _cancel() -> None:
            listeners = self._collection_listeners.get(path, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._collection_listeners.pop(path, None)

        subscription = Subscription(_cancel)
        await self._push_collection(listener)
        return subscription

    async def subscribe_document(
        self,
        doc_path: str,
        on_data: DocCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """Watch a single document; pushes None while it does not exist."""
        collection, doc_id = split_document_path(doc_path)
        path = f"{collection}/{doc_id}"
        listener = _DocumentListener(path=path, on_data=on_data, on_error=on_error)
        self._document_listeners.setdefault(path, []).append(listener)

        def _cancel() -> None:
            listeners = self._document_listeners.get(path, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._document_listeners.pop(path, None)

        subscription = Subscription(_cancel)
        await self._push_document(listener)
        return subscription

    async def _publish(self, collection_path: str, doc_id: str) -> None:
        """Notify listeners after a write to collection_path/doc_id."""
        for listener in list(self._collection_listeners.get(collection_path, [])):
            await self._push_collection(listener)
        for listener in list(self._document_listeners.get(f"{collection_path}/{doc_id}", [])):
            await self._push_document(listener)

    async def _push_collection(self, listener: _CollectionListener) -> None:
        try:
            docs = await self.query(listener.path, listener.where, listener.order_by)
        except Exception as e:
            self._report_error(listener.on_error, listener.path, e)
            return
        try:
            listener.on_data(docs)
        except Exception as e:
            logger.error(f"Subscriber callback failed for {listener.path}: {e}", exc_info=True)

    async def _push_document(self, listener: _DocumentListener) -> None:
        try:
            doc = await self.get_document(listener.path)
        except Exception as e:
            self._report_error(listener.on_error, listener.path, e)
            return
        try:
            listener.on_data(doc)
        except Exception as e:
            logger.error(f"Subscriber callback failed for {listener.path}: {e}", exc_info=True)

    @staticmethod
    def _report_error(on_error: Optional[ErrorCallback], path: str, error: Exception) -> None:
        if on_error is None:
            logger.error(f"Subscription error on {path}: {error}")
            return
        try:
            on_error(error)
        except Exception as e:
            logger.error(f"Subscription error handler failed for {path}: {e}", exc_info=True)

    def listener_count(self, path: str) -> int:
        """Number of active listeners on a collection or document path."""
        path = path.strip("/")
        return len(self._collection_listeners.get(path, [])) + len(
            self._document_listeners.get(path, [])
        )

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------
    def _resolve_fields(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Replace SERVER_TIMESTAMP sentinels with the store clock."""
        now = None
        resolved: Dict[str, Any] = {}
        for key, value in fields.items():
            if key == "id":
                continue  # ids live in the path, not in the document body
            if value is SERVER_TIMESTAMP:
                if now is None:
                    now = self._clock()
                value = now
            resolved[key] = value
        return resolved
