"""
SQLite document store.

Persists every collection in a single aiosqlite-managed table:
  - collection TEXT  (full collection path, e.g. "notes/abc/blocks")
  - id TEXT          (document id within the collection)
  - data TEXT        (the document body as JSON)

Queries are translated to json_extract() expressions; insertion order is
the table's rowid order, which upserts preserve. Realtime listeners are
in-process: after each committed write the base class re-runs every
watching query and pushes the fresh result set.

Usage:
    store = SQLiteDocumentStore("data/journal.db")
    await store.connect()
    note_id = await store.create_document("notes", {"title": "Session 1"})
"""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiosqlite

from documents.base import (
    DocumentNotFoundError,
    DocumentStore,
    WhereClause,
    generate_id,
    normalize_collection_path,
    split_document_path,
    validate_where,
)

logger = logging.getLogger(__name__)

# Fields stored as ISO strings and turned back into datetimes on read
_DATE_FIELDS = ("createdAt", "updatedAt")


# ============================================================
# JSON (de)serialization
# ============================================================

def _serialize_value(val: Any) -> Any:
    """Serialize a Python value for JSON storage."""
    if isinstance(val, datetime):
        return val.isoformat()
    if isinstance(val, list):
        return [_serialize_value(v) for v in val]
    if isinstance(val, dict):
        return {k: _serialize_value(v) for k, v in val.items()}
    return val


def _deserialize_doc(doc_json: str) -> Dict[str, Any]:
    """Deserialize a JSON document, converting ISO dates back to datetime."""
    doc = json.loads(doc_json)
    for key in _DATE_FIELDS:
        if key in doc and doc[key] and isinstance(doc[key], str):
            try:
                doc[key] = datetime.fromisoformat(doc[key])
            except (ValueError, TypeError):
                pass
    return doc


# ============================================================
# Query translator: where clauses → SQL
# ============================================================

def _json_path(field: str) -> str:
    """Build a JSON path for a field, dropping anything but safe characters."""
    sanitized = re.sub(r"[^a-zA-Z0-9._\-]", "", field)
    return f"$.{sanitized}"


def _json_extract(field: str) -> str:
    return f"json_extract(data, '{_json_path(field)}')"


def _build_where(collection: str,
                 where: Optional[Sequence[WhereClause]]) -> Tuple[str, List[Any]]:
    """Translate where clauses into a SQL condition plus params.

    Returns:
        (clause, params); clause does NOT include the 'WHERE' keyword.
    """
    conditions = ["collection = ?"]
    params: List[Any] = [collection]

    for field, op, value in where or ():
        if op == "==":
            if value is None:
                conditions.append(f"{_json_extract(field)} IS NULL")
            elif isinstance(value, bool):
                # JSON true/false come back from json_extract as 1/0
                conditions.append(f"{_json_extract(field)} = ?")
                params.append(1 if value else 0)
            else:
                conditions.append(f"{_json_extract(field)} = ?")
                params.append(_serialize_value(value))
        elif op == "array-contains":
            conditions.append(
                f"EXISTS (SELECT 1 FROM json_each(data, '{_json_path(field)}') "
                f"WHERE json_each.value = ?)"
            )
            params.append(_serialize_value(value))

    return " AND ".join(conditions), params


class SQLiteDocumentStore(DocumentStore):
    """aiosqlite-backed DocumentStore with a single shared connection."""

    backend_name = "sqlite"

    def __init__(self, db_path: str, clock=None):
        super().__init__(clock=clock)
        self._db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Open the SQLite connection and create the documents table."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path, timeout=30.0)
        # WAL mode for better concurrent read/write performance
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA busy_timeout=5000")
        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                data TEXT NOT NULL,
                PRIMARY KEY (collection, id)
            )
        """)
        await self._conn.commit()
        logger.info(f"SQLite document store connected: {self._db_path}")

    async def close(self) -> None:
        """Close the SQLite connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("SQLite document store closed")

    def _get_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Document store not connected. Call connect() first.")
        return self._conn

    async def _read_one(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        conn = self._get_conn()
        async with conn.execute(
            "SELECT data FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return _deserialize_doc(row[0])

    async def _write(self, collection: str, doc_id: str, doc: Dict[str, Any]) -> None:
        conn = self._get_conn()
        await conn.execute(
            "INSERT INTO documents (collection, id, data) VALUES (?, ?, ?) "
            "ON CONFLICT(collection, id) DO UPDATE SET data = excluded.data",
            (collection, doc_id, json.dumps(_serialize_value(doc), default=str)),
        )
        await conn.commit()

    async def create_document(self, collection_path: str, fields: Dict[str, Any]) -> str:
        collection = normalize_collection_path(collection_path)
        doc_id = generate_id()
        await self._write(collection, doc_id, self._resolve_fields(fields))
        await self._publish(collection, doc_id)
        return doc_id

    async def update_document(self, doc_path: str, fields: Dict[str, Any]) -> None:
        collection, doc_id = split_document_path(doc_path)
        existing = await self._read_one(collection, doc_id)
        if existing is None:
            raise DocumentNotFoundError(doc_path)
        existing.update(self._resolve_fields(fields))
        await self._write(collection, doc_id, existing)
        await self._publish(collection, doc_id)

    async def set_document(self, doc_path: str, fields: Dict[str, Any],
                           merge: bool = False) -> None:
        collection, doc_id = split_document_path(doc_path)
        doc = self._resolve_fields(fields)
        if merge:
            existing = await self._read_one(collection, doc_id)
            if existing is not None:
                existing.update(doc)
                doc = existing
        await self._write(collection, doc_id, doc)
        await self._publish(collection, doc_id)

    async def delete_document(self, doc_path: str) -> None:
        collection, doc_id = split_document_path(doc_path)
        conn = self._get_conn()
        cursor = await conn.execute(
            "DELETE FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
        )
        await conn.commit()
        if cursor.rowcount:
            await self._publish(collection, doc_id)

    async def get_document(self, doc_path: str) -> Optional[Dict[str, Any]]:
        collection, doc_id = split_document_path(doc_path)
        doc = await self._read_one(collection, doc_id)
        if doc is None:
            return None
        doc["id"] = doc_id
        return doc

    async def query(self, collection_path: str,
                    where: Optional[Sequence[WhereClause]] = None,
                    order_by: Optional[str] = None) -> List[Dict[str, Any]]:
        collection = normalize_collection_path(collection_path)
        validate_where(where)
        clause, params = _build_where(collection, where)
        order = "ORDER BY rowid"
        if order_by:
            # NULLs sort first in SQLite ASC, matching the memory store
            order = f"ORDER BY {_json_extract(order_by)} ASC, rowid"
        sql = f"SELECT id, data FROM documents WHERE {clause} {order}"

        results = []
        conn = self._get_conn()
        async with conn.execute(sql, params) as cursor:
            async for row in cursor:
                doc = _deserialize_doc(row[1])
                doc["id"] = row[0]
                results.append(doc)
        return results

    async def ping(self) -> bool:
        """Verify the connection is alive."""
        conn = self._get_conn()
        await conn.execute("SELECT 1")
        return True
