from datetime import datetime, timezone

import pytest

from documents.base import SERVER_TIMESTAMP, DocumentNotFoundError
from documents.memory_store import MemoryDocumentStore
from documents.sqlite_store import SQLiteDocumentStore

FIXED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "sqlite"])
async def doc_store(request, tmp_path):
    if request.param == "memory":
        s = MemoryDocumentStore(clock=lambda: FIXED)
    else:
        s = SQLiteDocumentStore(str(tmp_path / "docs.db"), clock=lambda: FIXED)
    await s.connect()
    yield s
    await s.close()


async def test_create_get_update_delete(doc_store):
    doc_id = await doc_store.create_document("notes", {"title": "A", "createdAt": SERVER_TIMESTAMP})
    doc = await doc_store.get_document(f"notes/{doc_id}")
    assert doc["id"] == doc_id
    assert doc["title"] == "A"
    assert doc["createdAt"] == FIXED

    await doc_store.update_document(f"notes/{doc_id}", {"title": "B"})
    assert (await doc_store.get_document(f"notes/{doc_id}"))["title"] == "B"

    await doc_store.delete_document(f"notes/{doc_id}")
    assert await doc_store.get_document(f"notes/{doc_id}") is None
    await doc_store.delete_document(f"notes/{doc_id}")  # no-op


async def test_update_missing_raises(doc_store):
    with pytest.raises(DocumentNotFoundError):
        await doc_store.update_document("notes/nope", {"title": "x"})


async def test_set_document_merge(doc_store):
    await doc_store.set_document("userPermissions/a", {"email": "a@example.com", "role": "viewer"})
    await doc_store.set_document("userPermissions/a", {"role": "editor"}, merge=True)
    doc = await doc_store.get_document("userPermissions/a")
    assert doc["email"] == "a@example.com" and doc["role"] == "editor"

    await doc_store.set_document("userPermissions/a", {"role": "admin"})
    assert "email" not in await doc_store.get_document("userPermissions/a")


async def test_query_where_and_order(doc_store):
    await doc_store.create_document("notes/n1/blocks", {"index": 2, "text": "c"})
    await doc_store.create_document("notes/n1/blocks", {"index": 0, "text": "a"})
    await doc_store.create_document("notes/n1/blocks", {"index": 1, "text": "b"})
    await doc_store.create_document("notes/n2/blocks", {"index": 0, "text": "other"})

    ordered = await doc_store.query("notes/n1/blocks", order_by="index")
    assert [d["text"] for d in ordered] == ["a", "b", "c"]

    unordered = await doc_store.query("notes/n1/blocks")
    assert [d["text"] for d in unordered] == ["c", "a", "b"]


async def test_query_operators(doc_store):
    a = await doc_store.create_document("notes", {"title": "A", "tags": ["npc", "ally"], "deleted": False, "parentId": None})
    b = await doc_store.create_document("notes", {"title": "B", "tags": ["place"], "deleted": True, "parentId": a})

    assert [d["id"] for d in await doc_store.query("notes", [("tags", "array-contains", "npc")])] == [a]
    assert [d["id"] for d in await doc_store.query_equals("notes", "deleted", True)] == [b]
    assert [d["id"] for d in await doc_store.query_equals("notes", "parentId", a)] == [b]
    assert [d["id"] for d in await doc_store.query_equals("notes", "parentId", None)] == [a]

    with pytest.raises(ValueError):
        await doc_store.query("notes", [("title", ">", "A")])


async def test_collection_subscription_pushes_on_change(doc_store):
    pushes = []
    sub = await doc_store.subscribe_collection("notes", pushes.append, where=[("deleted", "==", False)])
    assert pushes == [[]]

    doc_id = await doc_store.create_document("notes", {"title": "A", "deleted": False})
    assert [d["id"] for d in pushes[-1]] == [doc_id]

    await doc_store.update_document(f"notes/{doc_id}", {"deleted": True})
    assert pushes[-1] == []

    sub.cancel()
    await doc_store.create_document("notes", {"title": "B", "deleted": False})
    assert len(pushes) == 3


async def test_document_subscription_and_callback_errors(doc_store):
    seen = []
    await doc_store.subscribe_document("notes/x", seen.append)

    def explode(doc):
        raise RuntimeError("subscriber bug")

    await doc_store.subscribe_document("notes/x", explode)
    await doc_store.set_document("notes/x", {"title": "X"})
    assert seen[0] is None
    assert seen[-1]["title"] == "X"
    assert doc_store.listener_count("notes/x") == 2


async def test_sqlite_persists_across_connections(tmp_path):
    path = str(tmp_path / "persist.db")
    first = SQLiteDocumentStore(path)
    await first.connect()
    doc_id = await first.create_document("notes", {"title": "Durable"})
    await first.close()

    second = SQLiteDocumentStore(path)
    await second.connect()
    assert (await second.get_document(f"notes/{doc_id}"))["title"] == "Durable"
    assert await second.ping()
    await second.close()
