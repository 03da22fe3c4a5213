import asyncio
import json

from conftest import ADMIN, EDITOR, STRANGER, VIEWER, auth

from journal.notes import create_note, get_blocks, get_note
from routers.notes import block_events


async def create(client, email=EDITOR, **fields):
    r = await client.post("/api/notes", json=fields, headers=auth(email))
    assert r.status_code == 200, r.text
    return r.json()


async def test_requires_bearer(client):
    r = await client.get("/api/notes")
    assert r.status_code == 401

    r = await client.get("/api/notes", headers=auth(STRANGER))
    assert r.status_code == 403


async def test_create_and_read_note(client, store):
    note = await create(client, title="Session 1", initialText="We met in a tavern", tags=["session"])
    assert note["title"] == "Session 1"
    assert note["titleLower"] == "session 1"
    assert note["createdBy"] == EDITOR
    assert note["visibility"] == "party"
    assert "adminNotes" not in note

    r = await client.get(f"/api/notes/{note['id']}", headers=auth(VIEWER))
    assert r.status_code == 200
    assert r.json()["tags"] == ["session"]

    r = await client.get(f"/api/notes/{note['id']}/blocks", headers=auth(VIEWER))
    assert r.json()["text"] == "We met in a tavern"
    assert [b["index"] for b in r.json()["blocks"]] == [0]


async def test_viewer_cannot_create_or_edit(client):
    r = await client.post("/api/notes", json={"title": "Nope"}, headers=auth(VIEWER))
    assert r.status_code == 403

    note = await create(client, title="Shared")
    r = await client.patch(f"/api/notes/{note['id']}", json={"title": "Mine now"}, headers=auth(VIEWER))
    assert r.status_code == 403


async def test_create_validates_visibility_and_parent(client):
    r = await client.post("/api/notes", json={"title": "X", "visibility": "secret"}, headers=auth(EDITOR))
    assert r.status_code == 400

    r = await client.post("/api/notes", json={"title": "X", "parentId": "missing"}, headers=auth(EDITOR))
    assert r.status_code == 400
    assert r.json()["detail"] == "Parent note not found"


async def test_missing_note_is_404(client):
    r = await client.get("/api/notes/nope", headers=auth(EDITOR))
    assert r.status_code == 404


async def test_visibility_filters_reads(client):
    secret = await create(client, ADMIN, title="Villain plans", visibility="dm-only")
    personal = await create(client, EDITOR, title="Ana diary", visibility=f"personal:{EDITOR}")
    shared = await create(client, EDITOR, title="Pact", visibility=f"shared:{EDITOR},{VIEWER}")
    party = await create(client, EDITOR, title="Map")

    listed = {n["id"] for n in (await client.get("/api/notes", headers=auth(VIEWER))).json()}
    assert listed == {shared["id"], party["id"]}

    assert (await client.get(f"/api/notes/{secret['id']}", headers=auth(EDITOR))).status_code == 403
    assert (await client.get(f"/api/notes/{secret['id']}", headers=auth(ADMIN))).status_code == 200
    assert (await client.get(f"/api/notes/{personal['id']}", headers=auth(VIEWER))).status_code == 403


async def test_tree_is_sorted_and_filtered(client):
    folder = await create(client, title="Chapter 10", noteType="folder")
    await create(client, title="Chapter 2")
    await create(client, title="Scene 1", parentId=folder["id"])

    tree = (await client.get("/api/notes/tree", headers=auth(VIEWER))).json()
    assert [n["title"] for n in tree] == ["Chapter 2", "Chapter 10"]
    assert tree[1]["noteType"] == "folder"
    assert [c["title"] for c in tree[1]["children"]] == ["Scene 1"]

    filtered = (await client.get("/api/notes/tree", params={"q": "scene"}, headers=auth(VIEWER))).json()
    assert [n["title"] for n in filtered] == ["Chapter 10"]
    assert [c["title"] for c in filtered[0]["children"]] == ["Scene 1"]


async def test_lookup_by_title_ignores_case(client):
    note = await create(client, title="Castle Ravenloft")
    r = await client.get("/api/notes/lookup", params={"title": "castle ravenloft"}, headers=auth(VIEWER))
    assert r.json() == {"id": note["id"]}

    r = await client.get("/api/notes/lookup", params={"title": "Barovia"}, headers=auth(VIEWER))
    assert r.status_code == 404


async def test_patch_updates_fields(client):
    note = await create(client, title="Old")
    r = await client.patch(f"/api/notes/{note['id']}", json={"title": "New", "tags": ["npc"]}, headers=auth(EDITOR))
    assert r.status_code == 200
    assert r.json()["titleLower"] == "new"
    assert r.json()["tags"] == ["npc"]

    r = await client.patch(f"/api/notes/{note['id']}", json={}, headers=auth(EDITOR))
    assert r.status_code == 400

    r = await client.patch(f"/api/notes/{note['id']}", json={"visibility": "everyone"}, headers=auth(EDITOR))
    assert r.status_code == 400


async def test_admin_notes_are_admin_only(client):
    note = await create(client, title="Tavern")
    r = await client.patch(f"/api/notes/{note['id']}", json={"adminNotes": "The barkeep is a spy"}, headers=auth(EDITOR))
    assert r.status_code == 403

    r = await client.patch(f"/api/notes/{note['id']}", json={"adminNotes": "The barkeep is a spy"}, headers=auth(ADMIN))
    assert r.json()["adminNotes"] == "The barkeep is a spy"

    r = await client.get(f"/api/notes/{note['id']}", headers=auth(EDITOR))
    assert "adminNotes" not in r.json()


async def test_soft_delete_and_restore_subtree(client, store):
    root = await create(client, title="Root", noteType="folder")
    child = await create(client, title="Child", parentId=root["id"])

    r = await client.delete(f"/api/notes/{root['id']}", headers=auth(EDITOR))
    assert r.json() == {"success": True, "deleted": 2}
    assert (await client.get("/api/notes", headers=auth(EDITOR))).json() == []
    assert (await get_note(store, child["id"])).deleted is True

    r = await client.post(f"/api/notes/{root['id']}/restore", headers=auth(EDITOR))
    assert r.json() == {"success": True, "restored": 2}
    assert len((await client.get("/api/notes", headers=auth(EDITOR))).json()) == 2


async def test_reparent(client):
    a = await create(client, title="A", noteType="folder")
    b = await create(client, title="B", parentId=a["id"])
    c = await create(client, title="C")

    r = await client.put(f"/api/notes/{c['id']}/parent", json={"parentId": b["id"]}, headers=auth(EDITOR))
    assert r.json() == {"success": True, "parentId": b["id"]}

    r = await client.put(f"/api/notes/{a['id']}/parent", json={"parentId": c["id"]}, headers=auth(EDITOR))
    assert r.status_code == 400
    assert r.json()["detail"] == "Cannot move a note into itself or its descendants"

    r = await client.put(f"/api/notes/{a['id']}/parent", json={"parentId": "ghost"}, headers=auth(EDITOR))
    assert r.status_code == 400

    r = await client.put(f"/api/notes/{c['id']}/parent", json={"parentId": None}, headers=auth(EDITOR))
    assert r.json()["parentId"] is None


async def test_put_text_reconciles_blocks(client, store):
    note = await create(client, title="Log", initialText="one")

    r = await client.put(f"/api/notes/{note['id']}/text", json={"text": "one\ntwo\nthree"}, headers=auth(EDITOR))
    assert r.json()["writes"] == [{"op": "create", "index": 1}, {"op": "create", "index": 2}]

    r = await client.put(f"/api/notes/{note['id']}/text", json={"text": "one\ntwo\nthree"}, headers=auth(EDITOR))
    assert r.json()["writes"] == []

    r = await client.put(f"/api/notes/{note['id']}/text", json={"text": "uno"}, headers=auth(EDITOR))
    assert [w["op"] for w in r.json()["writes"]] == ["update", "delete", "delete"]

    blocks = await get_blocks(store, note["id"])
    assert [b.text for b in blocks] == ["uno"]
    assert blocks[0].updatedBy == EDITOR


async def test_put_text_failure_is_500(client, store):
    note = await create(client, title="Log")
    store.fail_writes = RuntimeError("quota")
    r = await client.put(f"/api/notes/{note['id']}/text", json={"text": "a\nb"}, headers=auth(EDITOR))
    assert r.status_code == 500


async def test_block_events_stream_pushes(store):
    note_id = await create_note(store, {"title": "Live", "createdBy": EDITOR})
    disconnected = False

    async def is_disconnected():
        return disconnected

    events = block_events(store, note_id, is_disconnected, keepalive=0.01)
    first = await events.__anext__()
    assert json.loads(first[len("data: "):]) == {"blocks": [], "text": ""}

    await store.create_document(f"notes/{note_id}/blocks", {"index": 0, "text": "hello"})
    frame = await events.__anext__()
    while frame.startswith(":"):
        frame = await events.__anext__()
    assert json.loads(frame[len("data: "):])["text"] == "hello"

    keepalive = await asyncio.wait_for(events.__anext__(), timeout=1)
    assert keepalive == ": keep-alive\n\n"

    disconnected = True
    await events.aclose()
    assert store.listener_count(f"notes/{note_id}/blocks") == 0


async def test_soft_deleted_note_is_gone_until_restored(client):
    note = await create(client, title="Ruins", initialText="rubble")
    await client.delete(f"/api/notes/{note['id']}", headers=auth(EDITOR))

    path = f"/api/notes/{note['id']}"
    assert (await client.get(path, headers=auth(EDITOR))).status_code == 404
    assert (await client.get(f"{path}/blocks", headers=auth(EDITOR))).status_code == 404
    assert (await client.get(f"{path}/blocks/stream", headers=auth(EDITOR))).status_code == 404
    assert (await client.patch(path, json={"title": "Rebuilt"}, headers=auth(EDITOR))).status_code == 404
    assert (await client.put(f"{path}/text", json={"text": "new"}, headers=auth(EDITOR))).status_code == 404
    assert (await client.delete(path, headers=auth(EDITOR))).status_code == 404
    r = await client.get("/api/notes/lookup", params={"title": "ruins"}, headers=auth(EDITOR))
    assert r.status_code == 404

    r = await client.post(f"{path}/restore", headers=auth(EDITOR))
    assert r.json() == {"success": True, "restored": 1}
    assert (await client.get(f"{path}/blocks", headers=auth(EDITOR))).json()["text"] == "rubble"
