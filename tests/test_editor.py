import asyncio

from documents.memory_store import MemoryDocumentStore
from journal.editor import BlockEditor, EditorState, NoteEditor, Selection
from journal.notes import (
    create_block,
    create_note,
    create_note_with_block,
    get_blocks,
    get_note,
    update_block,
    update_note,
)
from journal.reconcile import join_blocks

FAST = dict(debounce=0.02, grace=0.01, blur_release=0.01)


async def open_editor(store, note_id, **kwargs):
    options = {**FAST, **kwargs}
    editor = BlockEditor(store, note_id, "ana@example.com", **options)
    await editor.open()
    return editor


async def settle(editor, delay=0.06):
    await asyncio.sleep(delay)
    await editor.wait_saved()
    await asyncio.sleep(0.03)


async def stored_text(store, note_id):
    return join_blocks(await get_blocks(store, note_id))


async def test_first_load_adopts_remote_text(store):
    note_id = await create_note_with_block(store, {"title": "N", "createdBy": "u"}, "hello")
    editor = await open_editor(store, note_id)
    assert editor.loaded
    assert editor.text == "hello"
    assert editor.state == EditorState.IDLE


async def test_edit_saves_after_quiet_period(store):
    note_id = await create_note(store, {"title": "N", "createdBy": "u"})
    editor = await open_editor(store, note_id)
    before = store.write_count

    editor.edit("a")
    editor.edit("ab")
    editor.edit("ab\ncd")
    assert editor.state == EditorState.EDITING
    assert store.write_count == before

    await settle(editor)
    assert await stored_text(store, note_id) == "ab\ncd"
    assert store.write_count == before + 2  # one pass, two creates
    assert editor.state == EditorState.IDLE


async def test_remote_push_dropped_while_typing(store):
    note_id = await create_note_with_block(store, {"title": "N", "createdBy": "u"}, "base")
    editor = await open_editor(store, note_id)
    block_id = editor.blocks[0].id

    editor.edit("local")
    await update_block(store, note_id, block_id, {"text": "remote"})
    assert editor.text == "local"
    assert editor.dropped_pushes == 1

    await settle(editor)
    # last local writer wins
    assert await stored_text(store, note_id) == "local"


async def test_remote_push_adopted_when_idle(store):
    note_id = await create_note_with_block(store, {"title": "N", "createdBy": "u"}, "hello world")
    seen = []
    editor = await open_editor(store, note_id, on_text=seen.append)
    editor.selection = Selection(11, 11)

    await update_block(store, note_id, editor.blocks[0].id, {"text": "hi"})
    assert editor.text == "hi"
    assert editor.selection == Selection(2, 2)
    assert seen[-1] == "hi"


async def test_empty_buffer_always_adopts(store):
    note_id = await create_note(store, {"title": "N", "createdBy": "u"})
    editor = await open_editor(store, note_id)
    editor.focus()
    assert editor.state == EditorState.EDITING

    await create_block(store, note_id, 0, "arrived")
    assert editor.text == "arrived"


async def test_save_failure_keeps_typing_state(store):
    note_id = await create_note(store, {"title": "N", "createdBy": "u"})
    editor = await open_editor(store, note_id)

    store.fail_writes = RuntimeError("offline")
    editor.edit("lost?")
    await settle(editor)
    assert editor.state == EditorState.EDITING
    assert isinstance(editor.last_error, RuntimeError)
    assert editor.text == "lost?"

    store.fail_writes = None
    editor.edit("lost? no")
    await settle(editor)
    assert editor.last_error is None
    assert await stored_text(store, note_id) == "lost? no"


class GatedStore(MemoryDocumentStore):
    """Holds block creates until the gate opens."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def create_document(self, collection_path, fields):
        if collection_path.endswith("/blocks"):
            await self.gate.wait()
        return await super().create_document(collection_path, fields)


async def test_edit_during_save():
    store = GatedStore()
    note_id = await create_note(store, {"title": "N", "createdBy": "u"})
    editor = await open_editor(store, note_id, debounce=0.1)

    editor.edit("a")
    await asyncio.sleep(0.15)
    assert editor.state == EditorState.SAVING

    editor.edit("ab")
    assert editor.state == EditorState.SAVING_WHILE_EDITING

    store.gate.set()
    await asyncio.sleep(0.02)
    assert editor.state == EditorState.EDITING

    await settle(editor, delay=0.15)
    assert await stored_text(store, note_id) == "ab"
    assert editor.state == EditorState.IDLE


async def test_blur_releases_typing(store):
    note_id = await create_note(store, {"title": "N", "createdBy": "u"})
    editor = await open_editor(store, note_id)
    editor.focus()
    editor.blur()
    await asyncio.sleep(0.03)
    assert editor.state == EditorState.IDLE


async def test_close_flushes_pending_save(store):
    note_id = await create_note(store, {"title": "N", "createdBy": "u"})
    editor = BlockEditor(store, note_id, "u", debounce=10)
    await editor.open()
    editor.edit("bye")
    await editor.close()
    assert await stored_text(store, note_id) == "bye"
    assert store.listener_count(f"notes/{note_id}/blocks") == 0


async def test_note_editor_title_and_admin_notes(store):
    note_id = await create_note(store, {"title": "Old", "createdBy": "u"})
    editor = NoteEditor(store, note_id, "u", "admin", **FAST)
    await editor.open()
    assert editor.title == "Old"
    assert editor.can_edit

    editor.edit_title("New Title")
    editor.edit_admin_notes("secret")
    await asyncio.sleep(0.06)
    await editor.close()

    note = await get_note(store, note_id)
    assert note.title == "New Title"
    assert note.titleLower == "new title"
    assert note.adminNotes == "secret"


async def test_note_editor_skips_unchanged_title(store):
    note_id = await create_note(store, {"title": "Same", "createdBy": "u"})
    editor = NoteEditor(store, note_id, "u", "editor", **FAST)
    await editor.open()
    before = store.write_count
    editor.edit_title("Same")
    await asyncio.sleep(0.06)
    await editor.close()
    assert store.write_count == before


async def test_note_editor_ignores_remote_title_while_focused(store):
    note_id = await create_note(store, {"title": "Mine", "createdBy": "u"})
    editor = NoteEditor(store, note_id, "u", "editor", **FAST)
    await editor.open()

    editor.focus_title()
    await update_note(store, note_id, {"title": "Theirs"})
    assert editor.title == "Mine"
    assert editor.note.title == "Theirs"

    editor.blur_title()
    await update_note(store, note_id, {"title": "Theirs again"})
    assert editor.title == "Theirs again"
    await editor.close()
