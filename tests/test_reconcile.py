import pytest

from journal.notes import create_note, get_blocks
from journal.reconcile import (
    CREATE,
    DELETE,
    UPDATE,
    join_blocks,
    plan_block_writes,
    save_text,
)
from models.note import Block


def blocks(*texts):
    return [Block(id=f"b{i}", index=i, text=t) for i, t in enumerate(texts)]


def ops(writes):
    return [(w.op, w.index) for w in writes]


def test_join_blocks_orders_by_index():
    shuffled = [Block(id="b", index=1, text="two"), Block(id="a", index=0, text="one")]
    assert join_blocks(shuffled) == "one\ntwo"
    assert join_blocks([]) == ""


def test_plan_for_empty_note():
    assert ops(plan_block_writes("a\nb", [])) == [(CREATE, 0), (CREATE, 1)]


def test_plan_is_empty_when_in_sync():
    assert plan_block_writes("a\nb\nc", blocks("a", "b", "c")) == []


def test_plan_updates_changed_line_only():
    writes = plan_block_writes("a\nB\nc", blocks("a", "b", "c"))
    assert ops(writes) == [(UPDATE, 1)]
    assert writes[0].block_id == "b1"
    assert writes[0].text == "B"


def test_plan_shrink_deletes_surplus():
    writes = plan_block_writes("a", blocks("a", "b", "c"))
    assert ops(writes) == [(DELETE, 1), (DELETE, 2)]


def test_plan_skips_lone_trailing_empty_line():
    # "a\n" splits into ["a", ""]; the empty tail gets no block of its own
    assert plan_block_writes("a\n", blocks("a")) == []


def test_plan_creates_interior_empty_lines():
    assert ops(plan_block_writes("a\n\nc", blocks("a"))) == [(CREATE, 1), (CREATE, 2)]


def test_plan_repairs_wrong_index():
    stale = [Block(id="x", index=3, text="a")]
    assert ops(plan_block_writes("a", stale)) == [(UPDATE, 0)]


async def test_save_text_round_trip(store):
    note_id = await create_note(store, {"title": "Log", "createdBy": "u"})

    await save_text(store, note_id, "one\ntwo\nthree", [], "u")
    stored = await get_blocks(store, note_id)
    assert join_blocks(stored) == "one\ntwo\nthree"
    assert all(b.updatedBy == "u" for b in stored)

    writes = await save_text(store, note_id, "one", stored, "u")
    assert ops(writes) == [(DELETE, 1), (DELETE, 2)]
    assert join_blocks(await get_blocks(store, note_id)) == "one"

    # A second pass against fresh blocks is a no-op
    assert await save_text(store, note_id, "one", await get_blocks(store, note_id)) == []


async def test_save_text_raises_after_partial_failure(store):
    note_id = await create_note(store, {"title": "Log", "createdBy": "u"})
    store.fail_writes = RuntimeError("backend down")
    with pytest.raises(RuntimeError):
        await save_text(store, note_id, "x\ny", [])
