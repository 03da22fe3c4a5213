"""
Text buffer ↔ line block reconciliation.

The editor works on one contiguous text buffer; the store keeps one
block per line so collaborators receive per-line updates. A save pass
diffs the buffer against the last-known block list position by position:

  - a block exists at i and its text or index differs → update it
  - no block at i but a line exists → create one (except a lone empty
    trailing line, so trailing newlines do not pile up empty blocks)
  - a block exists past the last line → delete it

There is no transaction across a pass: writes are issued concurrently and
a partial failure can leave gaps or duplicate indices until the next
successful pass.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from documents.base import DocumentStore
from journal.notes import create_block, delete_block, update_block
from models.note import Block

logger = logging.getLogger(__name__)

CREATE = "create"
UPDATE = "update"
DELETE = "delete"


@dataclass(frozen=True)
class BlockWrite:
    op: str  # create | update | delete
    index: int
    text: str = ""
    block_id: Optional[str] = None


def split_lines(text: str) -> List[str]:
    return text.split("\n")


def join_blocks(blocks: Sequence[Block]) -> str:
    """Rebuild the buffer from blocks in index order."""
    ordered = sorted(blocks, key=lambda b: b.index)
    return "\n".join(b.text for b in ordered)


def plan_block_writes(text: str, blocks: Sequence[Block]) -> List[BlockWrite]:
    """Compute the writes that make `blocks` match `text`.

    Blocks are matched by list position, the order the store delivered
    them in (ascending index). Running the plan against blocks that
    already match the buffer yields no writes.
    """
    lines = split_lines(text)
    writes: List[BlockWrite] = []

    for i, line in enumerate(lines):
        block = blocks[i] if i < len(blocks) else None
        if block is not None:
            if block.text != line or block.index != i:
                writes.append(BlockWrite(UPDATE, i, line, block.id))
        elif line or i < len(lines) - 1:
            writes.append(BlockWrite(CREATE, i, line))

    for i in range(len(lines), len(blocks)):
        block = blocks[i]
        if block.id:
            writes.append(BlockWrite(DELETE, i, block_id=block.id))

    return writes


async def apply_block_writes(
    store: DocumentStore,
    note_id: str,
    writes: Sequence[BlockWrite],
    updated_by: Optional[str] = None,
) -> None:
    """Issue all writes concurrently.

    Raises the first failure after every write has been attempted; the
    writes that succeeded are not rolled back.
    """
    ops = []
    for w in writes:
        if w.op == UPDATE:
            fields = {"text": w.text, "index": w.index}
            if updated_by:
                fields["updatedBy"] = updated_by
            ops.append(update_block(store, note_id, w.block_id, fields))
        elif w.op == CREATE:
            ops.append(create_block(store, note_id, w.index, w.text, updated_by))
        elif w.op == DELETE:
            ops.append(delete_block(store, note_id, w.block_id))

    results = await asyncio.gather(*ops, return_exceptions=True)
    errors = [r for r in results if isinstance(r, Exception)]
    if errors:
        logger.error(f"{len(errors)}/{len(ops)} block write(s) failed for note {note_id}")
        raise errors[0]


async def save_text(
    store: DocumentStore,
    note_id: str,
    text: str,
    blocks: Sequence[Block],
    updated_by: Optional[str] = None,
) -> List[BlockWrite]:
    """Run one reconciliation pass and return the writes issued."""
    writes = plan_block_writes(text, blocks)
    if writes:
        await apply_block_writes(store, note_id, writes, updated_by)
    return writes
