"""
Note tree building for the sidebar.

Turns the flat note list into a forest ordered by a natural,
number-aware comparator ("Session 2" before "Session 10"), validates
drag-to-reparent drops, and filters the forest for the search box.

All functions here are pure and synchronous. Notes may be NoteInfo/Note
models or plain dicts; only id, title and parentId are read.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

_RUN_RE = re.compile(r"\d+|\D+")


@dataclass
class TreeNode:
    id: str
    note: Any
    children: List["TreeNode"] = field(default_factory=list)

    @property
    def title(self) -> str:
        return _get(self.note, "title") or ""


def _get(note: Any, name: str) -> Any:
    if isinstance(note, Mapping):
        return note.get(name)
    return getattr(note, name, None)


# ============================================================
# Natural ordering
# ============================================================

def _run_keys(text: str) -> Tuple[Tuple[int, Any], ...]:
    keys = []
    for run in _RUN_RE.findall(text or ""):
        if run.isdigit():
            keys.append((0, int(run)))
        else:
            keys.append((1, run.lower()))
    return tuple(keys)


def natural_compare(a: str, b: str) -> int:
    """Compare two strings treating digit runs as integers.

    Non-numeric runs compare case-insensitively. When every run matches,
    the string with fewer runs sorts first, so "item" < "item2" and
    "Item" == "item".

    Returns:
        -1, 0 or 1.
    """
    ka, kb = _run_keys(a), _run_keys(b)
    if ka < kb:
        return -1
    if ka > kb:
        return 1
    return 0


def natural_sort_key(note: Any) -> Tuple:
    """Sort key for notes: natural title order, then raw title, then id.

    The tie-breakers make sibling order independent of input order.
    """
    title = _get(note, "title") or ""
    return (_run_keys(title), title, str(_get(note, "id") or ""))


# ============================================================
# Tree building
# ============================================================

def parent_map(notes: Iterable[Any]) -> Dict[str, Optional[str]]:
    """Map each note id to its stored parentId."""
    return {_get(n, "id"): _get(n, "parentId") for n in notes}


def _break_cycles(parents: Dict[str, Optional[str]], keys: Dict[str, Tuple]) -> None:
    """Detach one member of every parent cycle so each note reaches a root.

    The member with the smallest sort key becomes a root.
    """
    settled: Set[str] = set()
    for start in parents:
        path: List[str] = []
        on_path: Set[str] = set()
        cur: Optional[str] = start
        while cur is not None and cur not in settled:
            if cur in on_path:
                cycle = path[path.index(cur):]
                root = min(cycle, key=lambda i: keys[i])
                parents[root] = None
                break
            path.append(cur)
            on_path.add(cur)
            cur = parents.get(cur)
        settled.update(path)


def build_tree(notes: Iterable[Any]) -> List[TreeNode]:
    """Build the sidebar forest from a flat note list.

    A note becomes a root when its parentId is empty or does not reference
    a note in the list. Siblings are sorted with natural_sort_key at every
    level. Every input note appears exactly once, even if the stored parent
    links already contain a cycle.
    """
    notes = list(notes)
    by_id: Dict[str, TreeNode] = {}
    for n in notes:
        node_id = _get(n, "id")
        if node_id in by_id:
            continue
        by_id[node_id] = TreeNode(id=node_id, note=n)

    keys = {node_id: natural_sort_key(node.note) for node_id, node in by_id.items()}
    parents: Dict[str, Optional[str]] = {}
    for node_id, node in by_id.items():
        pid = _get(node.note, "parentId")
        parents[node_id] = pid if pid and pid in by_id and pid != node_id else None
    _break_cycles(parents, keys)

    roots: List[TreeNode] = []
    for node_id, node in by_id.items():
        pid = parents[node_id]
        if pid is None:
            roots.append(node)
        else:
            by_id[pid].children.append(node)

    def sort_rec(nodes: List[TreeNode]) -> None:
        nodes.sort(key=lambda x: keys[x.id])
        for child in nodes:
            sort_rec(child.children)

    sort_rec(roots)
    return roots


def flatten_tree(nodes: Iterable[TreeNode], depth: int = 0) -> List[Tuple[int, TreeNode]]:
    """Depth-first (depth, node) listing, the order the sidebar renders."""
    out: List[Tuple[int, TreeNode]] = []
    for node in nodes:
        out.append((depth, node))
        out.extend(flatten_tree(node.children, depth + 1))
    return out


# ============================================================
# Reparenting & search
# ============================================================

def is_invalid_drop(drag_id: str, target_id: str,
                    parents: Mapping[str, Optional[str]]) -> bool:
    """True when dropping drag_id onto target_id would create a cycle.

    A drop is invalid onto itself or onto any of its descendants. Walks
    the parent chain upward from the target; the seen-set stops the walk
    if the stored links already loop.
    """
    if drag_id == target_id:
        return True
    cur: Optional[str] = target_id
    seen: Set[str] = set()
    while cur:
        if cur == drag_id:
            return True
        if cur in seen:
            break
        seen.add(cur)
        cur = parents.get(cur)
    return False


def filter_tree(nodes: Iterable[TreeNode], query: str) -> List[TreeNode]:
    """Keep nodes whose title contains query, plus their ancestor chains.

    Case-insensitive substring match. Sibling order is preserved and
    nothing is re-sorted. An empty query returns the input unchanged.
    """
    nodes = list(nodes)
    needle = (query or "").strip().lower()
    if not needle:
        return nodes

    result: List[TreeNode] = []
    for node in nodes:
        children = filter_tree(node.children, needle)
        if needle in node.title.lower() or children:
            result.append(TreeNode(id=node.id, note=node.note, children=children))
    return result
