import pytest

from journal.visibility import can_edit, can_read, parse_visibility
from models.note import Note
from models.permission import UserRole


def make_note(visibility, created_by="owner"):
    return Note(title="T", createdBy=created_by, visibility=visibility)


def test_parse_visibility():
    assert parse_visibility("party").kind == "party"
    assert parse_visibility("personal:u1").uid == "u1"
    assert parse_visibility("shared:a, b").uids == ["a", "b"]
    assert parse_visibility("guild").kind == "unknown"


@pytest.mark.parametrize("visibility,user,expected", [
    ("party", "someone", True),
    ("dm-only", "someone", False),
    ("dm-only", "owner", True),
    ("personal:someone", "someone", True),
    ("personal:someone", "other", False),
    ("shared:a,someone", "someone", True),
    ("shared:a,b", "someone", False),
    ("mystery", "someone", False),
])
def test_can_read_by_visibility(visibility, user, expected):
    assert can_read(make_note(visibility), user, "viewer") is expected


def test_read_requires_a_role():
    assert not can_read(make_note("party"), "owner", None)
    assert not can_read(make_note("party"), "owner", "guest")


def test_edit_requires_editing_role():
    note = make_note("party")
    assert can_edit(note, "someone", UserRole.EDITOR)
    assert can_edit(note, "someone", "admin")
    assert not can_edit(note, "someone", UserRole.VIEWER)
    assert not can_edit(make_note("dm-only"), "someone", "admin")


def test_works_on_plain_dicts():
    assert can_read({"createdBy": "x", "visibility": "party"}, "y", "viewer")
