"""Tests for reading a host directory into records."""

import pytest

from workspace.local_import import read_directory
from workspace.models import FileKind


def test_parents_before_children(tmp_path):
    (tmp_path / "src" / "lib").mkdir(parents=True)
    (tmp_path / "src" / "lib" / "a.js").write_text("A")
    (tmp_path / "main.js").write_text("M")

    records = read_directory(tmp_path)

    seen = set()
    for record in records:
        assert record.parent_id is None or record.parent_id in seen
        seen.add(record.id)
    by_name = {r.name: r for r in records}
    assert by_name["lib"].kind is FileKind.DIRECTORY
    assert by_name["a.js"].content == "A"
    assert by_name["a.js"].parent_id == by_name["lib"].id
    assert len({r.id for r in records}) == len(records)


def test_skipped_directories_are_not_descended(tmp_path):
    (tmp_path / ".git" / "objects").mkdir(parents=True)
    (tmp_path / ".git" / "HEAD").write_text("ref")
    records = read_directory(tmp_path)
    assert [r.name for r in records] == [".git"]


def test_undecodable_bytes_are_replaced(tmp_path):
    (tmp_path / "bin.dat").write_bytes(b"ok\xff")
    (record,) = read_directory(tmp_path)
    assert record.content == "ok\ufffd"


def test_not_a_directory(tmp_path):
    target = tmp_path / "file.txt"
    target.write_text("x")
    with pytest.raises(NotADirectoryError):
        read_directory(target)
