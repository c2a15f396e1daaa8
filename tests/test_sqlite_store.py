"""Tests for SQLiteFileStore."""

import pytest

from workspace.errors import NotFoundError, ValidationError
from workspace.models import FileKind, FileRecord
from workspace.sqlite_store import MEMORY_DB, SQLiteFileStore
from workspace.tree import TreeCache, build_tree


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "workspace.db"


@pytest.fixture
def store(db_path):
    return SQLiteFileStore(db_path)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, store, db_path):
        try:
            await store.initialize()
            await store.initialize()
            assert store.durable
            assert db_path.exists()
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_operations_auto_initialize(self, store):
        try:
            assert await store.list() == []
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_records_survive_reopen(self, db_path):
        first = SQLiteFileStore(db_path)
        node_id = await first.create("main.js", None, FileKind.FILE, "1")
        await first.close()

        second = SQLiteFileStore(db_path)
        try:
            assert await second.get_content(node_id) == "1"
        finally:
            await second.close()

    @pytest.mark.asyncio
    async def test_falls_back_to_memory_when_path_unusable(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")
        store = SQLiteFileStore(blocker / "workspace.db")
        try:
            await store.initialize()
            assert not store.durable
            node_id = await store.create("a.js", None, FileKind.FILE, "ok")
            assert await store.get_content(node_id) == "ok"
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_explicit_memory_db_is_not_durable(self):
        store = SQLiteFileStore(MEMORY_DB)
        try:
            await store.initialize()
            assert not store.durable
        finally:
            await store.close()


class TestScenarios:
    @pytest.mark.asyncio
    async def test_create_file_at_root(self, store):
        try:
            node_id = await store.create("main.js", None, FileKind.FILE)
            records = await store.list()
            tree = build_tree(records)
            assert [(n.id, n.name) for n in tree] == [(node_id, "main.js")]
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_directory_with_child(self, store):
        try:
            src = await store.create("src", None, FileKind.DIRECTORY)
            a = await store.create("a.js", src, FileKind.FILE)
            (root,) = build_tree(await store.list())
            assert root.id == src and root.is_dir
            assert [child.id for child in root.children] == [a]
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_delete_removes_whole_subtree(self, store):
        try:
            src = await store.create("src", None, FileKind.DIRECTORY)
            lib = await store.create("lib", src, FileKind.DIRECTORY)
            await store.create("a.js", src, FileKind.FILE)
            await store.create("b.js", lib, FileKind.FILE)
            keep = await store.create("keep.js", None, FileKind.FILE)

            await store.delete(src)

            assert [r.id for r in await store.list()] == [keep]
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_rename_changes_path(self, store):
        try:
            node_id = await store.create("main.js", None, FileKind.FILE)
            await store.rename(node_id, "index.js")
            cache = TreeCache()
            cache.rebuild(await store.list())
            assert cache.resolve_path(node_id) == "index.js"
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_move_to_root(self, store):
        try:
            src = await store.create("src", None, FileKind.DIRECTORY)
            a = await store.create("a.js", src, FileKind.FILE)
            await store.move(a, None)
            cache = TreeCache()
            cache.rebuild(await store.list())
            assert cache.resolve_path(a) == "a.js"
        finally:
            await store.close()


    @pytest.mark.asyncio
    async def test_move_directory_carries_subtree(self, store):
        try:
            other = await store.create("other", None, FileKind.DIRECTORY)
            src = await store.create("src", None, FileKind.DIRECTORY)
            lib = await store.create("lib", src, FileKind.DIRECTORY)
            b = await store.create("b.js", lib, FileKind.FILE, "B")

            await store.move(src, other)

            records = {r.id: r for r in await store.list()}
            assert records[src].parent_id == other
            assert records[lib].parent_id == src
            assert records[b].parent_id == lib
            cache = TreeCache()
            cache.rebuild(records.values())
            assert cache.resolve_path(b) == "other/src/lib/b.js"
            assert cache.descendant_ids(src) == {src, lib, b}
            assert await store.get_content(b) == "B"
        finally:
            await store.close()


class TestContent:
    @pytest.mark.asyncio
    async def test_list_omits_content_unless_requested(self, store):
        try:
            await store.create("a.js", None, FileKind.FILE, "body")
            (bare,) = await store.list()
            (full,) = await store.list(include_content=True)
            assert bare.content is None
            assert full.content == "body"
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_save_and_get(self, store):
        try:
            node_id = await store.create("a.js", None, FileKind.FILE)
            assert await store.get_content(node_id) == ""
            await store.save_content(node_id, "console.log(1)")
            assert await store.get_content(node_id) == "console.log(1)"
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_get_batch_content_skips_unknown_and_directories(self, store):
        try:
            a = await store.create("a.js", None, FileKind.FILE, "A")
            b = await store.create("b.js", None, FileKind.FILE, "B")
            d = await store.create("d", None, FileKind.DIRECTORY)
            contents = await store.get_batch_content([a, b, d, "missing"])
            assert contents == {a: "A", b: "B"}
            assert await store.get_batch_content([]) == {}
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_directory_content_errors(self, store):
        try:
            d = await store.create("d", None, FileKind.DIRECTORY)
            with pytest.raises(NotFoundError):
                await store.get_content(d)
            with pytest.raises(ValidationError):
                await store.save_content(d, "x")
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_unknown_ids(self, store):
        try:
            with pytest.raises(NotFoundError):
                await store.get_content("missing")
            with pytest.raises(NotFoundError):
                await store.save_content("missing", "x")
            with pytest.raises(NotFoundError):
                await store.rename("missing", "x")
            with pytest.raises(NotFoundError):
                await store.move("missing", None)
            with pytest.raises(NotFoundError):
                await store.delete("missing")
        finally:
            await store.close()


class TestStructure:
    @pytest.mark.asyncio
    async def test_list_orders_directories_first(self, store):
        try:
            await store.create("b.js", None, FileKind.FILE)
            await store.create("z", None, FileKind.DIRECTORY)
            await store.create("a.js", None, FileKind.FILE)
            assert [r.name for r in await store.list()] == ["z", "a.js", "b.js"]
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_create_accepts_legacy_folder_kind(self, store):
        try:
            node_id = await store.create("src", None, "folder")
            (record,) = await store.list()
            assert record.id == node_id and record.kind is FileKind.DIRECTORY
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_create_with_explicit_id(self, store):
        try:
            assert await store.create("a.js", None, FileKind.FILE, node_id="fixed") == "fixed"
            with pytest.raises(ValidationError):
                await store.create("b.js", None, FileKind.FILE, node_id="fixed")
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_create_validates_parent(self, store):
        try:
            f = await store.create("a.js", None, FileKind.FILE)
            with pytest.raises(NotFoundError):
                await store.create("x.js", "missing", FileKind.FILE)
            with pytest.raises(ValidationError):
                await store.create("x.js", f, FileKind.FILE)
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_invalid_names_rejected(self, store):
        try:
            with pytest.raises(ValidationError):
                await store.create("", None, FileKind.FILE)
            node_id = await store.create("ok.js", None, FileKind.FILE)
            with pytest.raises(ValidationError):
                await store.rename(node_id, "a/b.js")
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_move_into_own_descendant_rejected(self, store):
        try:
            a = await store.create("a", None, FileKind.DIRECTORY)
            b = await store.create("b", a, FileKind.DIRECTORY)
            with pytest.raises(ValidationError):
                await store.move(a, b)
            with pytest.raises(ValidationError):
                await store.move(a, a)
            (root,) = build_tree(await store.list())
            assert root.id == a
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_move_under_file_rejected(self, store):
        try:
            f = await store.create("f.js", None, FileKind.FILE)
            g = await store.create("g.js", None, FileKind.FILE)
            with pytest.raises(ValidationError):
                await store.move(g, f)
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_duplicate_names_allowed_by_default(self, store):
        try:
            await store.create("a.js", None, FileKind.FILE)
            await store.create("a.js", None, FileKind.FILE)
            assert len(await store.list()) == 2
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_unique_names_enforced_when_enabled(self, db_path):
        store = SQLiteFileStore(db_path, enforce_unique_names=True)
        try:
            d = await store.create("d", None, FileKind.DIRECTORY)
            a = await store.create("a.js", None, FileKind.FILE)
            await store.create("a.js", d, FileKind.FILE)
            with pytest.raises(ValidationError):
                await store.create("a.js", None, FileKind.FILE)
            with pytest.raises(ValidationError):
                await store.move(a, d)
            await store.rename(a, "a.js")
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_reset(self, store):
        try:
            d = await store.create("d", None, FileKind.DIRECTORY)
            await store.create("a.js", d, FileKind.FILE)
            await store.reset()
            assert await store.list() == []
        finally:
            await store.close()


class TestReplaceAll:
    @staticmethod
    def _records():
        return [
            FileRecord(id="src", name="src", parent_id=None, kind=FileKind.DIRECTORY),
            FileRecord(id="a", name="a.js", parent_id="src", kind=FileKind.FILE, content="A"),
            FileRecord(id="readme", name="README.md", parent_id=None, kind=FileKind.FILE),
        ]

    @pytest.mark.asyncio
    async def test_swaps_every_record(self, store):
        try:
            old = await store.create("old.js", None, FileKind.FILE, "old")
            await store.replace_all(self._records())
            records = {r.id: r for r in await store.list()}
            assert set(records) == {"src", "a", "readme"}
            assert records["a"].parent_id == "src"
            assert await store.get_content("a") == "A"
            assert await store.get_content("readme") == ""
            with pytest.raises(NotFoundError):
                await store.get_content(old)
        finally:
            await store.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "bad",
        [
            FileRecord(id="x", name="bad\\name.js", parent_id=None, kind=FileKind.FILE),
            FileRecord(id="x", name="x.js", parent_id="missing", kind=FileKind.FILE),
            FileRecord(id="x", name="x.js", parent_id="readme", kind=FileKind.FILE),
            FileRecord(id="a", name="dup.js", parent_id=None, kind=FileKind.FILE),
        ],
    )
    async def test_rejected_set_leaves_store_untouched(self, store, bad):
        try:
            old = await store.create("old.js", None, FileKind.FILE, "old")
            with pytest.raises(ValidationError):
                await store.replace_all([*self._records(), bad])
            assert [r.id for r in await store.list()] == [old]
            assert await store.get_content(old) == "old"
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_unique_names_checked_when_enabled(self, db_path):
        store = SQLiteFileStore(db_path, enforce_unique_names=True)
        try:
            twin = FileRecord(id="twin", name="README.md", parent_id=None, kind=FileKind.FILE)
            with pytest.raises(ValidationError):
                await store.replace_all([*self._records(), twin])
            assert await store.list() == []
        finally:
            await store.close()
