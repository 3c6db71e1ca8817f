"""Unit tests for ObjectStore."""

import threading
import zlib
from pathlib import Path

import pytest

from aosgit.constants import BLOB, COMMIT, MODE_EXECUTABLE, MODE_FILE, MODE_SYMLINK, MODE_TREE, TREE
from aosgit.storage.content import address_of, parse_tree
from aosgit.storage.object_store import (
    ObjectCorruptedError,
    ObjectNotFoundError,
    ObjectStore,
    ObjectStoreError,
)
from aosgit.storage.tree import FileEntry, TreeNode

EMPTY_BLOB = "e69de29bb2d1d6434b8b29ae775ad8c2e48c5391"


@pytest.fixture(params=["memory", "disk"])
def store(request, tmp_path: Path) -> ObjectStore:
    """Both flavours of ObjectStore."""
    if request.param == "memory":
        return ObjectStore()
    return ObjectStore(tmp_path / "objects")


class TestObjectStoreInit:
    """Test ObjectStore initialization."""

    def test_memory_mode(self) -> None:
        store = ObjectStore()
        assert store.in_memory
        assert store.objects_dir is None

    def test_creates_objects_dir(self, tmp_path: Path) -> None:
        """Test that a missing objects directory is created."""
        objects = tmp_path / "repo" / "objects"
        store = ObjectStore(objects)
        assert objects.is_dir()
        assert not store.in_memory

    def test_uncreatable_dir(self, tmp_path: Path) -> None:
        """Test that an objects path blocked by a file fails."""
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        with pytest.raises(ObjectStoreError, match="Cannot create"):
            ObjectStore(blocker / "objects")


class TestPut:
    """Test put-if-absent behaviour."""

    def test_put_returns_address(self, store: ObjectStore) -> None:
        oid = store.put(b"hello world\n")
        assert oid == "3b18e512dba79e4c8300dd08aeb37f8e728b8dad"
        assert store.contains(oid)
        assert oid in store

    def test_put_deduplicates(self, store: ObjectStore) -> None:
        """Test that identical content produces one object."""
        first = store.put(b"same")
        second = store.put(b"same")
        assert first == second
        assert len(store) == 1

    def test_kind_changes_address(self, store: ObjectStore) -> None:
        blob = store.put(b"same", BLOB)
        commit = store.put(b"same", COMMIT)
        assert blob != commit
        assert len(store) == 2

    def test_contains_rejects_garbage(self, store: ObjectStore) -> None:
        assert not store.contains("not-an-id")
        assert "zz" not in store
        assert 42 not in store

    def test_concurrent_puts_of_same_content(self, store: ObjectStore) -> None:
        """Test that racing writers observe one id and one intact object."""
        content = b"shared between versions\n" * 1000
        results = []
        barrier = threading.Barrier(8)

        def worker() -> None:
            barrier.wait()
            results.append(store.put(content))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(set(results)) == 1
        assert store.read(results[0]) == (BLOB, content)
        assert len(store) == 1


class TestDiskLayout:
    """Test the Git loose-object layout."""

    def test_sharded_path(self, disk_store: ObjectStore) -> None:
        oid = disk_store.put(b"")
        path = disk_store.objects_dir / oid[:2] / oid[2:]
        assert oid == EMPTY_BLOB
        assert path.is_file()

    def test_zlib_of_canonical_bytes(self, disk_store: ObjectStore) -> None:
        """Test that stored bytes are zlib(header + content)."""
        oid = disk_store.put(b"abc")
        data = (disk_store.objects_dir / oid[:2] / oid[2:]).read_bytes()
        assert zlib.decompress(data) == b"blob 3\0abc"

    def test_no_temp_files_left(self, disk_store: ObjectStore) -> None:
        disk_store.put(b"one")
        disk_store.put(b"two")
        leftovers = list(disk_store.objects_dir.rglob(".tmp_*"))
        assert leftovers == []

    def test_existing_objects_detected(self, tmp_path: Path) -> None:
        """Test that a fresh store sees objects written by another one."""
        oid = ObjectStore(tmp_path / "objects").put(b"persisted")
        reopened = ObjectStore(tmp_path / "objects")
        assert reopened.contains(oid)
        assert list(reopened.ids()) == [oid]

    def test_byte_identical_across_stores(self, tmp_path: Path) -> None:
        first = ObjectStore(tmp_path / "a")
        second = ObjectStore(tmp_path / "b")
        oid = first.put(b"x" * 5000)
        second.put(b"x" * 5000)
        path = Path(oid[:2]) / oid[2:]
        assert (tmp_path / "a" / path).read_bytes() == (tmp_path / "b" / path).read_bytes()


class TestRead:
    """Test reading objects back."""

    def test_read_roundtrip(self, store: ObjectStore) -> None:
        oid = store.put(b"content", BLOB)
        assert store.read(oid) == (BLOB, b"content")
        assert store.read_raw(oid) == b"blob 7\0content"

    def test_read_missing(self, store: ObjectStore) -> None:
        with pytest.raises(ObjectNotFoundError):
            store.read(EMPTY_BLOB)

    def test_read_invalid_id(self, store: ObjectStore) -> None:
        with pytest.raises(ValueError, match="Invalid object id"):
            store.read("abc")

    def test_corruption_detected(self, disk_store: ObjectStore) -> None:
        """Test that tampered content fails hash verification."""
        oid = disk_store.put(b"original")
        path = disk_store.objects_dir / oid[:2] / oid[2:]
        path.chmod(0o644)
        path.write_bytes(zlib.compress(b"blob 8\0tampered"))

        with pytest.raises(ObjectCorruptedError, match="expected"):
            disk_store.read(oid)
        assert disk_store.read(oid, verify_hash=False) == (BLOB, b"tampered")

    def test_invalid_zlib(self, disk_store: ObjectStore) -> None:
        oid = disk_store.put(b"original")
        path = disk_store.objects_dir / oid[:2] / oid[2:]
        path.chmod(0o644)
        path.write_bytes(b"not zlib")
        with pytest.raises(ObjectCorruptedError, match="zlib"):
            disk_store.read(oid)


class TestWriteTree:
    """Test recursive tree storage."""

    def test_empty_tree(self, store: ObjectStore) -> None:
        assert store.write_tree(TreeNode()) == "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

    def test_nested_tree(self, store: ObjectStore) -> None:
        """Test that children are stored and referenced by the parent."""
        root = TreeNode()
        root.insert(FileEntry("README", MODE_FILE, b"readme\n"))
        root.insert(FileEntry("bin/run", MODE_EXECUTABLE, b"#!/bin/sh\n"))
        root.insert(FileEntry("bin/link", MODE_SYMLINK, b"run"))

        oid = store.write_tree(root)
        kind, body = store.read(oid)
        assert kind == TREE

        entries = parse_tree(body)
        assert [(mode, name) for mode, name, _ in entries] == [
            (MODE_FILE, b"README"),
            (MODE_TREE, b"bin"),
        ]
        _, bin_body = store.read(entries[1][2])
        bin_entries = parse_tree(bin_body)
        assert [(mode, name) for mode, name, _ in bin_entries] == [
            (MODE_SYMLINK, b"link"),
            (MODE_EXECUTABLE, b"run"),
        ]
        assert bin_entries[0][2] == address_of(b"run", BLOB)

    def test_same_content_different_paths_shares_blob(self, store: ObjectStore) -> None:
        root = TreeNode()
        root.insert(FileEntry("a/LICENSE", MODE_FILE, b"APSL\n"))
        root.insert(FileEntry("b/LICENSE", MODE_FILE, b"APSL\n"))
        store.write_tree(root)
        # one blob, two identical subtrees stored once, one root
        assert len(store) == 3

    def test_insertion_order_irrelevant(self, store: ObjectStore) -> None:
        files = [
            FileEntry("z", MODE_FILE, b"z"),
            FileEntry("a/b", MODE_FILE, b"b"),
            FileEntry("a.c", MODE_FILE, b"c"),
        ]
        forward, backward = TreeNode(), TreeNode()
        for entry in files:
            forward.insert(entry)
        for entry in reversed(files):
            backward.insert(entry)
        assert store.write_tree(forward) == store.write_tree(backward)


class TestCopyTo:
    """Test copying objects between stores."""

    def test_copy_memory_to_disk(self, tmp_path: Path) -> None:
        source = ObjectStore()
        ids = {source.put(b"one"), source.put(b"two")}
        target = ObjectStore(tmp_path / "objects")

        assert source.copy_to(target) == 2
        assert set(target.ids()) == ids
        # second copy is a no-op
        assert source.copy_to(target) == 0
