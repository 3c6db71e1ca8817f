"""Materialization of a built history as an on-disk Git repository.

The writer always starts from an empty destination. It lays out the Git
directory, copies loose objects, writes the branch and tag refs and, for
non-bare repositories, checks out the head tree together with an index so
that ``git status`` reports a clean working tree.
"""

import hashlib
import logging
import os
import re
import struct
from pathlib import Path
from typing import List, Optional, Tuple

from aosgit.constants import (
    BLOB,
    COMMIT,
    CONFIG_FILE,
    DEFAULT_BRANCH,
    DESCRIPTION_FILE,
    GIT_DIR,
    HEAD_FILE,
    HEADS_DIR,
    INDEX_FILE,
    MODE_EXECUTABLE,
    MODE_SYMLINK,
    MODE_TREE,
    OBJECTS_DIR,
    REFS_DIR,
    TAGS_DIR,
    TREE,
)
from aosgit.core.history import History
from aosgit.storage.content import ObjectId, is_object_id, parse_commit, parse_tree
from aosgit.storage.object_store import ObjectStore, ObjectStoreError

logger = logging.getLogger(__name__)

_BAD_REF_CHARS = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")

IndexEntry = Tuple[bytes, int, ObjectId, os.stat_result]


class RepositoryWriterError(Exception):
    """Raised when a repository cannot be materialized."""


class DestinationNotEmptyError(RepositoryWriterError):
    """Raised when the destination already holds files."""


class RefWriteError(RepositoryWriterError):
    """Raised when a ref cannot be written. Always fatal for a run."""


def is_valid_ref_name(name: str) -> bool:
    """Check a ref name (relative to ``refs/heads`` or ``refs/tags``).

    Follows the rules of ``git check-ref-format`` that matter for version
    labels.
    """
    if not name or name == "@" or "@{" in name or ".." in name:
        return False
    if _BAD_REF_CHARS.search(name):
        return False
    if name.endswith(("/", ".")):
        return False
    for component in name.split("/"):
        if not component or component.startswith(".") or component.endswith(".lock"):
            return False
    return True


class RepositoryWriter:
    """Writes a History into a fresh Git repository.

    Attributes:
        destination: Repository root (the working directory if not bare)
        bare: Whether to skip the working tree checkout
        branch: Branch receiving the head commit

    Example:
        >>> writer = RepositoryWriter(Path("xnu.git"))
        >>> writer.materialize(history, store)
    """

    def __init__(
        self,
        destination: Path,
        bare: bool = True,
        branch: str = DEFAULT_BRANCH,
    ) -> None:
        self.destination = Path(destination)
        self.bare = bare
        self.branch = branch
        self._initialized = False

    @property
    def git_dir(self) -> Path:
        return self.destination if self.bare else self.destination / GIT_DIR

    @property
    def objects_dir(self) -> Path:
        return self.git_dir / OBJECTS_DIR

    def initialize(self) -> None:
        """Create the empty repository skeleton.

        Raises:
            DestinationNotEmptyError: If the destination holds any file
            RefWriteError: If the branch name is invalid
            RepositoryWriterError: If the layout cannot be created
        """
        if self._initialized:
            return
        if self.destination.exists() and any(self.destination.iterdir()):
            raise DestinationNotEmptyError(
                f"Destination is not empty: {self.destination}"
            )
        if not is_valid_ref_name(self.branch):
            raise RefWriteError(f"Invalid branch name: {self.branch!r}")

        config = "[core]\n\trepositoryformatversion = 0\n\tfilemode = true\n"
        if self.bare:
            config += "\tbare = true\n"
        else:
            config += "\tbare = false\n\tlogallrefupdates = true\n"

        try:
            for directory in (
                self.objects_dir,
                self.git_dir / REFS_DIR / HEADS_DIR,
                self.git_dir / REFS_DIR / TAGS_DIR,
            ):
                directory.mkdir(parents=True, exist_ok=True)
            (self.git_dir / HEAD_FILE).write_text(
                f"ref: {REFS_DIR}/{HEADS_DIR}/{self.branch}\n", encoding="utf-8"
            )
            (self.git_dir / CONFIG_FILE).write_text(config, encoding="utf-8")
            (self.git_dir / DESCRIPTION_FILE).write_text(
                "Unnamed repository; edit this file 'description' to name the repository.\n",
                encoding="utf-8",
            )
        except OSError as e:
            raise RepositoryWriterError(
                f"Failed to initialize repository at {self.destination}: {e}"
            ) from e

        self._initialized = True

    def object_store(self) -> ObjectStore:
        """Object store writing straight into this repository's objects dir.

        Building a history into this store avoids copying every object at
        materialization time.
        """
        self.initialize()
        return ObjectStore(self.objects_dir)

    def materialize(self, history: History, store: ObjectStore) -> None:
        """Write objects, refs and (if not bare) the working tree.

        Args:
            history: Commits and tags to record
            store: Store holding every object reachable from ``history``

        Raises:
            ObjectStoreError: If objects cannot be copied
            RefWriteError: If a ref cannot be written
        """
        self.initialize()

        target = ObjectStore(self.objects_dir)
        copied = store.copy_to(target)
        logger.debug("Copied %d objects into %s", copied, self.objects_dir)

        if history.head is None:
            logger.warning("%s has no commits; leaving %s empty", history.name, self.branch)
            return

        self.write_ref(f"{REFS_DIR}/{HEADS_DIR}/{self.branch}", history.head)
        for tag in history.tags:
            self.write_ref(f"{REFS_DIR}/{TAGS_DIR}/{tag.name}", tag.target)

        if not self.bare:
            self.checkout(target, history.head)

    def write_ref(self, ref: str, oid: ObjectId) -> None:
        """Point ``ref`` (e.g. ``refs/tags/1.0``) at ``oid``.

        Raises:
            RefWriteError: On invalid names, invalid ids or I/O failure
        """
        name = ref.split("/", 2)[-1]
        if not ref.startswith(REFS_DIR + "/") or not is_valid_ref_name(name):
            raise RefWriteError(f"Invalid ref name: {ref!r}")
        if not is_object_id(oid):
            raise RefWriteError(f"Invalid object id for {ref}: {oid!r}")

        path = self.git_dir / ref
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(oid + "\n", encoding="ascii")
        except OSError as e:
            raise RefWriteError(f"Failed to write {ref}: {e}") from e

    def checkout(self, store: ObjectStore, commit: ObjectId) -> None:
        """Populate the working directory with a commit's tree and write the index."""
        kind, body = store.read(commit)
        if kind != COMMIT:
            raise RepositoryWriterError(f"{commit} is a {kind.decode()}, not a commit")
        headers, _ = parse_commit(body)

        entries: List[IndexEntry] = []
        try:
            self._checkout_tree(store, headers["tree"], self.destination, b"", entries)
            self._write_index(entries)
        except OSError as e:
            raise RepositoryWriterError(f"Checkout into {self.destination} failed: {e}") from e

    def _checkout_tree(
        self,
        store: ObjectStore,
        tree: ObjectId,
        directory: Path,
        prefix: bytes,
        entries: List[IndexEntry],
    ) -> None:
        kind, body = store.read(tree)
        if kind != TREE:
            raise ObjectStoreError(f"{tree} is a {kind.decode()}, not a tree")

        directory.mkdir(parents=True, exist_ok=True)
        for mode, name, oid in parse_tree(body):
            if name.lower() == GIT_DIR.encode():
                path = os.fsdecode(prefix + name)
                raise RepositoryWriterError(f"Refusing to check out {path!r} from tree {tree}")
            path = directory / os.fsdecode(name)
            if mode == MODE_TREE:
                self._checkout_tree(store, oid, path, prefix + name + b"/", entries)
                continue

            kind, data = store.read(oid)
            if kind != BLOB:
                raise ObjectStoreError(f"{oid} is a {kind.decode()}, not a blob")
            if mode == MODE_SYMLINK:
                os.symlink(os.fsdecode(data), path)
            else:
                path.write_bytes(data)
                os.chmod(path, 0o755 if mode == MODE_EXECUTABLE else 0o644)
            entries.append((prefix + name, mode, oid, os.lstat(path)))

    def _write_index(self, entries: List[IndexEntry]) -> None:
        """Write a version 2 index describing the checked-out files."""
        entries = sorted(entries, key=lambda entry: entry[0])
        parts = [b"DIRC" + struct.pack(">LL", 2, len(entries))]
        for path, mode, oid, st in entries:
            fields = (
                int(st.st_ctime), _nanos(st.st_ctime_ns),
                int(st.st_mtime), _nanos(st.st_mtime_ns),
                st.st_dev, st.st_ino, mode, st.st_uid, st.st_gid, st.st_size,
            )
            entry = struct.pack(">10L", *(value & 0xFFFFFFFF for value in fields))
            entry += bytes.fromhex(oid)
            entry += struct.pack(">H", min(len(path), 0xFFF)) + path
            padding = 8 - (len(entry) % 8)
            parts.append(entry + b"\0" * padding)

        data = b"".join(parts)
        data += hashlib.sha1(data).digest()
        (self.git_dir / INDEX_FILE).write_bytes(data)


def _nanos(total_ns: int) -> int:
    return total_ns % 1_000_000_000


def materialize(
    history: History,
    store: ObjectStore,
    destination: Path,
    bare: bool = True,
    branch: Optional[str] = None,
) -> RepositoryWriter:
    """Materialize ``history`` into a fresh repository at ``destination``."""
    writer = RepositoryWriter(destination, bare=bare, branch=branch or DEFAULT_BRANCH)
    writer.materialize(history, store)
    return writer
