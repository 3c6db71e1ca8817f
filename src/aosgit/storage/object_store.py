"""Content-addressable object storage for aosgit.

Objects (blobs, trees, commits) are keyed by the SHA-1 of their canonical
encoding. A store either lives purely in memory or on disk in Git's loose
object layout, in which case every object is zlib compressed. The address
is always computed over the uncompressed canonical bytes.
"""

import logging
import os
import tempfile
import threading
import zlib
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional, Set, Tuple, Union

from aosgit.constants import BLOB, MODE_TREE, TREE, ZLIB_LEVEL
from aosgit.storage.content import (
    MalformedObjectError,
    ObjectId,
    TreeEntry,
    decode_object,
    encode_object,
    encode_tree,
    hash_raw,
    is_object_id,
)
from aosgit.storage.tree import FileEntry, TreeNode

logger = logging.getLogger(__name__)


class ObjectStoreError(Exception):
    """Raised when an object cannot be written. Always fatal for a run."""


class ObjectNotFoundError(ObjectStoreError):
    """Raised when an object cannot be found in the object store."""


class ObjectCorruptedError(ObjectStoreError):
    """Raised when an object's hash doesn't match its content."""


class ObjectStore:
    """Content-addressable storage for Git objects.

    ``put`` is put-if-absent and safe to call from several threads at once:
    two workers storing the same content observe the same id and the object
    is written once. On disk, writes go through a temporary file and
    ``os.replace`` so a racing writer can never leave a torn object behind.

    Storage layout (disk mode):
        objects/<id[:2]>/<id[2:]>      # zlib(<kind> <len>\\0<body>)

    Attributes:
        objects_dir: Path to the objects directory, or None for memory mode

    Example:
        >>> store = ObjectStore()
        >>> oid = store.put(b"hello world\\n")
        >>> store.read(oid)
        (b'blob', b'hello world\\n')
    """

    def __init__(self, objects_dir: Optional[Path] = None) -> None:
        """Initialize the object store.

        Args:
            objects_dir: Directory for loose objects. Created if missing.
                None keeps every object in memory.

        Raises:
            ObjectStoreError: If the directory cannot be created
        """
        self.objects_dir = Path(objects_dir) if objects_dir is not None else None
        self._lock = threading.Lock()
        self._memory: Dict[ObjectId, bytes] = {}
        self._present: Set[ObjectId] = set()

        if self.objects_dir is not None:
            try:
                self.objects_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ObjectStoreError(
                    f"Cannot create objects directory {self.objects_dir}: {e}"
                ) from e

    @property
    def in_memory(self) -> bool:
        return self.objects_dir is None

    def put(self, body: bytes, kind: bytes = BLOB) -> ObjectId:
        """Store an object body, returning its id.

        If an object with the same id already exists nothing is written.

        Args:
            body: Object payload without header
            kind: Object kind, ``b"blob"`` by default

        Returns:
            Object id (40 hex characters)

        Raises:
            ObjectStoreError: If writing to disk fails
        """
        return self.put_raw(encode_object(body, kind))

    def put_raw(self, raw: bytes) -> ObjectId:
        """Store already-encoded canonical object bytes."""
        oid = hash_raw(raw)

        if self.objects_dir is None:
            with self._lock:
                self._memory.setdefault(oid, raw)
            return oid

        if self.contains(oid):
            return oid

        self._write_loose(oid, raw)
        with self._lock:
            self._present.add(oid)
        return oid

    def contains(self, oid: ObjectId) -> bool:
        """Check if an object exists in the store."""
        if not is_object_id(oid):
            return False

        with self._lock:
            if oid in self._memory or oid in self._present:
                return True

        if self.objects_dir is None:
            return False

        if self._get_object_path(oid).exists():
            with self._lock:
                self._present.add(oid)
            return True
        return False

    def __contains__(self, oid: object) -> bool:
        return isinstance(oid, str) and self.contains(oid)

    def read_raw(self, oid: ObjectId, verify_hash: bool = True) -> bytes:
        """Read the canonical (uncompressed) bytes of an object.

        Raises:
            ObjectNotFoundError: If the object doesn't exist
            ObjectCorruptedError: If hash verification or decompression fails
            ValueError: If ``oid`` is not a valid object id
        """
        self._validate_id(oid)

        if self.objects_dir is None:
            with self._lock:
                raw = self._memory.get(oid)
            if raw is None:
                raise ObjectNotFoundError(f"Object not found: {oid}")
        else:
            path = self._get_object_path(oid)
            try:
                with open(path, "rb") as f:
                    data = f.read()
            except FileNotFoundError as e:
                raise ObjectNotFoundError(f"Object not found: {oid} ({path})") from e
            try:
                raw = zlib.decompress(data)
            except zlib.error as e:
                raise ObjectCorruptedError(f"Object {oid} is not valid zlib: {e}") from e

        if verify_hash:
            actual = hash_raw(raw)
            if actual != oid:
                raise ObjectCorruptedError(
                    f"Object corrupted: expected {oid}, got {actual}"
                )
        return raw

    def read(self, oid: ObjectId, verify_hash: bool = True) -> Tuple[bytes, bytes]:
        """Read an object, returning ``(kind, body)``."""
        raw = self.read_raw(oid, verify_hash=verify_hash)
        try:
            return decode_object(raw)
        except MalformedObjectError as e:
            raise ObjectCorruptedError(f"Object {oid} is malformed: {e}") from e

    def ids(self) -> Iterator[ObjectId]:
        """Iterate over every stored object id, in sorted order."""
        if self.objects_dir is None:
            with self._lock:
                found = list(self._memory)
        else:
            found = []
            for shard in self.objects_dir.iterdir():
                if len(shard.name) != 2 or not shard.is_dir():
                    continue
                for entry in shard.iterdir():
                    oid = shard.name + entry.name
                    if is_object_id(oid):
                        found.append(oid)
        return iter(sorted(found))

    def __len__(self) -> int:
        return sum(1 for _ in self.ids())

    def write_tree(self, node: Union[TreeNode, FileEntry]) -> ObjectId:
        """Store a snapshot tree bottom-up and return the root tree id.

        Children are stored before their parent because a tree's encoding
        embeds the ids of its children.
        """
        if isinstance(node, FileEntry):
            return self.put(node.data, BLOB)

        entries = []
        for name, child in node.children.items():
            if isinstance(child, TreeNode):
                entries.append((MODE_TREE, name, self.write_tree(child)))
            else:
                entries.append((child.mode, name, self.put(child.data, BLOB)))
        return self.write_tree_entries(entries)

    def write_tree_entries(self, entries: Iterable[TreeEntry]) -> ObjectId:
        """Store a tree built from ``(mode, name, id)`` entries."""
        return self.put(encode_tree(entries), TREE)

    def copy_to(self, other: "ObjectStore") -> int:
        """Copy every object missing from ``other`` into it.

        Returns:
            Number of objects actually written
        """
        copied = 0
        for oid in self.ids():
            if other.contains(oid):
                continue
            other.put_raw(self.read_raw(oid, verify_hash=False))
            copied += 1
        return copied

    def _write_loose(self, oid: ObjectId, raw: bytes) -> None:
        """Write one zlib-compressed loose object atomically."""
        object_path = self._get_object_path(oid)
        data = zlib.compress(raw, ZLIB_LEVEL)

        try:
            object_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_path = tempfile.mkstemp(
                dir=object_path.parent,
                prefix=".tmp_",
                suffix=".obj",
            )
        except OSError as e:
            raise ObjectStoreError(f"Failed to write object {oid}: {e}") from e

        try:
            with os.fdopen(tmp_fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, 0o444)
            os.replace(tmp_path, object_path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            # Another writer may have won the race with identical content
            if object_path.exists():
                logger.debug("Object %s written concurrently", oid)
                return
            raise ObjectStoreError(f"Failed to write object {oid}: {e}") from e

    def _get_object_path(self, oid: ObjectId) -> Path:
        """Get the filesystem path for an object: objects/<id[:2]>/<id[2:]>."""
        assert self.objects_dir is not None
        return self.objects_dir / oid[:2] / oid[2:]

    def _validate_id(self, oid: ObjectId) -> None:
        if not is_object_id(oid):
            raise ValueError(f"Invalid object id: {oid!r}")
