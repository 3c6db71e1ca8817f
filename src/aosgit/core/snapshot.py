"""Expansion of archive bytes into canonical snapshot trees.

Decompression is handled by ``decode_tar``; ``SnapshotExpander`` owns the
canonicalization: path normalization, wrapper-directory stripping, mode
bucketing and last-wins collision handling.
"""

import io
import logging
import posixpath
import tarfile
import zlib
from typing import Callable, Iterable, Iterator, List, NamedTuple, Optional

from aosgit.constants import GIT_DIR, MODE_EXECUTABLE, MODE_FILE, MODE_SYMLINK
from aosgit.storage.tree import FileEntry, TreeNode

logger = logging.getLogger(__name__)

KIND_FILE = "file"
KIND_SYMLINK = "symlink"
KIND_DIRECTORY = "directory"


class ArchiveError(Exception):
    """Raised for corrupt archives and unsupported archive entry types."""


class RawEntry(NamedTuple):
    """An archive member as enumerated by the decoder, before canonicalization."""

    path: str
    kind: str
    mode: int
    data: bytes


Decoder = Callable[[bytes], Iterable[RawEntry]]


def decode_tar(archive_bytes: bytes) -> Iterator[RawEntry]:
    """Enumerate the members of a (possibly compressed) tar archive.

    Hard links are resolved to the content of the member they point at.

    Raises:
        ArchiveError: If the archive is corrupt or holds device nodes/FIFOs
    """
    try:
        with tarfile.open(fileobj=io.BytesIO(archive_bytes), mode="r:*") as archive:
            for member in archive:
                if member.isdir():
                    yield RawEntry(member.name, KIND_DIRECTORY, member.mode, b"")
                elif member.issym():
                    yield RawEntry(
                        member.name,
                        KIND_SYMLINK,
                        member.mode,
                        member.linkname.encode("utf-8", "surrogateescape"),
                    )
                elif member.isfile() or member.islnk():
                    f = archive.extractfile(member)
                    if f is None:
                        raise ArchiveError(f"Cannot read archive member {member.name}")
                    yield RawEntry(member.name, KIND_FILE, member.mode, f.read())
                else:
                    raise ArchiveError(
                        f"Unsupported archive entry type {member.type!r} for {member.name}"
                    )
    except (tarfile.TarError, EOFError, OSError, KeyError, zlib.error) as e:
        raise ArchiveError(f"Corrupt archive: {e}") from e


def normalize_path(path: str) -> Optional[str]:
    """Normalize an archive path.

    Leading slashes, empty components and ``.`` are dropped and ``..`` is
    resolved. Returns None for paths that are empty or escape the root.

    Example:
        >>> normalize_path("./pkg//src/../README")
        'pkg/README'
        >>> normalize_path("../etc/passwd") is None
        True
    """
    parts: List[str] = []
    for part in path.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if not parts:
                return None
            parts.pop()
            continue
        parts.append(part)
    if not parts:
        return None
    return posixpath.join(*parts)


def is_git_path(path: str) -> bool:
    """Whether any component of a normalized path is `.git`, in any case."""
    return any(part.lower() == GIT_DIR for part in path.split("/"))


def bucket_mode(kind: str, mode: int) -> int:
    """Reduce archive permission bits to regular, executable or symlink."""
    if kind == KIND_SYMLINK:
        return MODE_SYMLINK
    if mode & 0o111:
        return MODE_EXECUTABLE
    return MODE_FILE


class SnapshotExpander:
    """Turns one version's archive bytes into a TreeNode.

    Attributes:
        decoder: Callable enumerating raw archive entries; ``decode_tar``
            unless another archive format is plugged in
    """

    def __init__(self, decoder: Decoder = decode_tar) -> None:
        self.decoder = decoder

    def expand(self, archive_bytes: bytes) -> TreeNode:
        """Expand archive bytes into a canonical snapshot tree.

        Raises:
            ArchiveError: If the archive is corrupt or unsupported
        """
        return self.build_tree(self.entries(archive_bytes))

    def entries(self, archive_bytes: bytes) -> List[FileEntry]:
        """Canonical file entries in archive enumeration order.

        Duplicates are still present here; ``build_tree`` resolves them.
        """
        normalized = []
        for raw in self.decoder(archive_bytes):
            if raw.kind == KIND_DIRECTORY:
                continue
            path = normalize_path(raw.path)
            if path is None:
                logger.warning("Dropping archive member outside snapshot root: %s", raw.path)
                continue
            if is_git_path(path):
                logger.warning("Dropping archive member inside a .git directory: %s", raw.path)
                continue
            normalized.append((path, bucket_mode(raw.kind, raw.mode), raw.data))

        prefix = _common_wrapper(path for path, _, _ in normalized)
        if prefix:
            normalized = [
                (path[len(prefix) + 1:], mode, data) for path, mode, data in normalized
            ]

        return [FileEntry(path=path, mode=mode, data=data) for path, mode, data in normalized]

    def build_tree(self, entries: Iterable[FileEntry]) -> TreeNode:
        """Insert entries in order; later entries replace earlier ones."""
        root = TreeNode()
        for entry in entries:
            if root.insert(entry):
                logger.warning("Duplicate path in archive, keeping last: %s", entry.path)
        return root


def _common_wrapper(paths: Iterable[str]) -> Optional[str]:
    """Return the single top-level directory every path lives under, if any."""
    wrapper = None
    for path in paths:
        head, sep, _ = path.partition("/")
        if not sep:
            return None
        if wrapper is None:
            wrapper = head
        elif head != wrapper:
            return None
    return wrapper
