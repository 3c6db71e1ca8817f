"""Canonical encodings and content addresses for Git objects.

Every object is addressed by the SHA-1 of ``<kind> <length>\\0<body>``, the
same convention Git uses for loose objects, so the ids computed here can be
checked by any Git-compatible reader. Nothing in this module performs I/O.
"""

import hashlib
from typing import Iterable, List, Optional, Tuple

from aosgit.config import Signature
from aosgit.constants import HASH_ALGORITHM, HASH_LENGTH, MODE_TREE, OBJECT_KINDS

ObjectId = str

TreeEntry = Tuple[int, bytes, ObjectId]


class MalformedObjectError(ValueError):
    """Raised when canonical object bytes cannot be decoded."""


def encode_object(body: bytes, kind: bytes) -> bytes:
    """Prefix ``body`` with its canonical ``<kind> <length>\\0`` header."""
    if kind not in OBJECT_KINDS:
        raise ValueError(f"Unknown object kind: {kind!r}")
    return kind + b" " + str(len(body)).encode("ascii") + b"\0" + body


def decode_object(raw: bytes) -> Tuple[bytes, bytes]:
    """Split canonical object bytes into ``(kind, body)``.

    Raises:
        MalformedObjectError: If the header is missing or the length is wrong
    """
    nul = raw.find(b"\0")
    if nul < 0:
        raise MalformedObjectError("Object header is not NUL terminated")

    try:
        kind, length = raw[:nul].split(b" ", 1)
        size = int(length)
    except ValueError as e:
        raise MalformedObjectError(f"Invalid object header: {raw[:nul]!r}") from e

    body = raw[nul + 1:]
    if kind not in OBJECT_KINDS:
        raise MalformedObjectError(f"Unknown object kind: {kind!r}")
    if size != len(body):
        raise MalformedObjectError(
            f"Object length mismatch: header says {size}, body has {len(body)}"
        )
    return kind, body


def hash_raw(raw: bytes) -> ObjectId:
    """Hash already-encoded object bytes."""
    return hashlib.new(HASH_ALGORITHM, raw).hexdigest()


def address_of(body: bytes, kind: bytes) -> ObjectId:
    """Compute the content address of an object body.

    Args:
        body: Object payload, without header
        kind: One of ``b"blob"``, ``b"tree"``, ``b"commit"``, ``b"tag"``

    Returns:
        Lowercase hex digest (40 characters)

    Example:
        >>> address_of(b"", b"blob")
        'e69de29bb2d1d6434b8b29ae775ad8c2e48c5391'
    """
    return hash_raw(encode_object(body, kind))


def is_object_id(value: object) -> bool:
    """Whether ``value`` looks like a full lowercase hex object id."""
    if not isinstance(value, str) or len(value) != HASH_LENGTH:
        return False
    return all(c in "0123456789abcdef" for c in value)


def tree_sort_key(name: bytes, mode: int) -> bytes:
    """Sort key for a tree entry.

    Directory names compare as if they ended in ``/`` so entries are ordered
    the way their full paths would be. With a directory ``foo`` and a file
    ``foo.txt`` the file comes first, because ``.`` sorts before ``/``.
    """
    if mode == MODE_TREE:
        return name + b"/"
    return name


def encode_tree(entries: Iterable[TreeEntry]) -> bytes:
    """Serialize tree entries into a canonical tree body.

    Each entry is written as ``<octal mode> <name>\\0<20 raw id bytes>``.
    Input order does not matter.

    Raises:
        ValueError: On duplicate names, empty names or names containing
            ``/`` or NUL
    """
    ordered = sorted(entries, key=lambda entry: tree_sort_key(entry[1], entry[0]))

    parts = []
    seen = set()
    for mode, name, oid in ordered:
        if not name or b"/" in name or b"\0" in name:
            raise ValueError(f"Invalid tree entry name: {name!r}")
        if name in seen:
            raise ValueError(f"Duplicate tree entry name: {name!r}")
        seen.add(name)
        parts.append(b"%o %s\0" % (mode, name) + bytes.fromhex(oid))
    return b"".join(parts)


def parse_tree(body: bytes) -> List[TreeEntry]:
    """Decode a tree body back into ``(mode, name, oid)`` entries."""
    entries = []
    pos = 0
    while pos < len(body):
        space = body.find(b" ", pos)
        nul = body.find(b"\0", space)
        if space < 0 or nul < 0 or nul + 21 > len(body):
            raise MalformedObjectError(f"Truncated tree entry at offset {pos}")
        mode = int(body[pos:space], 8)
        name = body[space + 1:nul]
        oid = body[nul + 1:nul + 21].hex()
        entries.append((mode, name, oid))
        pos = nul + 21
    return entries


def encode_commit(
    tree: ObjectId,
    parent: Optional[ObjectId],
    author: Signature,
    committer: Signature,
    message: str,
) -> bytes:
    """Serialize a commit body.

    Header lines are always emitted in the order tree, parent, author,
    committer. The parent line is left out entirely for a root commit.
    """
    lines = [b"tree " + tree.encode("ascii")]
    if parent is not None:
        lines.append(b"parent " + parent.encode("ascii"))
    lines.append(b"author " + author.to_bytes())
    lines.append(b"committer " + committer.to_bytes())
    return b"\n".join(lines) + b"\n\n" + message.encode("utf-8")


def encode_tag(
    obj: ObjectId,
    kind: bytes,
    name: str,
    tagger: Signature,
    message: str,
) -> bytes:
    """Serialize an annotated tag body pointing ``name`` at ``obj``."""
    lines = [
        b"object " + obj.encode("ascii"),
        b"type " + kind,
        b"tag " + name.encode("utf-8"),
        b"tagger " + tagger.to_bytes(),
    ]
    return b"\n".join(lines) + b"\n\n" + message.encode("utf-8")


def parse_commit(body: bytes) -> Tuple[dict, bytes]:
    """Split a commit body into a header dictionary and the raw message.

    Only single-valued headers are supported, which covers every commit this
    package writes.
    """
    head, sep, message = body.partition(b"\n\n")
    if not sep:
        raise MalformedObjectError("Commit has no message separator")
    headers = {}
    for line in head.split(b"\n"):
        key, _, value = line.partition(b" ")
        headers[key.decode("ascii")] = value.decode("utf-8")
    return headers, message
