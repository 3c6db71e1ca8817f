"""Storage layer for aosgit.

This module provides the canonical object encodings, the snapshot tree
model and the content-addressable object store.
"""

from aosgit.storage.content import ObjectId, address_of, encode_tree, tree_sort_key
from aosgit.storage.object_store import (
    ObjectCorruptedError,
    ObjectNotFoundError,
    ObjectStore,
    ObjectStoreError,
)
from aosgit.storage.tree import FileEntry, TreeNode

__all__ = [
    "ObjectId",
    "address_of",
    "encode_tree",
    "tree_sort_key",
    "ObjectStore",
    "ObjectStoreError",
    "ObjectNotFoundError",
    "ObjectCorruptedError",
    "FileEntry",
    "TreeNode",
]
