"""In-memory snapshot model: files and the directory nodes holding them."""

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Union

from aosgit.constants import MODE_EXECUTABLE, MODE_FILE, MODE_SYMLINK

FILE_MODES = (MODE_FILE, MODE_EXECUTABLE, MODE_SYMLINK)


@dataclass(frozen=True)
class FileEntry:
    """A single file of a snapshot.

    Attributes:
        path: Slash separated path relative to the snapshot root
        mode: ``MODE_FILE``, ``MODE_EXECUTABLE`` or ``MODE_SYMLINK``
        data: File content, or the link target for symlinks
    """

    path: str
    mode: int
    data: bytes

    def __post_init__(self) -> None:
        if self.mode not in FILE_MODES:
            raise ValueError(f"Unsupported file mode: {self.mode:o}")

    @property
    def name(self) -> bytes:
        return self.path.rsplit("/", 1)[-1].encode("utf-8", "surrogateescape")

    @property
    def is_symlink(self) -> bool:
        return self.mode == MODE_SYMLINK


@dataclass
class TreeNode:
    """A directory. Children are keyed by their raw name bytes."""

    children: Dict[bytes, Union[FileEntry, "TreeNode"]] = field(default_factory=dict)

    def insert(self, entry: FileEntry) -> bool:
        """Insert ``entry`` along its path, creating directories as needed.

        Whatever already occupies the path (a file, or a directory where a
        file should go and vice versa) is replaced.

        Returns:
            True if something was replaced
        """
        parts = [p.encode("utf-8", "surrogateescape") for p in entry.path.split("/")]
        replaced = False
        node = self
        for part in parts[:-1]:
            child = node.children.get(part)
            if not isinstance(child, TreeNode):
                if child is not None:
                    replaced = True
                child = TreeNode()
                node.children[part] = child
            node = child

        if parts[-1] in node.children:
            replaced = True
        node.children[parts[-1]] = entry
        return replaced

    def walk(self, prefix: str = "") -> Iterator[FileEntry]:
        """Yield every file below this node in name order."""
        for name in sorted(self.children):
            child = self.children[name]
            if isinstance(child, TreeNode):
                path = prefix + name.decode("utf-8", "surrogateescape")
                yield from child.walk(path + "/")
            else:
                yield child

    def files(self) -> List[FileEntry]:
        return list(self.walk())

    def lookup(self, path: str) -> Union[FileEntry, "TreeNode", None]:
        """Find the node at a slash separated path, or None."""
        node: Union[FileEntry, TreeNode] = self
        for part in path.split("/"):
            if not isinstance(node, TreeNode):
                return None
            child = node.children.get(part.encode("utf-8", "surrogateescape"))
            if child is None:
                return None
            node = child
        return node

    def __len__(self) -> int:
        return len(self.children)

