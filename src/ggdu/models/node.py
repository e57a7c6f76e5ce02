"""Folder and file nodes of the cached remote tree."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Callable, Iterator

ROOT_PATH = "/"

SaveHook = Callable[[], None]


class InvariantViolation(RuntimeError):
    """Raised when the tree breaks an invariant the engine relies on."""


@dataclass(slots=True)
class File:
    """Leaf entry of a folder."""

    id: str
    name: str
    size: int = 0
    created: int = 0

    @property
    def ext(self) -> str:
        """Extension including the leading dot, e.g. '.pdf'."""
        return posixpath.splitext(self.name)[1]


@dataclass(slots=True, eq=False)
class Folder:
    """Folder node.

    Only ``id``, ``name``, ``folders``, ``files``, ``created`` and
    ``last_refreshed`` are persisted.  Everything else is derived by the
    aggregator and rebuilt after a snapshot is loaded.
    """

    id: str = ""
    name: str = ""
    folders: list[Folder] = field(default_factory=list)
    files: list[File] = field(default_factory=list)
    created: int = 0
    last_refreshed: int = 0

    size: int = field(default=0, repr=False)
    known: int = field(default=0, repr=False)
    unknown: int = field(default=0, repr=False)
    folder_index: dict[str, Folder] = field(default_factory=dict, repr=False)
    file_index: dict[str, File] = field(default_factory=dict, repr=False)
    path: str = field(default=ROOT_PATH, repr=False)
    parent: Folder | None = field(default=None, repr=False)
    save_hook: SaveHook | None = field(default=None, repr=False)
    cursor: int = field(default=0, repr=False)

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def never_fetched(self) -> bool:
        return self.last_refreshed == 0

    def child_path(self, name: str) -> str:
        return posixpath.join(self.path, name)

    def attach_folder(self, child: Folder) -> Folder:
        """Append *child*, linking it back to this folder."""
        child.parent = self
        child.path = self.child_path(child.name)
        child.save_hook = self.save_hook
        self.folders.append(child)
        return child

    def attach_file(self, file: File) -> File:
        self.files.append(file)
        return file

    def require_save_hook(self) -> SaveHook:
        """Return the save hook, raising if this folder cannot persist."""
        if self.save_hook is None:
            raise InvariantViolation(f"Reached a folder without a save hook: {self.path}")
        return self.save_hook

    def ancestors(self) -> Iterator[Folder]:
        """Yield parent, grandparent, ... up to the root."""
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    def walk(self) -> Iterator[Folder]:
        """Yield this folder and all descendant folders, pre-order."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.folders))

    def resolve(self, path: str, visit: Callable[[Folder], None] | None = None) -> Folder | None:
        """Find a descendant folder by a ``/``-separated path.

        Absolute paths are resolved from the root of the tree.  When *visit*
        is given it is called on the starting folder and on every child
        stepped into, before its name index is consulted.
        """
        node = self
        if path.startswith(ROOT_PATH):
            while node.parent is not None:
                node = node.parent
        if visit:
            visit(node)
        for part in path.split("/"):
            if part in ("", "."):
                continue
            if part == "..":
                node = node.parent or node
                continue
            child = node.folder_index.get(part)
            if child is None:
                return None
            node = child
            if visit:
                visit(node)
        return node

    def sorted_folders(self) -> list[Folder]:
        """Child folders, largest first, ties broken by name."""
        return sorted(self.folders, key=lambda f: (-f.size, f.name))

    def sorted_files(self) -> list[File]:
        return sorted(self.files, key=lambda f: (-f.size, f.name))
