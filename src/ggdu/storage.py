"""JSON snapshot of the cached folder tree."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from ggdu.core.aggregator import StalenessPolicy, aggregate_tree
from ggdu.models.node import File, Folder
from ggdu.utils import xdg_cache_home

log = logging.getLogger(__name__)

_DATA_DIR = xdg_cache_home() / "ggdu"

SNAPSHOT_FILE = _DATA_DIR / "db.json"


class PersistenceError(Exception):
    """Raised when the snapshot cannot be written."""


def folder_to_dict(folder: Folder) -> dict[str, Any]:
    """Serialize the persisted fields of *folder* and its subtree."""
    return {
        "id": folder.id,
        "name": folder.name,
        "created": folder.created,
        "last_refreshed": folder.last_refreshed,
        "folders": [folder_to_dict(child) for child in folder.folders],
        "files": [
            {"id": f.id, "name": f.name, "size": f.size, "created": f.created}
            for f in folder.files
        ],
    }


def folder_from_dict(data: dict[str, Any]) -> Folder:
    """Build a disconnected folder tree from its serialized form."""
    return Folder(
        id=data["id"],
        name=data["name"],
        created=int(data.get("created", 0)),
        last_refreshed=int(data.get("last_refreshed", 0)),
        folders=[folder_from_dict(child) for child in data.get("folders", [])],
        files=[
            File(id=f["id"], name=f["name"], size=int(f.get("size", 0)), created=int(f.get("created", 0)))
            for f in data.get("files", [])
        ],
    )


class SnapshotStore:
    """Reads and writes the whole tree as one JSON document.

    The snapshot is only a cache of the remote tree: a missing or broken
    file means starting from an empty root.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or SNAPSHOT_FILE

    def save(self, root: Folder) -> None:
        """Write the tree atomically.

        Raises:
            PersistenceError: If the snapshot could not be written.
        """
        payload = json.dumps(folder_to_dict(root), ensure_ascii=False)
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            raise PersistenceError(f"Failed to save snapshot {self.path}: {exc}") from exc
        log.debug("Saved snapshot: %s (%d bytes)", self.path, len(payload))

    def load(self, policy: StalenessPolicy) -> Folder:
        """Load the tree, or return a new empty root if there is none."""
        root = self._read()
        if root is None:
            root = Folder()
        self.bind(root)
        aggregate_tree(root, policy)
        return root

    def bind(self, root: Folder) -> None:
        """Point every folder's save hook at this store's root save."""

        def save_root() -> None:
            self.save(root)

        for folder in root.walk():
            folder.save_hook = save_root

    def _read(self) -> Folder | None:
        if not self.path.exists():
            log.info("No snapshot at %s, starting empty", self.path)
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return folder_from_dict(data)
        except (
            json.JSONDecodeError, OSError, KeyError, TypeError, ValueError, AttributeError, RecursionError
        ) as e:
            log.warning("Could not load snapshot from %s, starting empty: %s", self.path, e)
            return None
