"""Bottom-up size and freshness aggregation over the folder tree."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from ggdu.models.node import ROOT_PATH, Folder

log = logging.getLogger(__name__)

Clock = Callable[[], float]

DEFAULT_HORIZON = 7 * 24 * 3600


@dataclass(frozen=True)
class StalenessPolicy:
    """Decides whether a cached folder must be fetched again.

    A folder is stale when more than *horizon* seconds have passed since
    its last refresh.  Folders that were never fetched are always stale.
    """

    horizon: float = DEFAULT_HORIZON
    clock: Clock = field(default=time.time, compare=False)

    def now(self) -> int:
        return int(self.clock())

    def is_stale(self, folder: Folder) -> bool:
        if folder.last_refreshed == 0:
            return True
        return self.clock() - folder.last_refreshed > self.horizon

    def is_fresh(self, folder: Folder) -> bool:
        return not self.is_stale(folder)


def aggregate(folder: Folder, policy: StalenessPolicy) -> None:
    """Recompute size, freshness tallies and indices for *folder*'s subtree.

    Children are aggregated first so their sizes are final before being
    summed.  Child paths and parent links are re-derived on the way down.
    Re-running without an intervening mutation yields identical values.
    """
    folder.size = 0
    folder.known = 0
    folder.unknown = 0
    folder.folder_index = {}
    folder.file_index = {}

    for child in folder.folders:
        child.parent = folder
        child.path = folder.child_path(child.name)
        aggregate(child, policy)
        folder.folder_index[child.name] = child
        folder.size += child.size
        if policy.is_stale(child):
            folder.unknown += 1
        else:
            folder.known += 1

    for file in folder.files:
        folder.file_index[file.name] = file
        folder.size += file.size


def aggregate_tree(root: Folder, policy: StalenessPolicy) -> None:
    """Aggregate a whole tree, anchoring the root at ``/``."""
    root.parent = None
    root.path = ROOT_PATH
    aggregate(root, policy)
    log.debug("Aggregated tree: %d bytes, %d/%d known", root.size, root.known, root.known + root.unknown)


def tally(folder: Folder, policy: StalenessPolicy) -> None:
    """Recount only the immediate known/unknown tally of *folder*."""
    known = sum(1 for child in folder.folders if policy.is_fresh(child))
    folder.known = known
    folder.unknown = len(folder.folders) - known
