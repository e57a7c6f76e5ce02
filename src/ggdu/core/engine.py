"""Staleness-driven refresh of the cached folder tree."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from ggdu.core.aggregator import StalenessPolicy, aggregate, tally
from ggdu.core.lister import Lister, ListerError
from ggdu.models.listing import ListingEntry
from ggdu.models.node import File, Folder
from ggdu.utils import progressbar

log = logging.getLogger(__name__)

UpdateCallback = Callable[[Folder], None]


@dataclass
class DeepRefresh:
    """Shared state of one recursive refresh.

    ``planned`` grows as folders are discovered, so the total is only known
    once the walk is over.  ``completed`` counts folders whose own refresh
    step is finished, whether fetched, skipped as fresh or failed.
    ``fetched`` counts only the folders that were actually listed.
    """

    on_update: UpdateCallback | None = None
    planned: int = 1
    completed: int = 0
    fetched: int = 0
    failures: dict[str, ListerError] = field(default_factory=dict)
    cancelled: bool = False
    _peak: float = field(default=0.0, repr=False)

    @property
    def fraction(self) -> float:
        """Completed share of the work, never moving backwards."""
        return self._peak

    def advance(self) -> None:
        self.completed += 1
        self._peak = max(self._peak, self.completed / self.planned)

    @property
    def done(self) -> bool:
        return self.completed >= self.planned

    def cancel(self) -> None:
        """Stop descending into further folders."""
        self.cancelled = True

    def notify(self, folder: Folder) -> None:
        if self.on_update:
            self.on_update(folder)


class RefreshEngine:
    """Fetches folder listings when the cache is stale and keeps aggregates current."""

    def __init__(self, lister: Lister, policy: StalenessPolicy) -> None:
        self.lister = lister
        self.policy = policy

    def ensure_data(
        self,
        folder: Folder,
        force: bool = False,
        deep: DeepRefresh | None = None,
    ) -> bool:
        """Make sure *folder*'s listing is cached and not stale.

        Args:
            folder: Folder to refresh.
            force: Fetch even if the cached listing is still fresh.
            deep: Recurse into every child folder, sharing this progress state.

        Returns:
            True if the folder was fetched, False on a cache hit.

        Raises:
            ListerError: If *folder* itself could not be listed.  Failures of
                descendants during a deep refresh are collected in
                ``deep.failures`` instead.
            PersistenceError: If the snapshot could not be saved.
            InvariantViolation: If *folder* has no save hook.
        """
        if not force and self.policy.is_fresh(folder):
            log.debug("Cache hit: %s", folder.path)
            if deep is not None:
                self._complete(folder, deep)
            return False

        save = folder.require_save_hook()
        log.info("Fetching %s%s", folder.path, " (force refresh)" if force else "")
        entries = self.lister.list(folder.id)

        self.merge(folder, entries)
        save()

        self._reaggregate(folder)

        if deep is not None:
            deep.fetched += 1
            deep.planned += len(folder.folders)
            for child in list(folder.folders):
                if deep.cancelled:
                    log.info("Deep refresh cancelled below %s", folder.path)
                    break
                try:
                    self.ensure_data(child, force, deep)
                except ListerError as exc:
                    log.warning("Failed to refresh %s: %s", child.path, exc)
                    deep.failures[child.path] = exc
                    self._complete(child, deep)
                self._reaggregate(folder)
                deep.notify(folder)
            self._complete(folder, deep)
            deep.notify(folder)

        return True

    def merge(self, folder: Folder, entries: list[ListingEntry]) -> None:
        """Merge *entries* into *folder*'s children by identifier.

        Known children are updated in place, unknown ones are appended.
        Nothing is removed.
        """
        folders = {child.id: child for child in folder.folders}
        files = {file.id: file for file in folder.files}
        added = 0

        for entry in entries:
            if entry.is_folder:
                child = folders.get(entry.id)
                if child is None:
                    child = folder.attach_folder(Folder(id=entry.id, name=entry.name, created=entry.created))
                    folders[entry.id] = child
                    added += 1
                else:
                    child.name = entry.name
                    child.created = entry.created
            else:
                file = files.get(entry.id)
                if file is None:
                    files[entry.id] = folder.attach_file(
                        File(id=entry.id, name=entry.name, size=entry.size, created=entry.created)
                    )
                    added += 1
                else:
                    file.name = entry.name
                    file.size = entry.size
                    file.created = entry.created

        folder.last_refreshed = self.policy.now()
        log.debug("Merged %d entries into %s (%d new)", len(entries), folder.path, added)

    def _reaggregate(self, folder: Folder) -> None:
        """Aggregate *folder* and push the resulting change to its ancestors."""
        old_size = folder.size
        aggregate(folder, self.policy)
        self._propagate(folder, folder.size - old_size)

    def _propagate(self, folder: Folder, size_change: int) -> None:
        # Only the immediate tallies are recounted; sizes move by the delta.
        for ancestor in folder.ancestors():
            ancestor.size += size_change
            tally(ancestor, self.policy)

    def _complete(self, folder: Folder, deep: DeepRefresh) -> None:
        deep.advance()
        log.debug(
            "progress: %s %d/%d (%s)",
            progressbar(deep.fraction, 30), deep.completed, deep.planned, folder.path,
        )
