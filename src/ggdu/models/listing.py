"""Entries returned by a one-level remote listing."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class EntryKind(Enum):
    FILE = "regular"
    FOLDER = "folder"


@dataclass(frozen=True, slots=True)
class ListingEntry:
    """Single child of a listed folder."""

    id: str
    name: str
    kind: EntryKind
    size: int = 0
    created: int = 0

    @property
    def is_folder(self) -> bool:
        return self.kind is EntryKind.FOLDER
