"""ggdu data models."""

from ggdu.models.listing import EntryKind, ListingEntry
from ggdu.models.node import File, Folder, InvariantViolation

__all__ = [
    "EntryKind",
    "File",
    "Folder",
    "InvariantViolation",
    "ListingEntry",
]
