"""One-level folder enumeration through the ``gdrive`` command line tool."""

from __future__ import annotations

import logging
import subprocess
from typing import Protocol

from ggdu.models.listing import EntryKind, ListingEntry
from ggdu.utils import has_command, parse_date, parse_size

log = logging.getLogger(__name__)

FIELD_SEPARATOR = "^^^^^"

LISTING_HEADER = FIELD_SEPARATOR.join(["Id", "Name", "Type", "Size", "Created"])

# Entry types gdrive reports that have no size of their own.
IGNORED_TYPES = frozenset({"document", "shortcut"})

DEFAULT_MAX_ENTRIES = 300

# Timeout for one gdrive invocation (seconds).
_GDRIVE_TIMEOUT = 300


class ListerError(Exception):
    """Raised when a folder could not be listed."""


class ProtocolViolation(ListerError):
    """The listing output did not have the expected shape."""


class TransportFailure(ListerError):
    """The listing process could not be run or exited abnormally."""


class Lister(Protocol):
    def list(self, folder_id: str) -> list[ListingEntry]: ...


class GDriveLister:
    """Lists one folder level via ``gdrive files list``.

    At most *max_entries* children are returned per folder; there is no
    pagination.
    """

    def __init__(
        self,
        command: str = "gdrive",
        max_entries: int = DEFAULT_MAX_ENTRIES,
        timeout: float = _GDRIVE_TIMEOUT,
    ) -> None:
        self.command = command
        self.max_entries = max_entries
        self.timeout = timeout

    def is_available(self) -> bool:
        return has_command(self.command)

    def build_command(self, folder_id: str) -> list[str]:
        cmd = [
            self.command, "files", "list",
            "--field-separator", FIELD_SEPARATOR,
            "--max", str(self.max_entries),
        ]
        if folder_id:
            cmd += ["--parent", folder_id]
        return cmd

    def list(self, folder_id: str) -> list[ListingEntry]:
        """Return the children of *folder_id* (empty string = drive root).

        Raises:
            TransportFailure: gdrive could not be started, timed out or
                exited with a non-zero status.
            ProtocolViolation: the output header, an entry type or a field
                could not be understood.
        """
        return parse_listing(self._run(self.build_command(folder_id)))

    def _run(self, cmd: list[str]) -> str:
        log.debug("--- %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise TransportFailure(f"{cmd[0]} timed out after {self.timeout:g}s")
        except OSError as exc:
            raise TransportFailure(f"Failed to start {cmd[0]}: {exc}")

        stderr = proc.stderr.strip()
        if proc.returncode != 0:
            raise TransportFailure(f"{cmd[0]} failed (exit {proc.returncode}): {stderr}")
        if stderr:
            log.warning("%s: %s", cmd[0], stderr)
        return proc.stdout


def parse_listing(output: str) -> list[ListingEntry]:
    """Parse ``gdrive files list`` output into listing entries."""
    lines = output.split("\n")
    header = lines[0].rstrip("\r")
    if header != LISTING_HEADER:
        raise ProtocolViolation(f"Unexpected header in gdrive list: {header!r}")

    entries: list[ListingEntry] = []
    for line in lines[1:]:
        line = line.rstrip("\r")
        if not line:
            continue
        entry = _parse_line(line)
        if entry is not None:
            entries.append(entry)
    return entries


def _parse_line(line: str) -> ListingEntry | None:
    parts = line.split(FIELD_SEPARATOR)
    if len(parts) != 5:
        raise ProtocolViolation(f"Expected 5 fields, got {len(parts)}: {line!r}")

    entry_id, name, entry_type, size, created = parts
    if entry_type in IGNORED_TYPES:
        return None

    try:
        match entry_type:
            case "regular":
                return ListingEntry(
                    id=entry_id,
                    name=name,
                    kind=EntryKind.FILE,
                    size=parse_size(size),
                    created=parse_date(created),
                )
            case "folder":
                return ListingEntry(
                    id=entry_id,
                    name=name,
                    kind=EntryKind.FOLDER,
                    created=parse_date(created),
                )
    except ValueError as exc:
        raise ProtocolViolation(f"Bad entry {name!r}: {exc}")

    raise ProtocolViolation(f"Unknown type of file: {entry_type!r}")
