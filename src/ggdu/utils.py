"""Shared utility functions."""

from __future__ import annotations

import logging
import math
import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path

log = logging.getLogger(__name__)

_UNITS = ("kb", "mb", "gb", "tb")

_MULTIPLIERS = {
    "b": 1,
    "kb": 1024,
    "mb": 1024**2,
    "gb": 1024**3,
    "tb": 1024**4,
}

_SIZE_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*([A-Za-z]+)?$")

_PROGRESS_RUNES = " ▏▎▍▌▋▊▉█"

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def has_command(name: str) -> bool:
    """Check if a command exists on the system."""
    return shutil.which(name) is not None


def xdg_cache_home() -> Path:
    """Return XDG_CACHE_HOME, defaulting to ~/.cache."""
    return Path(os.environ.get("XDG_CACHE_HOME", Path.home() / ".cache"))


def xdg_config_home() -> Path:
    """Return XDG_CONFIG_HOME, defaulting to ~/.config."""
    return Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))


def format_size(size_bytes: int) -> str:
    """Render a byte count compactly: '', '512b', '2.0kb', '3.0mb'."""
    if size_bytes == 0:
        return ""
    if size_bytes < 1024:
        return f"{size_bytes}b"

    value = size_bytes / 1024
    for unit in _UNITS[:-1]:
        if value < 1024:
            return f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}{_UNITS[-1]}"


def parse_size(text: str) -> int:
    """Parse a listing size such as '12.5 MB', '300 b' or '4096'.

    Raises:
        ValueError: If *text* is neither a bare integer nor a number
            followed by one of b/kb/mb/gb/tb.
    """
    match = _SIZE_RE.match(text.strip())
    if match is None:
        raise ValueError(f"Failed to parse size: {text!r}")

    number, unit = match.groups()
    if unit is None:
        if "." in number:
            raise ValueError(f"Failed to parse size: {text!r}")
        return int(number)

    multiplier = _MULTIPLIERS.get(unit.lower())
    if multiplier is None:
        raise ValueError(f"Unknown size unit in {text!r}")
    return int(float(number) * multiplier)


def parse_date(text: str) -> int:
    """Parse a 'YYYY-MM-DD HH:MM:SS' UTC timestamp into Unix seconds."""
    dt = datetime.strptime(text.strip(), DATE_FORMAT).replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def format_date(timestamp: int) -> str:
    if timestamp == 0:
        return ""
    return datetime.fromtimestamp(timestamp, timezone.utc).strftime(DATE_FORMAT)


def progressbar(progress: float, width: int) -> str:
    """Render *progress* (0.0 - 1.0) as a bar of *width* characters.

    Partially filled cells use eighth-block characters.
    """
    progress = min(max(progress, 0.0), 1.0)
    cells = progress * width
    full = math.floor(cells)
    if full >= width:
        return _PROGRESS_RUNES[-1] * width

    partial = round((cells - full) * (len(_PROGRESS_RUNES) - 1))
    return (_PROGRESS_RUNES[-1] * full + _PROGRESS_RUNES[partial]).ljust(width)


def format_relative_time(timestamp: int, now: float | None = None) -> str:
    """Format a Unix timestamp as relative time ('2 hours ago')."""
    if timestamp == 0:
        return "never"
    if now is None:
        now = datetime.now(timezone.utc).timestamp()
    seconds = int(now - timestamp)

    if seconds < 60:
        return "just now"
    if seconds < 3600:
        m = seconds // 60
        return f"{m} minute{'s' if m != 1 else ''} ago"
    if seconds < 86400:
        h = seconds // 3600
        return f"{h} hour{'s' if h != 1 else ''} ago"
    d = seconds // 86400
    if d < 30:
        return f"{d} day{'s' if d != 1 else ''} ago"
    mo = d // 30
    if mo < 12:
        return f"{mo} month{'s' if mo != 1 else ''} ago"
    y = d // 365
    return f"{y} year{'s' if y != 1 else ''} ago"
