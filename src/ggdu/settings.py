"""JSON-backed settings store and the typed refresh configuration."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ggdu.utils import xdg_cache_home, xdg_config_home

log = logging.getLogger(__name__)

_SETTINGS_DIR = "ggdu"
_SETTINGS_FILE = "settings.json"

DEFAULTS: dict[str, Any] = {
    "refresh.staleness_days": 7,
    "lister.command": "gdrive",
    "lister.max_entries": 300,
    "lister.timeout": 300,
    "snapshot.path": None,
}


class SettingsError(Exception):
    """Raised when a setting is unknown or cannot be written."""


class Settings:
    """Persistent settings backed by a JSON file.

    Keys use dot notation and map onto nested objects in the file, so
    ``lister.max_entries`` is stored as ``{"lister": {"max_entries": ...}}``.
    Only keys listed in ``DEFAULTS`` can be set.
    """

    _instance: Settings | None = None

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or (xdg_config_home() / _SETTINGS_DIR / _SETTINGS_FILE)
        self._data: dict[str, Any] = self._load()

    @classmethod
    def instance(cls) -> Settings:
        """Return the singleton settings instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value of *key*, else *default*, else its built-in default."""
        node: Any = self._data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return DEFAULTS.get(key) if default is None else default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        """Store *value* under *key* and write the file.

        Raises:
            SettingsError: If *key* is not a known setting or the file
                cannot be written.
        """
        if key not in DEFAULTS:
            raise SettingsError(f"Unknown setting: {key}")
        *parents, name = key.split(".")
        node = self._data
        for part in parents:
            if not isinstance(node.get(part), dict):
                node[part] = {}
            node = node[part]
        node[name] = value
        self._save()

    def items(self) -> list[tuple[str, Any]]:
        """Every known setting with its effective value, sorted by key."""
        return [(key, self.get(key)) for key in sorted(DEFAULTS)]

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            log.warning("Could not load settings from %s: %s", self._path, e)
            return {}
        if not isinstance(data, dict):
            log.warning("Ignoring settings in %s: expected an object", self._path)
            return {}
        return data

    def _save(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(
                json.dumps(self._data, indent=2, ensure_ascii=False) + "\n",
                encoding="utf-8",
            )
        except OSError as e:
            raise SettingsError(f"Could not save settings to {self._path}: {e}") from e


@dataclass(frozen=True)
class RefreshConfig:
    """Values needed to build the lister, policy and snapshot store."""

    staleness_horizon: float
    lister_command: str
    max_entries: int
    lister_timeout: float
    snapshot_path: Path

    @classmethod
    def from_settings(cls, settings: Settings) -> RefreshConfig:
        snapshot = settings.get("snapshot.path")
        return cls(
            staleness_horizon=float(settings.get("refresh.staleness_days")) * 24 * 3600,
            lister_command=str(settings.get("lister.command")),
            max_entries=int(settings.get("lister.max_entries")),
            lister_timeout=float(settings.get("lister.timeout")),
            snapshot_path=Path(snapshot).expanduser() if snapshot else xdg_cache_home() / "ggdu" / "db.json",
        )
