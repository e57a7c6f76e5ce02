"""Shared test fixtures."""

from __future__ import annotations

import pytest

import ggdu.storage as storage
from ggdu.core.aggregator import StalenessPolicy
from ggdu.core.engine import RefreshEngine
from ggdu.core.lister import ListerError
from ggdu.models.listing import EntryKind, ListingEntry
from ggdu.settings import Settings

NOW = 1_700_000_000
HORIZON = 7 * 24 * 3600


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRemote:
    """In-memory remote tree served through the lister interface."""

    def __init__(self) -> None:
        self.children: dict[str, list[ListingEntry]] = {"": []}
        self.errors: dict[str, ListerError] = {}
        self.calls: list[str] = []

    def add_folder(self, parent_id: str, folder_id: str, name: str, created: int = 0) -> str:
        self.children.setdefault(parent_id, []).append(
            ListingEntry(id=folder_id, name=name, kind=EntryKind.FOLDER, created=created)
        )
        self.children.setdefault(folder_id, [])
        return folder_id

    def add_file(self, parent_id: str, file_id: str, name: str, size: int, created: int = 0) -> str:
        self.children.setdefault(parent_id, []).append(
            ListingEntry(id=file_id, name=name, kind=EntryKind.FILE, size=size, created=created)
        )
        return file_id

    def fail(self, folder_id: str, error: ListerError | None = None) -> None:
        self.errors[folder_id] = error or ListerError(f"cannot list {folder_id}")

    def list(self, folder_id: str) -> list[ListingEntry]:
        self.calls.append(folder_id)
        if folder_id in self.errors:
            raise self.errors[folder_id]
        return list(self.children.get(folder_id, []))


@pytest.fixture(autouse=True)
def isolate_xdg(tmp_path, monkeypatch):
    """Redirect config and cache directories to a temp directory."""
    config = tmp_path / "config"
    cache = tmp_path / "cache"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config))
    monkeypatch.setenv("XDG_CACHE_HOME", str(cache))
    monkeypatch.setattr(storage, "_DATA_DIR", cache / "ggdu")
    monkeypatch.setattr(storage, "SNAPSHOT_FILE", cache / "ggdu" / "db.json")
    monkeypatch.setattr(Settings, "_instance", None)
    return tmp_path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def policy(clock):
    return StalenessPolicy(horizon=HORIZON, clock=clock)


@pytest.fixture
def remote():
    """A small remote drive.

    /
    ├── docs/          (d1)
    │   ├── a.pdf      100
    │   └── old/       (d3)
    │       └── b.txt  50
    ├── media/         (d2)
    │   └── movie.mkv  1000
    └── readme.md      10
    """
    r = FakeRemote()
    r.add_folder("", "d1", "docs")
    r.add_folder("", "d2", "media")
    r.add_file("", "f0", "readme.md", 10)
    r.add_file("d1", "f1", "a.pdf", 100)
    r.add_folder("d1", "d3", "old")
    r.add_file("d3", "f3", "b.txt", 50)
    r.add_file("d2", "f2", "movie.mkv", 1000)
    return r


@pytest.fixture
def store(tmp_path):
    return storage.SnapshotStore(tmp_path / "snapshot" / "db.json")


@pytest.fixture
def root(store, policy):
    return store.load(policy)


@pytest.fixture
def engine(remote, policy):
    return RefreshEngine(remote, policy)
