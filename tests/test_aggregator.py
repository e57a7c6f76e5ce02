"""Tests for size and freshness aggregation."""

from __future__ import annotations

from ggdu.core.aggregator import StalenessPolicy, aggregate, aggregate_tree, tally
from ggdu.models.node import File, Folder

from conftest import HORIZON, NOW


def _derived(folder: Folder) -> list[tuple]:
    return [
        (f.path, f.size, f.known, f.unknown, sorted(f.folder_index), sorted(f.file_index))
        for f in folder.walk()
    ]


def _assert_sizes(folder: Folder) -> None:
    for f in folder.walk():
        assert f.size == sum(x.size for x in f.files) + sum(c.size for c in f.folders)


def _tree() -> Folder:
    root = Folder(last_refreshed=NOW)
    docs = root.attach_folder(Folder(id="d1", name="docs", last_refreshed=NOW - 10))
    docs.attach_file(File(id="f1", name="a.pdf", size=100))
    old = docs.attach_folder(Folder(id="d3", name="old"))
    old.attach_file(File(id="f3", name="b.txt", size=50))
    media = root.attach_folder(Folder(id="d2", name="media", last_refreshed=NOW - 2 * HORIZON))
    media.attach_file(File(id="f2", name="movie.mkv", size=1000))
    root.attach_file(File(id="f0", name="readme.md", size=10))
    return root


class TestStalenessPolicy:
    def test_never_fetched_is_stale(self, policy):
        assert policy.is_stale(Folder())

    def test_horizon_boundary(self, policy):
        assert policy.is_stale(Folder(last_refreshed=NOW - 2 * HORIZON))
        assert policy.is_fresh(Folder(last_refreshed=NOW - HORIZON // 2))
        assert policy.is_fresh(Folder(last_refreshed=NOW - HORIZON))

    def test_clock_is_injected(self, clock, policy):
        folder = Folder(last_refreshed=NOW)
        assert policy.is_fresh(folder)
        clock.advance(HORIZON + 1)
        assert policy.is_stale(folder)
        assert policy.now() == NOW + HORIZON + 1


class TestAggregate:
    def test_sizes_are_summed_bottom_up(self, policy):
        root = _tree()
        aggregate_tree(root, policy)

        assert root.size == 1160
        assert root.folders[0].size == 150
        assert root.folders[0].folders[0].size == 50
        _assert_sizes(root)

    def test_immediate_children_classified(self, policy):
        root = _tree()
        aggregate_tree(root, policy)

        # docs fresh, media stale; "old" is a grandchild and not counted here
        assert (root.known, root.unknown) == (1, 1)
        assert (root.folders[0].known, root.folders[0].unknown) == (0, 1)

    def test_indices_and_paths_rebuilt(self, policy):
        root = _tree()
        root.folders[0].path = "/garbage"
        aggregate_tree(root, policy)

        assert set(root.folder_index) == {"docs", "media"}
        assert set(root.file_index) == {"readme.md"}
        assert root.folder_index["docs"].folders[0].path == "/docs/old"
        assert root.folders[1].parent is root

    def test_idempotent(self, policy):
        root = _tree()
        aggregate_tree(root, policy)
        first = _derived(root)
        aggregate(root, policy)
        aggregate(root, policy)
        assert _derived(root) == first

    def test_resets_previous_values(self, policy):
        root = _tree()
        root.size = 99999
        root.known = 7
        root.folder_index = {"stale": Folder()}
        aggregate_tree(root, policy)
        assert root.size == 1160
        assert root.known + root.unknown == 2
        assert "stale" not in root.folder_index

    def test_duplicate_names_keep_last_in_index(self, policy):
        root = Folder()
        root.attach_folder(Folder(id="a", name="same"))
        second = root.attach_folder(Folder(id="b", name="same"))
        aggregate_tree(root, policy)
        assert root.folder_index == {"same": second}

    def test_empty_folder(self, policy):
        root = Folder()
        aggregate_tree(root, policy)
        assert (root.size, root.known, root.unknown) == (0, 0, 0)
        assert root.path == "/"


class TestTally:
    def test_recounts_immediate_children_only(self, clock, policy):
        root = _tree()
        aggregate_tree(root, policy)
        root.folders[1].last_refreshed = NOW
        tally(root, policy)
        assert (root.known, root.unknown) == (2, 0)
        # sizes untouched
        assert root.size == 1160

    def test_follows_clock(self, clock):
        policy = StalenessPolicy(horizon=60, clock=clock)
        root = _tree()
        tally(root, policy)
        assert root.known == 1
        clock.advance(120)
        tally(root, policy)
        assert root.known == 0
