"""Tests for the background refresh scheduler."""

from __future__ import annotations

import threading

import pytest

from ggdu.core.engine import RefreshEngine
from ggdu.core.lister import TransportFailure
from ggdu.core.scheduler import EventKind, RefreshScheduler
from ggdu.storage import PersistenceError

TIMEOUT = 5


class BlockingRemote:
    """Wraps a remote so a test can hold the worker inside ``list``."""

    def __init__(self, remote, block_on: str) -> None:
        self.remote = remote
        self.block_on = block_on
        self.entered = threading.Event()
        self.release = threading.Event()
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def list(self, folder_id):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if folder_id == self.block_on:
                self.entered.set()
                self.release.wait(TIMEOUT)
            return self.remote.list(folder_id)
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def scheduler(engine):
    s = RefreshScheduler(engine)
    yield s
    s.close(TIMEOUT)


class TestRefreshScheduler:
    def test_single_refresh_posts_done(self, scheduler, root):
        job = scheduler.submit(root)
        events = list(scheduler.iter_events(job, timeout=TIMEOUT))

        assert [e.kind for e in events] == [EventKind.DONE]
        assert events[0].fraction == 1.0
        assert job.fetched is True
        assert job.finished.is_set()
        assert root.size == 10

    def test_deep_refresh_posts_progress(self, scheduler, root):
        job = scheduler.submit(root, deep=True)
        events = list(scheduler.iter_events(job, timeout=TIMEOUT))

        kinds = [e.kind for e in events]
        assert kinds[-1] is EventKind.DONE
        assert EventKind.PROGRESS in kinds
        fractions = [e.fraction for e in events]
        assert fractions == sorted(fractions)
        assert fractions[-1] == 1.0
        assert root.size == 1160

    def test_lister_failure_is_reported(self, scheduler, remote, root):
        remote.fail("", TransportFailure("gdrive failed (exit 1)"))
        job = scheduler.submit(root)
        events = list(scheduler.iter_events(job, timeout=TIMEOUT))

        assert events[-1].kind is EventKind.FAILED
        assert isinstance(job.error, TransportFailure)
        assert root.folders == []

    def test_fatal_errors_are_handed_to_consumer(self, scheduler, root):
        def broken() -> None:
            raise PersistenceError("disk full")

        root.save_hook = broken
        job = scheduler.submit(root)
        list(scheduler.iter_events(job, timeout=TIMEOUT))
        assert isinstance(job.error, PersistenceError)

    def test_jobs_run_one_at_a_time(self, remote, policy, root):
        blocking = BlockingRemote(remote, block_on="")
        scheduler = RefreshScheduler(RefreshEngine(blocking, policy))
        try:
            first = scheduler.submit(root, force=True, deep=True)
            assert blocking.entered.wait(TIMEOUT)
            second = scheduler.submit(root, force=True, deep=True)
            blocking.release.set()

            list(scheduler.iter_events(second, timeout=TIMEOUT))
        finally:
            scheduler.close(TIMEOUT)

        assert first.finished.is_set() and second.finished.is_set()
        assert blocking.max_active == 1
        assert len(root.folders) == 2
        assert root.size == 1160

    def test_cancel_running_deep_refresh(self, remote, policy, root, store):
        blocking = BlockingRemote(remote, block_on="d1")
        scheduler = RefreshScheduler(RefreshEngine(blocking, policy))
        try:
            job = scheduler.submit(root, deep=True)
            assert blocking.entered.wait(TIMEOUT)
            assert scheduler.cancel_current() is job
            blocking.release.set()
            events = list(scheduler.iter_events(job, timeout=TIMEOUT))
        finally:
            scheduler.close(TIMEOUT)

        assert events[-1].kind is EventKind.CANCELLED
        assert "d2" not in remote.calls
        assert root.folders[0].last_refreshed != 0
        assert store.path.exists()

    def test_cancelled_job_is_skipped(self, remote, policy, root):
        blocking = BlockingRemote(remote, block_on="")
        scheduler = RefreshScheduler(RefreshEngine(blocking, policy))
        try:
            first = scheduler.submit(root)
            assert blocking.entered.wait(TIMEOUT)
            second = scheduler.submit(root, force=True)
            second.cancel()
            blocking.release.set()
            events = list(scheduler.iter_events(second, timeout=TIMEOUT))
        finally:
            scheduler.close(TIMEOUT)

        assert first.fetched
        assert events[-1].kind is EventKind.CANCELLED
        assert remote.calls == [""]

    def test_poll_is_non_blocking(self, scheduler, root):
        assert scheduler.poll() == []
        job = scheduler.submit(root)
        assert job.finished.wait(TIMEOUT)
        events = scheduler.poll()
        assert [e.kind for e in events] == [EventKind.DONE]
        assert events[0].terminal

    def test_cancel_current_when_idle(self, scheduler):
        assert scheduler.cancel_current() is None

    def test_worker_restarts_after_close(self, scheduler, root):
        job = scheduler.submit(root)
        list(scheduler.iter_events(job, timeout=TIMEOUT))
        scheduler.close(TIMEOUT)

        job = scheduler.submit(root, force=True)
        events = list(scheduler.iter_events(job, timeout=TIMEOUT))
        assert events[-1].kind is EventKind.DONE
