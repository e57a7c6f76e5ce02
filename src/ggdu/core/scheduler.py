"""Background refresh worker that serializes all tree mutations."""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from queue import Empty, Queue
from typing import Iterator

from ggdu.core.engine import DeepRefresh, RefreshEngine
from ggdu.models.node import Folder

log = logging.getLogger(__name__)


class EventKind(Enum):
    PROGRESS = "progress"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(eq=False)
class RefreshJob:
    """One queued call to ``RefreshEngine.ensure_data``."""

    id: int
    folder: Folder
    force: bool = False
    deep: DeepRefresh | None = None
    fetched: bool = False
    error: BaseException | None = None
    finished: threading.Event = field(default_factory=threading.Event, repr=False)
    _cancelled: bool = field(default=False, repr=False)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Skip the job if still queued, or stop a running deep walk."""
        self._cancelled = True
        if self.deep is not None:
            self.deep.cancel()


@dataclass(frozen=True)
class RefreshEvent:
    """Posted by the worker for the presentation loop to consume."""

    job: RefreshJob
    kind: EventKind
    folder: Folder
    fraction: float = 0.0

    @property
    def terminal(self) -> bool:
        return self.kind is not EventKind.PROGRESS


class RefreshScheduler:
    """Runs refresh jobs one at a time on a single daemon thread.

    Every mutation of the tree happens on that thread, so a refresh's
    merge, aggregation and propagation are never interleaved with another
    refresh.  Progress and completion are reported as ``RefreshEvent``
    objects on ``events``.
    """

    def __init__(self, engine: RefreshEngine) -> None:
        self.engine = engine
        self.events: Queue[RefreshEvent] = Queue()
        self._jobs: Queue[RefreshJob | None] = Queue()
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._current: RefreshJob | None = None

    def submit(self, folder: Folder, force: bool = False, deep: bool = False) -> RefreshJob:
        """Queue a refresh of *folder* and return its job handle."""
        job = RefreshJob(id=next(self._ids), folder=folder, force=force)
        if deep:
            job.deep = DeepRefresh(on_update=lambda f: self._post(job, EventKind.PROGRESS, f))
        self._jobs.put(job)
        self._ensure_worker()
        log.debug("Queued refresh #%d of %s (force=%s, deep=%s)", job.id, folder.path, force, deep)
        return job

    def cancel_current(self) -> RefreshJob | None:
        """Cancel the job that is currently running, if any."""
        with self._lock:
            job = self._current
        if job is not None:
            job.cancel()
        return job

    def close(self, timeout: float | None = None) -> None:
        """Finish queued jobs and stop the worker."""
        with self._lock:
            thread = self._thread
        if thread is None:
            return
        self._jobs.put(None)
        thread.join(timeout)

    def poll(self) -> list[RefreshEvent]:
        """Return all events posted so far without blocking."""
        pending: list[RefreshEvent] = []
        while True:
            try:
                pending.append(self.events.get_nowait())
            except Empty:
                return pending

    def iter_events(self, job: RefreshJob, timeout: float | None = None) -> Iterator[RefreshEvent]:
        """Yield events until *job* has reported its terminal event."""
        while True:
            event = self.events.get(timeout=timeout)
            yield event
            if event.job is job and event.terminal:
                return

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._worker, name="ggdu-refresh", daemon=True)
            self._thread.start()

    def _worker(self) -> None:
        while True:
            job = self._jobs.get()
            if job is None:
                return
            with self._lock:
                self._current = job
            try:
                self._run(job)
            finally:
                with self._lock:
                    self._current = None
                job.finished.set()

    def _run(self, job: RefreshJob) -> None:
        if job.cancelled:
            self._post(job, EventKind.CANCELLED, job.folder)
            return
        try:
            job.fetched = self.engine.ensure_data(job.folder, job.force, job.deep)
        except Exception as exc:
            log.error("Refresh of %s failed: %s", job.folder.path, exc)
            job.error = exc
            self._post(job, EventKind.FAILED, job.folder)
            return

        kind = EventKind.CANCELLED if job.cancelled else EventKind.DONE
        self._post(job, kind, job.folder)

    def _post(self, job: RefreshJob, kind: EventKind, folder: Folder) -> None:
        if job.deep is not None:
            fraction = job.deep.fraction
        else:
            fraction = 1.0 if kind is EventKind.DONE else 0.0
        self.events.put(RefreshEvent(job=job, kind=kind, folder=folder, fraction=fraction))
