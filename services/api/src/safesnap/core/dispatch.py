"""Post-commit handoff of background jobs to a bounded in-process worker pool.

Request handlers register work on a UnitOfWork while the transaction is open.
The callbacks run only after ``engine.begin()`` commits, so a worker never
sees an incident row that was rolled back. Jobs then go onto a bounded queue
consumed by a few daemon threads. A full queue rejects the job; nothing
is persisted for it and the operator can re-trigger enrichment or
generation through the API.
"""

from __future__ import annotations

import logging
import queue
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass
class Job:
    name: str
    fn: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)


def _run(job: Job) -> None:
    try:
        job.fn(*job.args, **job.kwargs)
    except Exception:
        logger.exception("background_job_failed", extra={"job": job.name})


class BackgroundDispatcher:
    """Bounded queue + fixed pool of worker threads."""

    def __init__(self, workers: int = 2, capacity: int = 50):
        self._workers = workers
        self._queue: queue.Queue = queue.Queue(maxsize=capacity)
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        if self._threads:
            return
        for i in range(self._workers):
            t = threading.Thread(
                target=self._loop, name=f"safesnap-worker-{i}", daemon=True
            )
            t.start()
            self._threads.append(t)
        logger.info("dispatcher_started", extra={"workers": self._workers})

    def _loop(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is _STOP:
                    return
                _run(job)
            finally:
                self._queue.task_done()

    def submit(self, name: str, fn: Callable[..., Any], *args, **kwargs) -> bool:
        """Enqueue a job. Returns False when the queue is full."""
        try:
            self._queue.put_nowait(Job(name, fn, args, kwargs))
        except queue.Full:
            logger.warning("background_job_rejected", extra={"job": name})
            return False
        return True

    def pending(self) -> int:
        return self._queue.qsize()

    def join(self) -> None:
        """Block until every queued job has run."""
        self._queue.join()

    def shutdown(self) -> None:
        for _ in self._threads:
            self._queue.put(_STOP)
        for t in self._threads:
            t.join()
        self._threads = []
        logger.info("dispatcher_stopped")


class InlineDispatcher:
    """Runs jobs on the calling thread. Used when the worker pool size is 0."""

    def start(self) -> None:
        pass

    def submit(self, name: str, fn: Callable[..., Any], *args, **kwargs) -> bool:
        _run(Job(name, fn, args, kwargs))
        return True

    def pending(self) -> int:
        return 0

    def join(self) -> None:
        pass

    def shutdown(self) -> None:
        pass


def build_dispatcher(workers: int, capacity: int):
    if workers <= 0:
        return InlineDispatcher()
    return BackgroundDispatcher(workers=workers, capacity=capacity)


class UnitOfWork:
    """An open transaction plus callbacks to run once it has committed."""

    def __init__(self, conn: Connection):
        self.conn = conn
        self._after_commit: list[Callable[[], Any]] = []

    def after_commit(self, fn: Callable[[], Any]) -> None:
        self._after_commit.append(fn)


@contextmanager
def transaction(engine: Engine) -> Iterator[UnitOfWork]:
    """Commit on success, then fire after-commit callbacks in order.

    On any exception the transaction rolls back and no callback runs.
    """
    with engine.begin() as conn:
        uow = UnitOfWork(conn)
        yield uow
    for fn in uow._after_commit:
        try:
            fn()
        except Exception:
            logger.exception("after_commit_callback_failed")
