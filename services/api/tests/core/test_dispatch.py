"""Tests for post-commit dispatch and the worker pool."""

import threading
from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from services.api.src.safesnap.core.dispatch import (
    BackgroundDispatcher,
    InlineDispatcher,
    build_dispatcher,
    transaction,
)
from services.api.src.safesnap.db.models import users


class TestTransaction:
    def test_callbacks_run_after_commit(self, engine):
        seen = []

        def check_row_visible():
            with engine.connect() as conn:
                seen.append(conn.execute(select(users.c.email)).scalar())

        with transaction(engine) as uow:
            uow.conn.execute(users.insert().values(
                id="u1", email="a@example.com", full_name="A", role="WORKER",
                created_at=datetime.now(timezone.utc),
            ))
            uow.after_commit(check_row_visible)
            assert seen == []

        assert seen == ["a@example.com"]

    def test_rollback_skips_callbacks(self, engine):
        calls = []
        with pytest.raises(RuntimeError):
            with transaction(engine) as uow:
                uow.after_commit(lambda: calls.append(1))
                raise RuntimeError("boom")
        assert calls == []

    def test_failing_callback_does_not_stop_the_rest(self, engine):
        calls = []

        def bad():
            raise ValueError("nope")

        with transaction(engine) as uow:
            uow.after_commit(bad)
            uow.after_commit(lambda: calls.append("second"))

        assert calls == ["second"]


class TestInlineDispatcher:
    def test_runs_synchronously(self):
        calls = []
        assert InlineDispatcher().submit("job", calls.append, 1) is True
        assert calls == [1]

    def test_swallows_job_errors(self):
        def bad():
            raise RuntimeError("boom")

        assert InlineDispatcher().submit("job", bad) is True


class TestBackgroundDispatcher:
    def test_runs_jobs_on_workers(self):
        dispatcher = BackgroundDispatcher(workers=2, capacity=10)
        dispatcher.start()
        results = []
        lock = threading.Lock()

        def job(n):
            with lock:
                results.append(n)

        for n in range(5):
            assert dispatcher.submit(f"job-{n}", job, n)
        dispatcher.join()
        dispatcher.shutdown()

        assert sorted(results) == [0, 1, 2, 3, 4]

    def test_full_queue_rejects(self):
        dispatcher = BackgroundDispatcher(workers=1, capacity=1)
        # Not started: nothing drains the queue.
        assert dispatcher.submit("first", lambda: None) is True
        assert dispatcher.submit("second", lambda: None) is False
        assert dispatcher.pending() == 1

    def test_job_failure_keeps_worker_alive(self):
        dispatcher = BackgroundDispatcher(workers=1, capacity=5)
        dispatcher.start()
        results = []

        def bad():
            raise RuntimeError("boom")

        dispatcher.submit("bad", bad)
        dispatcher.submit("good", results.append, "ok")
        dispatcher.join()
        dispatcher.shutdown()

        assert results == ["ok"]


class TestBuildDispatcher:
    def test_zero_workers_is_inline(self):
        assert isinstance(build_dispatcher(0, 50), InlineDispatcher)

    def test_pool(self):
        assert isinstance(build_dispatcher(2, 50), BackgroundDispatcher)
