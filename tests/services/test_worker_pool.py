"""Tests for the bounded WorkerPool."""

import threading
import time

import pytest


class TestWorkerPool:
    """Test WorkerPool execution and error reporting."""

    def test_size_must_be_positive(self):
        """Test a pool needs at least one worker."""
        from commitguard.services.worker_pool import WorkerPool

        with pytest.raises(ValueError):
            WorkerPool(size=0)

    @pytest.mark.asyncio
    async def test_outcomes_in_submission_order(self):
        """Test outcomes line up with submitted tasks regardless of finish order."""
        from commitguard.services.worker_pool import Task, WorkerPool

        def slow(value, delay):
            time.sleep(delay)
            return value

        tasks = [
            Task("a", lambda: slow("a", 0.05)),
            Task("b", lambda: slow("b", 0.0)),
            Task("c", lambda: slow("c", 0.01)),
        ]

        outcomes = await WorkerPool(size=3).run(tasks)

        assert [o.task_id for o in outcomes] == ["a", "b", "c"]
        assert [o.value for o in outcomes] == ["a", "b", "c"]
        assert all(o.ok for o in outcomes)

    @pytest.mark.asyncio
    async def test_errors_returned_not_raised(self):
        """Test a failing task reports on the error channel and others still run."""
        from commitguard.services.worker_pool import Task, WorkerPool

        def boom():
            raise RuntimeError("bad file")

        outcomes = await WorkerPool(size=2).run([Task("ok", lambda: 1), Task("bad", boom), Task("ok2", lambda: 2)])

        assert [o.ok for o in outcomes] == [True, False, True]
        assert isinstance(outcomes[1].error, RuntimeError)
        assert outcomes[1].value is None

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self):
        """Test no more than ``size`` tasks run at once."""
        from commitguard.services.worker_pool import Task, WorkerPool

        lock = threading.Lock()
        state = {"running": 0, "peak": 0}

        def work():
            with lock:
                state["running"] += 1
                state["peak"] = max(state["peak"], state["running"])
            time.sleep(0.02)
            with lock:
                state["running"] -= 1
            return True

        outcomes = await WorkerPool(size=2).run([Task(str(i), work) for i in range(6)])

        assert len(outcomes) == 6
        assert state["peak"] <= 2

    @pytest.mark.asyncio
    async def test_empty_task_list(self):
        """Test running nothing returns nothing."""
        from commitguard.services.worker_pool import WorkerPool

        assert await WorkerPool().run([]) == []
