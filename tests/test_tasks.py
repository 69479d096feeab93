"""
Tests for the background runner
"""
import threading

import pytest

from ledger.tasks import BackgroundRunner


class TestBackgroundRunner:
    """Tests for BackgroundRunner"""

    @pytest.fixture
    def errors(self):
        return []

    @pytest.fixture
    def runner(self, errors):
        runner = BackgroundRunner(max_workers=2, on_error=lambda name, e: errors.append((name, e)))
        yield runner
        runner.shutdown()

    def test_job_result(self, runner):
        future = runner.submit("add", lambda a, b: a + b, 2, 3)
        assert future.result(timeout=5) == 5
        assert runner.failures == []

    def test_failure_recorded(self, runner, errors):
        def fail():
            raise RuntimeError("render failed")

        future = runner.submit("render 421.2/SKP/2024/0001", fail)
        runner.join(timeout=5)

        assert future.result() is None
        assert [name for name, _ in runner.failures] == ["render 421.2/SKP/2024/0001"]
        assert isinstance(errors[0][1], RuntimeError)

    def test_failing_callback_is_contained(self, errors):
        def broken_callback(name, e):
            raise ValueError("callback failed")

        runner = BackgroundRunner(on_error=broken_callback)
        runner.submit("job", lambda: 1 / 0)
        runner.join(timeout=5)
        runner.shutdown()

        assert len(runner.failures) == 1

    def test_join_waits_for_jobs(self, runner):
        done = threading.Event()
        runner.submit("slow", lambda: done.wait(0.2) or done.set())

        runner.join(timeout=5)

        assert done.is_set()
