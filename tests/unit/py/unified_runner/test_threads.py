"""Unit tests for background thread entities."""

import threading

import pytest

from unified_runner.errors import AssertionMismatch
from unified_runner.threads import BackgroundThread


@pytest.fixture
def thread():
    thread = BackgroundThread("thread0")
    yield thread
    thread.shutdown()


class TestBackgroundThread:
    """P0 Critical: runOnThread / waitForThread semantics."""

    @pytest.mark.p0
    def test_tasks_run_in_submission_order(self, thread, context):
        seen = []
        for i in range(5):
            thread.submit(lambda i=i: seen.append(i))

        thread.join(context, timeout=2.0)

        assert seen == [0, 1, 2, 3, 4]
        assert thread.tasks == []

    @pytest.mark.p0
    def test_failure_keeps_original_message(self, thread, context):
        def fail():
            raise RuntimeError("insert failed: duplicate key")

        thread.submit(fail)

        with pytest.raises(AssertionMismatch) as exc_info:
            thread.join(context, timeout=2.0)

        assert "insert failed: duplicate key" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.p0
    def test_task_list_empty_after_failure(self, thread, context):
        """A failed wait leaves nothing to wait for next time."""
        thread.submit(lambda: 1 / 0)
        thread.submit(lambda: None)

        with pytest.raises(AssertionMismatch):
            thread.join(context, timeout=2.0)

        assert thread.tasks == []
        thread.join(context, timeout=2.0)

    @pytest.mark.p0
    def test_timeout(self, thread, context):
        release = threading.Event()
        thread.submit(lambda: release.wait(5))

        try:
            with pytest.raises(AssertionMismatch) as exc_info:
                thread.join(context, timeout=0.05)
        finally:
            release.set()

        assert "Timed out" in exc_info.value.reason
        assert thread.tasks == []

    def test_join_with_no_tasks(self, thread, context):
        thread.join(context, timeout=0.1)
