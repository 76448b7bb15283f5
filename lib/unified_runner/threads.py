"""Background Threads - serial task queues behind runOnThread / waitForThread"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, List

from .constants import Defaults
from .context import AssertionContext


class BackgroundThread:
    """One worker that runs submitted operations in submission order.

    Outstanding work is abandoned at shutdown: pending submissions are
    cancelled and the running one is not waited for.
    """

    def __init__(self, thread_id: str):
        self.thread_id = thread_id
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"unified-{thread_id}")
        self._lock = threading.Lock()
        self._tasks: List[Future] = []

    def submit(self, task: Callable[[], None]) -> Future:
        future = self._executor.submit(task)
        with self._lock:
            self._tasks.append(future)
        return future

    @property
    def tasks(self) -> List[Future]:
        with self._lock:
            return list(self._tasks)

    def clear_tasks(self) -> None:
        with self._lock:
            self._tasks = []

    def join(self, context: AssertionContext, timeout: float = Defaults.THREAD_TASK_TIMEOUT) -> None:
        """Wait for every queued task, each bounded by ``timeout`` seconds.

        The first failure or timeout is raised as an assertion mismatch that
        keeps the task's own message. The task list is empty afterwards either
        way.
        """
        try:
            for future in self.tasks:
                try:
                    future.result(timeout=timeout)
                except FutureTimeout:
                    raise context.fail(
                        f"Timed out after {timeout}s waiting for thread {self.thread_id}"
                    )
                except Exception as e:
                    raise context.fail(str(e)) from e
        finally:
            self.clear_tasks()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
