"""
Owner execution context.

All marker and surface mutation happens on one thread. Other threads hand work
to that thread by posting callables onto its queue.
"""
import queue
import threading
import time
from typing import Callable

from friendmap.utils.logger import logger

Task = Callable[[], None]


class OwnerContext:
    """
    FIFO task queue drained by the thread that owns the map.

    `post` is safe from any thread. `run_pending` must be called from the owner
    thread, which by default is the thread that created the context.
    """

    def __init__(self, owner: threading.Thread = None):
        self._owner = owner or threading.current_thread()
        self._tasks: "queue.Queue[Task]" = queue.Queue()

    @property
    def owner(self) -> threading.Thread:
        return self._owner

    def is_owner_thread(self) -> bool:
        return threading.current_thread() is self._owner

    def post(self, task: Task) -> None:
        """Queue a task to run on the owner thread."""
        self._tasks.put(task)

    def pending(self) -> int:
        return self._tasks.qsize()

    def _check_owner(self, method: str) -> None:
        if not self.is_owner_thread():
            raise RuntimeError(
                f"{method} called from {threading.current_thread().name}, "
                f"owner is {self._owner.name}"
            )

    def _run(self, task: Task) -> None:
        try:
            task()
        except Exception:
            logger.opt(exception=True).error("Owner task failed")

    def run_pending(self) -> int:
        """
        Run queued tasks in order until the queue is empty.

        Tasks posted while draining also run. A failing task is logged and
        does not stop the ones behind it.

        Returns:
            Number of tasks executed

        Raises:
            RuntimeError: If called from a thread other than the owner
        """
        self._check_owner("run_pending")

        executed = 0
        while True:
            try:
                task = self._tasks.get_nowait()
            except queue.Empty:
                return executed
            self._run(task)
            executed += 1

    def run_until(self, predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
        """
        Block on the queue, running tasks until `predicate()` holds.

        Lets the owner thread wait for completions posted by background workers.

        Returns:
            True if the predicate became true, False on timeout
        """
        self._check_owner("run_until")

        deadline = time.monotonic() + timeout
        while not predicate():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            try:
                task = self._tasks.get(timeout=min(remaining, 0.05))
            except queue.Empty:
                continue
            self._run(task)
        return True
