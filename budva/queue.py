"""In-process FIFO task queue with sequential execution.

Tasks are plain callables. A background thread started with :meth:`TaskQueue.start`
runs one task per interval. :meth:`TaskQueue.process_all` and
:meth:`TaskQueue.process_batch` run tasks synchronously, which suits tests.
An exception raised by a task is caught and logged, never propagated.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable, Deque, Optional

logger = logging.getLogger(__name__)

Task = Callable[[], object]


class TaskQueue:
    """Thread-safe FIFO queue whose tasks run one after another."""

    def __init__(self, interval: float = 1.0) -> None:
        self.interval = interval
        self._tasks: Deque[Task] = deque()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the background thread that runs one task per interval."""
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="task-queue", daemon=True
        )
        self._thread.start()

    def close(self) -> None:
        """Stop the background thread; queued tasks stay in the queue."""
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def add(self, task: Task) -> None:
        """Append a task to the end of the queue."""
        with self._lock:
            self._tasks.append(task)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def process_one(self) -> bool:
        """Run the task at the head of the queue; return False if it was empty."""
        task = self._pop()
        if task is None:
            return False
        self._execute(task)
        return True

    def process_all(self) -> None:
        """Run every task, including those added while running."""
        while self.process_one():
            pass

    def process_batch(self) -> None:
        """Run only the tasks queued at the moment of the call."""
        for _ in range(len(self)):
            if not self.process_one():
                return

    def _pop(self) -> Optional[Task]:
        with self._lock:
            return self._tasks.popleft() if self._tasks else None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.process_one()

    @staticmethod
    def _execute(task: Task) -> None:
        try:
            task()
        except Exception:
            logger.exception("Task panicked")