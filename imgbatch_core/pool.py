from __future__ import annotations

import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable

from . import state
from .cancellation import CancellationSignal
from .constants import DEFAULT_QUEUE_FACTOR, DEFAULT_SHUTDOWN_TIMEOUT


class WorkerPool:
    """
    Fixed-size thread pool with a bounded backlog and a timed drain on shutdown.

    ``submit`` returns immediately while fewer than ``queue_size`` tasks are
    unfinished and blocks the producer otherwise. A queued task whose turn
    comes after ``cancel`` is set is not run; its future resolves to ``None``.

    Use it as a context manager so ``shutdown`` runs on every exit path::

        with WorkerPool(workers=4, cancel=cancel) as pool:
            pool.submit(fn, path)
    """

    def __init__(
        self,
        workers: int | None = None,
        queue_size: int | None = None,
        cancel: CancellationSignal | None = None,
        shutdown_timeout: float | None = DEFAULT_SHUTDOWN_TIMEOUT,
    ) -> None:
        self.workers = workers if workers is not None else (os.cpu_count() or 1)
        if self.workers <= 0:
            raise ValueError(f"workers must be positive (got {self.workers}).")
        self.queue_size = queue_size if queue_size is not None else self.workers * DEFAULT_QUEUE_FACTOR
        if self.queue_size <= 0:
            raise ValueError(f"queue_size must be positive (got {self.queue_size}).")
        self.cancel = cancel
        self.shutdown_timeout = shutdown_timeout

        self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="imgbatch-worker")
        self._slots = threading.BoundedSemaphore(self.queue_size)
        self._pending: set[Future] = set()
        self._lock = threading.Lock()
        self._closed = False
        self._drained: bool | None = None

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.shutdown(self.shutdown_timeout)
        return False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def drained(self) -> bool | None:
        """Result of ``shutdown``: True for a clean drain, None while still open."""
        return self._drained

    def cancel_pending(self) -> int:
        """Cancel tasks that have not started yet and return how many were cancelled."""
        with self._lock:
            outstanding = list(self._pending)
        return sum(1 for future in outstanding if future.cancel())

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """
        Queue ``fn(*args, **kwargs)`` for a worker and return its future.

        Raises:
            RuntimeError: if the pool has been shut down.
        """
        if self._closed:
            raise RuntimeError("Cannot submit to a WorkerPool that has been shut down.")

        self._slots.acquire()
        try:
            future = self._executor.submit(self._run, fn, args, kwargs)
        except RuntimeError:
            self._slots.release()
            raise

        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._release)
        return future

    def _run(self, fn: Callable[..., Any], args: tuple, kwargs: dict[str, Any]) -> Any:
        if self.cancel is not None and self.cancel.is_set():
            return None
        return fn(*args, **kwargs)

    def _release(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        self._slots.release()

    def shutdown(self, timeout: float | None = None) -> bool:
        """
        Stop accepting work and wait up to ``timeout`` seconds for queued and running tasks.

        Tasks still queued after the timeout are cancelled; tasks still running are
        abandoned (threads cannot be killed, they finish in the background).
        Returns True when everything finished inside the timeout. Repeated calls
        return the first result.
        """
        if self._drained is not None:
            return self._drained
        self._closed = True

        with self._lock:
            outstanding = list(self._pending)
        _, not_done = wait(outstanding, timeout=timeout)

        if not_done:
            cancelled = sum(1 for future in not_done if future.cancel())
            state.log.warning(
                "Worker pool did not drain within %ss: cancelled %s queued tasks, abandoned %s running.",
                timeout,
                cancelled,
                len(not_done) - cancelled,
            )
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._drained = False
        else:
            self._executor.shutdown(wait=True)
            self._drained = True
            state.log.debug("Worker pool drained cleanly (%s workers).", self.workers)
        return self._drained
