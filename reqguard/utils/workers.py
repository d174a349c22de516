"""Bounded thread pool with caller-runs backpressure."""

from __future__ import annotations

import concurrent.futures
import threading
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class BoundedWorkerPool:
    """Thread pool holding at most ``max_workers + queue_capacity`` tasks.

    When every slot is taken, ``submit`` runs the task in the calling thread
    and returns an already-completed future, which slows the producer down
    instead of queueing without limit.
    """

    def __init__(
        self,
        max_workers: int = 4,
        queue_capacity: int = 100,
        thread_name_prefix: str = "reqguard-",
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if queue_capacity < 0:
            raise ValueError("queue_capacity must be >= 0")
        self.max_workers = max_workers
        self.queue_capacity = queue_capacity
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=thread_name_prefix
        )
        self._slots = threading.BoundedSemaphore(max_workers + queue_capacity)
        self._lock = threading.Lock()
        self._in_flight = 0
        self._completed = 0
        self._caller_runs = 0
        self._shutdown = False

    def _release(self, _future: concurrent.futures.Future) -> None:
        with self._lock:
            self._in_flight -= 1
            self._completed += 1
        self._slots.release()

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> concurrent.futures.Future[T]:
        if self._shutdown:
            raise RuntimeError("worker pool is shut down")
        if not self._slots.acquire(blocking=False):
            with self._lock:
                self._caller_runs += 1
            logger.debug("worker_pool_caller_runs", in_flight=self._in_flight)
            future: concurrent.futures.Future[T] = concurrent.futures.Future()
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as exc:
                future.set_exception(exc)
            return future

        with self._lock:
            self._in_flight += 1
        try:
            future = self._executor.submit(fn, *args, **kwargs)
        except RuntimeError:
            with self._lock:
                self._in_flight -= 1
            self._slots.release()
            raise
        future.add_done_callback(self._release)
        return future

    def submit_with_timeout(self, fn: Callable[..., T], timeout: float, *args: Any, **kwargs: Any) -> T:
        """Run *fn* on the pool and wait up to *timeout* seconds for the result.

        On timeout the task is cancelled (a task that already started keeps
        running) and ``TimeoutError`` is raised.
        """
        future = self.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.warning("worker_task_timeout", timeout=timeout)
            raise

    def submit_batch(self, tasks: Iterable[Callable[[], T]]) -> list[concurrent.futures.Future[T]]:
        return [self.submit(task) for task in tasks]

    def wait_for_all(
        self, futures: Iterable[concurrent.futures.Future[Any]], timeout: float | None = None
    ) -> bool:
        """True if every future finished within *timeout*."""
        _done, not_done = concurrent.futures.wait(list(futures), timeout=timeout)
        return not not_done

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "max_workers": self.max_workers,
                "queue_capacity": self.queue_capacity,
                "in_flight": self._in_flight,
                "completed": self._completed,
                "caller_runs": self._caller_runs,
                "shutdown": self._shutdown,
            }

    def shutdown(self, wait: bool = True) -> None:
        if self._shutdown:
            return
        self._shutdown = True
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
        logger.info("worker_pool_shutdown", completed=self._completed)
