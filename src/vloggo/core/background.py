"""Fire-and-forget dispatch for cleanup passes and alert delivery.

Work submitted here is never awaited by the log call that triggered it.
Inside a running event loop it becomes a task on that loop; from plain
synchronous code it runs on a small worker pool with its own loop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import Any

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


async def _await(factory: JobFactory) -> Any:
    return await factory()


class BackgroundRunner:
    """Run coroutine factories in the background and log their failures."""

    def __init__(self, *, max_workers: int = 2, thread_name_prefix: str = "vloggo") -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self._max_workers = max_workers
        self._thread_name_prefix = thread_name_prefix
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()
        self._futures: set[Future[Any]] = set()
        self._tasks: set[asyncio.Task[Any]] = set()

    def submit(self, factory: JobFactory, *, label: str) -> None:
        """Schedule ``factory()`` without waiting for it."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(_await(factory), name=f"{self._thread_name_prefix}:{label}")
            self._tasks.add(task)
            task.add_done_callback(lambda t: self._task_done(t, label))
            return

        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix=self._thread_name_prefix,
                )
            future = self._executor.submit(self._run_in_thread, factory, label)
            self._futures.add(future)
        future.add_done_callback(self._future_done)

    @staticmethod
    def _run_in_thread(factory: JobFactory, label: str) -> None:
        try:
            asyncio.run(_await(factory))
        except Exception as exc:
            logger.error("Background job %s failed: %s", label, exc, exc_info=exc)

    def _task_done(self, task: asyncio.Task[Any], label: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug("Background job %s was cancelled", label)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background job %s failed: %s", label, exc, exc_info=exc)

    def _future_done(self, future: Future[Any]) -> None:
        with self._lock:
            self._futures.discard(future)

    @property
    def pending(self) -> int:
        with self._lock:
            self._futures = {f for f in self._futures if not f.done()}
            return len(self._futures) + len(self._tasks)

    def join(self, timeout: float | None = None) -> bool:
        """Wait for worker-pool jobs; return False if some are still running."""
        with self._lock:
            futures = list(self._futures)
        if not futures:
            return True
        done, not_done = wait_futures(futures, timeout=timeout)
        with self._lock:
            self._futures -= done
        return not not_done

    async def drain(self) -> None:
        """Await every outstanding job from async code."""
        tasks = list(self._tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await asyncio.to_thread(self.join)

    def shutdown(self, *, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
