"""Fixed-size pool of worker threads, each running its own selector event loop."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import os
import threading
from typing import Any, Coroutine, Optional

logger = logging.getLogger(__name__)


class EventLoopPool:
    """Runs coroutines on a fixed set of event loops, round-robin.

    Coroutines submitted to the pool share no loop-affine state with the
    submitting thread; their completions fire on a worker thread.

    Args:
        workers: Number of loops/threads; defaults to ``os.cpu_count()``.
        name: Prefix of the worker thread names.
    """

    def __init__(self, workers: Optional[int] = None, name: str = "clamd-io") -> None:
        size = workers if workers is not None else (os.cpu_count() or 1)
        if size < 1:
            raise ValueError(f"a pool needs at least one worker, got {size}")
        self._lock = threading.Lock()
        self._pending: set[concurrent.futures.Future[Any]] = set()
        self._next = 0
        self._closed = False
        self._loops: list[asyncio.AbstractEventLoop] = []
        self._threads: list[threading.Thread] = []
        for index in range(size):
            loop = asyncio.SelectorEventLoop()
            thread = threading.Thread(
                target=_run_loop,
                args=(loop,),
                name=f"{name}-{index}",
                daemon=True,
            )
            thread.start()
            self._loops.append(loop)
            self._threads.append(thread)
        logger.debug("started %d event loop workers", size)

    @property
    def size(self) -> int:
        return len(self._loops)

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future[Any]:
        """Schedule *coro* on the next loop and return a thread-safe future.

        Raises:
            RuntimeError: If the pool has been shut down.
        """
        with self._lock:
            if self._closed:
                coro.close()
                raise RuntimeError("event loop pool is shut down")
            loop = self._loops[self._next % len(self._loops)]
            self._next += 1
            future = asyncio.run_coroutine_threadsafe(coro, loop)
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """Stop accepting work, wait for outstanding coroutines, stop the loops.

        Coroutines still running after *timeout* seconds (``None`` waits
        forever) are cancelled.

        Returns:
            ``True`` if everything finished before the timeout.
        """
        if threading.current_thread() in self._threads:
            raise RuntimeError("cannot shut down the pool from one of its workers")
        with self._lock:
            if self._closed:
                return True
            self._closed = True
            pending = set(self._pending)

        _, not_done = concurrent.futures.wait(pending, timeout=timeout)
        if not_done:
            logger.warning("cancelling %d unfinished tasks at shutdown", len(not_done))
        for loop in self._loops:
            loop.call_soon_threadsafe(loop.stop)
        for thread in self._threads:
            thread.join()
        logger.debug("event loop workers stopped")
        return not not_done

    def _discard(self, future: concurrent.futures.Future[Any]) -> None:
        with self._lock:
            self._pending.discard(future)


def _run_loop(loop: asyncio.AbstractEventLoop) -> None:
    asyncio.set_event_loop(loop)
    try:
        loop.run_forever()
        tasks = asyncio.all_tasks(loop)
        for task in tasks:
            task.cancel()
        if tasks:
            loop.run_until_complete(asyncio.gather(*tasks, return_exceptions=True))
        loop.run_until_complete(loop.shutdown_asyncgens())
    finally:
        loop.close()
