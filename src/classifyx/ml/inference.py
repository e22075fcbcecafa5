"""Inference concurrency layer.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> classification pipeline

Requests beyond the semaphore limit queue with a 5s timeout, then get 503.
If the awaiting request is cancelled, the worker thread is told to stop at
its next stage boundary. Its slot is freed only once that thread returns.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from classifyx.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEMAPHORE_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Manages the semaphore and thread pool for classification work."""

    def __init__(self, settings: Settings) -> None:
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="classify",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object, **kwargs: object) -> T:
        """Submit a synchronous function to the thread pool.

        Acquires the semaphore (with timeout), runs the function in the
        executor, then releases. ``func`` receives a ``cancel_event`` keyword
        argument that is set if this coroutine is cancelled.

        Raises:
            TimeoutError: If the semaphore cannot be acquired within the timeout.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(
                self._semaphore.acquire(),
                timeout=SEMAPHORE_TIMEOUT_SECONDS,
            )
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        cancel_event = threading.Event()
        call = functools.partial(func, *args, cancel_event=cancel_event, **kwargs)
        with self._counter_lock:
            self._active_count += 1
        loop = asyncio.get_running_loop()
        future = self._executor.submit(call)
        held_by_worker = False
        try:
            return await asyncio.wrap_future(future)
        except asyncio.CancelledError:
            logger.info("Request cancelled; signalling worker to stop")
            cancel_event.set()
            # The slot stays taken until the worker thread actually returns.
            future.add_done_callback(lambda _: loop.call_soon_threadsafe(self._release_slot))
            held_by_worker = True
            raise
        finally:
            if not held_by_worker:
                self._release_slot()

    def _release_slot(self) -> None:
        self._semaphore.release()
        with self._counter_lock:
            self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of currently running classification tasks."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a semaphore slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)
