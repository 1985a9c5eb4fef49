"""Serialized access to the shared inference engine.

    identify (async) -> slot (asyncio.Semaphore) -> worker thread -> engine.infer

With the default single slot, overlapping identifications queue and run one
at a time. A caller that cannot get a slot within ``queue_timeout`` gets an
InferenceError instead of waiting forever.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

from fungiscan.errors import InferenceError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from fungiscan.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Bounded worker threads in front of the engine."""

    def __init__(self, max_concurrent: int = 1, queue_timeout: float = 5.0) -> None:
        self._slots = asyncio.Semaphore(max_concurrent)
        self._workers = ThreadPoolExecutor(max_workers=max_concurrent, thread_name_prefix="fungiscan-infer")
        self._timeout = queue_timeout
        self._lock = threading.Lock()
        self._running = 0
        self._waiting = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> InferencePool:
        return cls(max_concurrent=settings.max_concurrent, queue_timeout=settings.queue_timeout)

    def _bump(self, *, running: int = 0, waiting: int = 0) -> None:
        with self._lock:
            self._running += running
            self._waiting += waiting

    @contextlib.asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        self._bump(waiting=1)
        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=self._timeout)
        except TimeoutError as exc:
            logger.warning("No inference slot free after %.1fs", self._timeout)
            raise InferenceError(f"Inference queue timed out after {self._timeout}s") from exc
        finally:
            self._bump(waiting=-1)

        self._bump(running=1)
        try:
            yield
        finally:
            self._slots.release()
            self._bump(running=-1)

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run ``func(*args)`` on a worker thread once a slot is free.

        Raises:
            InferenceError: If the queue timeout expires first.
        """
        async with self._slot():
            return await asyncio.get_running_loop().run_in_executor(self._workers, func, *args)

    @property
    def active_count(self) -> int:
        with self._lock:
            return self._running

    @property
    def queue_depth(self) -> int:
        """Callers currently waiting for a slot."""
        with self._lock:
            return self._waiting

    def shutdown(self) -> None:
        self._workers.shutdown(wait=True)
