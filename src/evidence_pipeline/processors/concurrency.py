"""Bounded-concurrency executor for the evidence pipeline."""

import asyncio
from typing import Awaitable, Callable, Dict, TypeVar

__all__ = ["ConcurrencyLimiter"]

T = TypeVar("T")


class ConcurrencyLimiter:
    """Runs coroutine factories with at most ``max_concurrent`` in flight.

    Excess submissions wait in FIFO order (``asyncio.Semaphore`` wakes
    waiters in the order they blocked). A finished task, successful or
    not, frees its slot for the next waiter. Queued tasks are never
    dropped.

    Attributes:
        max_concurrent: Maximum number of tasks running at once
    """

    def __init__(self, max_concurrent: int = 2) -> None:
        """Initialize limiter.

        Args:
            max_concurrent: Maximum number of concurrent tasks (must be >= 1)

        Raises:
            ValueError: If max_concurrent is below 1
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent: int = max_concurrent
        self._semaphore: asyncio.Semaphore = asyncio.Semaphore(max_concurrent)
        self._active: int = 0
        self._pending: int = 0

    @property
    def active(self) -> int:
        """Number of tasks currently running."""
        return self._active

    @property
    def pending(self) -> int:
        """Number of tasks waiting for a slot."""
        return self._pending

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        """Wait for a slot, then await ``factory()``."""
        self._pending += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._pending -= 1
        self._active += 1
        try:
            return await factory()
        finally:
            self._active -= 1
            self._semaphore.release()

    def submit(self, factory: Callable[[], Awaitable[T]]) -> "asyncio.Task[T]":
        """Schedule ``factory`` and return a task resolving to its result.

        Must be called from a running event loop.
        """
        return asyncio.ensure_future(self.run(factory))

    def stats(self) -> Dict[str, int]:
        return {"active": self._active, "pending": self._pending, "max_concurrent": self.max_concurrent}
