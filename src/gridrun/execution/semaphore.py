"""Asynchronous admission control for remote jobs.

``AsyncSemaphore`` caps the number of remote jobs in flight. A token is taken
before a job is submitted and handed back when the poller sees the job reach
a terminal state, so the wait for capacity can span minutes. Waiting never
blocks a thread: ``acquire()`` suspends the calling task only.

Invariants:
    ``available + outstanding == limit`` and ``0 <= available <= limit``.

A release without a matching acquire, or an acquire observed with negative
capacity, means the token accounting is corrupt. Both raise
``BookkeepingViolation`` to the caller and are logged at error level; the
counters are never patched up.

Example::

    semaphore = AsyncSemaphore(3)
    await semaphore.acquire()
    try:
        handle = await provider.start_job(request)
    except Exception:
        await semaphore.release()
        raise
"""

from __future__ import annotations

import asyncio
from collections import deque

from gridrun.core.errors import BookkeepingViolation, ConfigError
from gridrun.core.logging import get_logger

logger = get_logger(__name__)


class AsyncSemaphore:
    """FIFO counting semaphore with strict release bookkeeping.

    All counter and waiter-queue mutation happens under one ``asyncio.Lock``.
    A release hands its token directly to the oldest waiter that is still
    waiting, so a woken waiter never competes with new arrivals.
    """

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ConfigError(f"Concurrency limit must be >= 1, got {limit}", context={"limit": limit})
        self._limit = limit
        self._available = limit
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._lock = asyncio.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def available(self) -> int:
        return self._available

    @property
    def outstanding(self) -> int:
        return self._limit - self._available

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def acquire(self) -> None:
        """Take a token, suspending until one is available."""
        async with self._lock:
            if self._available < 0:
                logger.error(
                    "semaphore.negative_available",
                    available=self._available, limit=self._limit,
                )
                raise BookkeepingViolation(
                    f"acquire() with negative available tokens ({self._available})",
                    context={"available": self._available, "limit": self._limit},
                )
            if self._available > 0:
                self._available -= 1
                return
            waiter = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)

        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # token was handed over before the cancellation landed
                await self.release()
            raise

    async def release(self) -> None:
        """Return a token, waking the oldest live waiter if there is one."""
        async with self._lock:
            if self._available >= self._limit:
                logger.error(
                    "semaphore.release_without_acquire",
                    available=self._available, limit=self._limit,
                )
                raise BookkeepingViolation(
                    f"release() with no outstanding tokens (limit {self._limit})",
                    context={"available": self._available, "limit": self._limit},
                )
            while self._waiters:
                waiter = self._waiters.popleft()
                if not waiter.done():
                    waiter.set_result(None)
                    return
            self._available += 1

    async def __aenter__(self) -> AsyncSemaphore:
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.release()

    def __repr__(self) -> str:
        return (
            f"AsyncSemaphore(limit={self._limit}, available={self._available}, "
            f"waiting={self.waiting})"
        )
