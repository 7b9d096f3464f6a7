from __future__ import annotations

import asyncio
from collections import deque
from typing import Deque


class ConcurrencyLimiter:
    """Counting semaphore with strict FIFO admission.

    ``release()`` hands its permit straight to the oldest waiter, so the
    admitted count never exceeds ``limit`` and a late arrival can never
    overtake a queued one. All state lives on one event loop; no locking is
    needed because nothing here awaits between reading and writing it.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.limit = limit
        self._active = 0
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def active(self) -> int:
        return self._active

    @property
    def waiting(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    async def acquire(self) -> None:
        if self._active < self.limit and not self._waiters:
            self._active += 1
            return
        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # Admitted just as we were cancelled: pass the permit on.
                self.release()
            else:
                try:
                    self._waiters.remove(fut)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        if self._active <= 0:
            raise RuntimeError("release() called more times than acquire()")
        self._active -= 1
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            # The permit moves to the waiter in the same step.
            self._active += 1
            waiter.set_result(None)
            break

    async def __aenter__(self) -> "ConcurrencyLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()
