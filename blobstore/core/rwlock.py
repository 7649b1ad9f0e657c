"""
Reader-writer lock for asyncio tasks.

Many readers may hold the lock together; a writer holds it alone.
Writer-preferring: once a writer is queued, new readers wait behind it,
so a steady stream of readers cannot starve writers.

Cancellation-safe: a task cancelled while waiting leaves the lock
counters unchanged and wakes whoever can now proceed.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class RWLock:
    """
    Usage:
        lock = RWLock()

        async with lock.read():
            ...  # shared

        async with lock.write():
            ...  # exclusive
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @property
    def readers(self) -> int:
        """Number of readers currently holding the lock."""
        return self._readers

    @property
    def writer_active(self) -> bool:
        return self._writer

    async def acquire_read(self) -> None:
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writer and self._writers_waiting == 0
            )
            self._readers += 1

    async def release_read(self) -> None:
        async with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    async def acquire_write(self) -> None:
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0
                )
            finally:
                self._writers_waiting -= 1
                # Readers held back by this waiter may proceed if it gave up
                self._cond.notify_all()
            self._writer = True

    async def release_write(self) -> None:
        async with self._cond:
            self._writer = False
            self._cond.notify_all()

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        """Hold the lock in shared mode."""
        await self.acquire_read()
        try:
            yield
        finally:
            await _release(self.release_read)

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        """Hold the lock in exclusive mode."""
        await self.acquire_write()
        try:
            yield
        finally:
            await _release(self.release_write)


async def _release(release) -> None:
    # Release must complete even if the owning task is being cancelled;
    # the condition's internal lock is uncontended outside of waits.
    await asyncio.shield(release())
