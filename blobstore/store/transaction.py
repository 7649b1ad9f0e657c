"""
Transaction helper — begin, run, then commit or roll back.

Every store operation runs its statements through transaction(), even a
single SELECT, so table creation and all CRUD share one failure shape:
a unit of work that raises (or is cancelled) leaves nothing behind for
later operations to observe.

Connections are opened with isolation_level=None, so the helper owns
transaction boundaries explicitly.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar

import aiosqlite

logger = logging.getLogger(__name__)

T = TypeVar("T")


@asynccontextmanager
async def transaction(
    conn: aiosqlite.Connection, *, write: bool = False
) -> AsyncIterator[aiosqlite.Connection]:
    """
    Run the body inside one transaction on conn.

    Reads use a deferred BEGIN (the snapshot starts at the first SELECT);
    writes use BEGIN IMMEDIATE to take the database write lock up front.

    Usage:
        async with transaction(conn, write=True):
            await conn.execute("DELETE FROM ...", (key,))
    """
    await conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
    try:
        yield conn
    except BaseException:
        await _rollback(conn)
        raise
    # Once queued, the COMMIT runs on the worker thread regardless of
    # cancellation. Wait for it to land before re-raising, so the
    # connection is idle and the outcome is settled.
    commit = asyncio.ensure_future(conn.commit())
    try:
        await asyncio.shield(commit)
    except asyncio.CancelledError:
        await _settle(commit)
        if commit.exception() is not None:
            await _rollback(conn)
        raise
    except BaseException:
        await _rollback(conn)
        raise


async def run_in_transaction(
    conn: aiosqlite.Connection,
    work: Callable[[aiosqlite.Connection], Awaitable[T]],
    *,
    write: bool = False,
) -> T:
    """Call work(conn) inside transaction() and return its result."""
    async with transaction(conn, write=write):
        return await work(conn)


async def _settle(task: asyncio.Future) -> None:
    """Wait for task to finish, absorbing repeated cancellation."""
    while not task.done():
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            continue
        except Exception:
            break


async def _rollback(conn: aiosqlite.Connection) -> None:
    # Shielded so a second cancellation cannot leave the transaction open
    # on a connection that is about to go back to the pool.
    try:
        await asyncio.shield(conn.rollback())
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning(f"Rollback failed: {e}")
