"""
Database — the shared handle behind every keyspace of a store.

Owns the pool of aiosqlite connections and the single read/write lock
that governs all access to them. SQLite admits one writer at a time no
matter how many connections exist, so writers are serialized here
rather than left to collide inside the engine as SQLITE_BUSY. Readers
run concurrently on separate pooled connections.

Lock discipline:
    shared()    — get, has, size, list, len
    exclusive() — put, delete, table creation, close
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, AsyncIterator

import aiosqlite

from blobstore.core.config import StoreConfig
from blobstore.core.errors import (
    CloseError,
    ConfigError,
    StoreClosedError,
    describe,
    translate_error,
)
from blobstore.core.rwlock import RWLock
from blobstore.store.codec import BlobCodec

if TYPE_CHECKING:
    from blobstore.store.kv import SQLiteKV

logger = logging.getLogger(__name__)


class Database:
    """
    Pooled SQLite handle plus the process-wide read/write lock.

    One Database is shared by every keyspace and KV handle derived from
    a store; none of them may touch a connection without going through
    shared() or exclusive(). Bound to the event loop it was opened on.

    Usage:
        db = await Database.open(StoreConfig(address="data.db"))

        async with db.shared() as conn:
            ...

        await db.close()
    """

    def __init__(self, config: StoreConfig) -> None:
        self.config = config
        self.codec = BlobCodec(compress=config.compress)
        self.lock = RWLock()
        # Table name → KV handle; filled by the keyspace registry
        self.keyspaces: dict[str, SQLiteKV] = {}
        self._idle: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue()
        self._slots = asyncio.Semaphore(config.pool_size)
        self._open_count = 0
        self._closed = False
        self._target, self._uri = _target(config)

    # ━━━ Lifecycle ━━━

    @classmethod
    async def open(cls, config: StoreConfig) -> Database:
        """Create the handle and open one connection to validate the address."""
        db = cls(config)
        try:
            if not db._uri:
                Path(db._target).parent.mkdir(parents=True, exist_ok=True)
            conn = await db._connect()
        except Exception as e:
            raise translate_error(e, "open")
        db._idle.put_nowait(conn)
        logger.debug(
            f"Opened {config.address} (pool_size={config.pool_size}, "
            f"compress={config.compress})"
        )
        return db

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def compress(self) -> bool:
        return self.codec.compress

    @property
    def pool_size(self) -> int:
        return self.config.pool_size

    @property
    def open_connections(self) -> int:
        return self._open_count

    async def close(self) -> None:
        """
        Checkpoint and vacuum (best effort), then close every connection.

        Waits for in-flight operations by taking the exclusive lock. Every
        step runs even if an earlier one failed; all failures are raised
        together as CloseError. Closing twice is a no-op.
        """
        async with self.lock.write():
            if self._closed:
                return
            self._closed = True
            errors: list[BaseException] = []

            try:
                conn = await self._take()
            except Exception as e:
                errors.append(translate_error(e, "checkpoint"))
            else:
                for label, stmt in (
                    ("checkpoint", "PRAGMA wal_checkpoint(TRUNCATE)"),
                    ("vacuum", "VACUUM"),
                ):
                    try:
                        await _execute(conn, stmt)
                    except Exception as e:
                        logger.warning(f"Close: {label} failed: {describe(e)}")
                        errors.append(translate_error(e, label))
                self._idle.put_nowait(conn)
                self._slots.release()

            while not self._idle.empty():
                conn = self._idle.get_nowait()
                try:
                    await conn.close()
                except Exception as e:
                    logger.warning(f"Close: releasing connection failed: {describe(e)}")
                    errors.append(translate_error(e, "release"))
                self._open_count -= 1

            self.keyspaces.clear()
            logger.debug(f"Closed {self.config.address}")
            if errors:
                raise CloseError(errors)

    # ━━━ Access ━━━

    @asynccontextmanager
    async def shared(self) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the lock in shared mode and borrow a pooled connection."""
        async with self.lock.read():
            async with self._borrow() as conn:
                yield conn

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the lock in exclusive mode and borrow a pooled connection."""
        async with self.lock.write():
            async with self._borrow() as conn:
                yield conn

    # ━━━ Pool ━━━

    @asynccontextmanager
    async def _borrow(self) -> AsyncIterator[aiosqlite.Connection]:
        if self._closed:
            raise StoreClosedError(f"store {self.config.address} is closed", op="borrow")
        conn = await self._take()
        try:
            yield conn
        finally:
            await self._give_back(conn)

    async def _take(self) -> aiosqlite.Connection:
        await self._slots.acquire()
        try:
            try:
                return self._idle.get_nowait()
            except asyncio.QueueEmpty:
                return await self._connect()
        except BaseException:
            self._slots.release()
            raise

    async def _give_back(self, conn: aiosqlite.Connection) -> None:
        try:
            if conn.in_transaction:
                # A rollback failed; the connection's state is unknown
                logger.warning("Discarding pooled connection left inside a transaction")
                self._open_count -= 1
                try:
                    await asyncio.shield(conn.close())
                except Exception as e:
                    logger.warning(f"Closing discarded connection failed: {describe(e)}")
            else:
                self._idle.put_nowait(conn)
        finally:
            self._slots.release()

    async def _connect(self) -> aiosqlite.Connection:
        cfg = self.config
        conn = await aiosqlite.connect(
            self._target,
            uri=self._uri,
            isolation_level=None,
            check_same_thread=False,
        )
        try:
            await _execute(conn, f"PRAGMA busy_timeout={int(cfg.busy_timeout_ms)}")
            if cfg.journal_mode:
                async with conn.execute(f"PRAGMA journal_mode={cfg.journal_mode}") as cursor:
                    row = await cursor.fetchone()
                got = row[0] if row else None
                if got != cfg.journal_mode:
                    raise ConfigError(
                        f"invalid journal mode {cfg.journal_mode!r} (engine reports {got!r})"
                    )
            if cfg.synchronous:
                await _execute(conn, f"PRAGMA synchronous={cfg.synchronous}")
        except BaseException:
            await conn.close()
            raise
        self._open_count += 1
        logger.debug(f"Pool: opened connection {self._open_count}/{cfg.pool_size}")
        return conn


def _target(config: StoreConfig) -> tuple[str, bool]:
    """
    What to hand to sqlite3.connect, and whether it is a URI.

    Paths are expanded; URIs pass through. ":memory:" would give every
    pooled connection its own empty database, so it becomes a named
    shared-cache memory database private to this handle.
    """
    if config.address == ":memory:":
        return f"file:blobstore-{uuid.uuid4().hex}?mode=memory&cache=shared", True
    if config.is_uri:
        return config.address, True
    return str(Path(config.address).expanduser()), False


async def _execute(conn: aiosqlite.Connection, sql: str) -> None:
    """Run a statement and drain its rows so nothing is left pending."""
    async with conn.execute(sql) as cursor:
        await cursor.fetchall()
