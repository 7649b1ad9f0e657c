"""
SQLite keyspace — the blob operations against one table.

Each operation takes the Database lock in the matching mode, borrows a
pooled connection, and runs inside transaction(). Engine errors are
translated at this boundary; nothing from sqlite3 or aiosqlite escapes.

Table layout (one per keyspace):
    key    TEXT     PK   hex of the original key
    value  BLOB          possibly compressed
    vsize  INTEGER       original value length
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack
from typing import AsyncIterator

from blobstore.core.errors import KeyNotFoundError, translate_error
from blobstore.store.base import BlobKV
from blobstore.store.codec import KeyLike, decode_key, encode_key, key_bytes
from blobstore.store.database import Database
from blobstore.store.transaction import transaction

DEFAULT_LIST_BATCH = 256


def create_table_sql(table: str) -> str:
    return f"""
        CREATE TABLE IF NOT EXISTS "{table}" (
            key   TEXT    PRIMARY KEY,
            value BLOB    NOT NULL,
            vsize INTEGER NOT NULL
        ) WITHOUT ROWID
    """


class SQLiteKV(BlobKV):
    """
    A keyspace bound to one table of a shared Database.

    Cheap to hold: just the Database reference and the table name.
    Obtain one from SQLiteStore.kv() rather than constructing it.

    Usage:
        kv = await store.kv("photos")
        await kv.put(b"alpha", b"hello")
        await kv.get(b"alpha")          # b"hello"

        async for key in kv.list(b"a"):
            ...
    """

    def __init__(self, db: Database, table: str, path: tuple[str, ...]) -> None:
        self._db = db
        self._table = table
        self._path = path

    @property
    def table(self) -> str:
        return self._table

    @property
    def path(self) -> tuple[str, ...]:
        return self._path

    def __repr__(self) -> str:
        return f"SQLiteKV(path={'/'.join(self._path)!r}, table={self._table!r})"

    async def get(self, key: KeyLike, *, timeout: float | None = None) -> bytes:
        k = key_bytes(key)
        query = f'SELECT value FROM "{self._table}" WHERE key = ?'
        try:
            async with asyncio.timeout(timeout):
                async with self._db.shared() as conn, transaction(conn):
                    async with conn.execute(query, (encode_key(k),)) as cursor:
                        row = await cursor.fetchone()
        except Exception as e:
            raise translate_error(e, "get", k)
        if row is None:
            raise KeyNotFoundError(k)
        return self._db.codec.unpack(row[0])

    async def has(self, *keys: KeyLike, timeout: float | None = None) -> set[bytes]:
        wanted = [key_bytes(key) for key in keys]
        found: set[bytes] = set()
        if not wanted:
            return found
        query = f'SELECT vsize FROM "{self._table}" WHERE key = ?'
        try:
            async with asyncio.timeout(timeout):
                async with self._db.shared() as conn, transaction(conn):
                    for k in wanted:
                        async with conn.execute(query, (encode_key(k),)) as cursor:
                            if await cursor.fetchone() is not None:
                                found.add(k)
        except Exception as e:
            raise translate_error(e, "has")
        return found

    async def size(self, key: KeyLike, *, timeout: float | None = None) -> int:
        k = key_bytes(key)
        query = f'SELECT vsize FROM "{self._table}" WHERE key = ?'
        try:
            async with asyncio.timeout(timeout):
                async with self._db.shared() as conn, transaction(conn):
                    async with conn.execute(query, (encode_key(k),)) as cursor:
                        row = await cursor.fetchone()
        except Exception as e:
            raise translate_error(e, "size", k)
        if row is None:
            raise KeyNotFoundError(k)
        return int(row[0])

    async def put(
        self,
        key: KeyLike,
        value: bytes,
        replace: bool = False,
        *,
        timeout: float | None = None,
    ) -> None:
        k = key_bytes(key)
        data = bytes(value)
        # Compress before queueing for the write lock
        packed = self._db.codec.pack(data)
        verb = "REPLACE" if replace else "INSERT"
        stmt = f'{verb} INTO "{self._table}" (key, value, vsize) VALUES (?, ?, ?)'
        try:
            async with asyncio.timeout(timeout):
                async with self._db.exclusive() as conn, transaction(conn, write=True):
                    await conn.execute(stmt, (encode_key(k), packed, len(data)))
        except Exception as e:
            raise translate_error(e, "put", k, duplicate_is_conflict=not replace)

    async def delete(self, key: KeyLike, *, timeout: float | None = None) -> None:
        k = key_bytes(key)
        stmt = f'DELETE FROM "{self._table}" WHERE key = ?'
        try:
            async with asyncio.timeout(timeout):
                async with self._db.exclusive() as conn, transaction(conn, write=True):
                    async with conn.execute(stmt, (encode_key(k),)) as cursor:
                        deleted = cursor.rowcount
                    if deleted == 0:
                        raise KeyNotFoundError(k)
        except Exception as e:
            raise translate_error(e, "delete", k)

    async def list(
        self, start: KeyLike = b"", *, timeout: float | None = None
    ) -> AsyncIterator[bytes]:
        """
        Iterate keys >= start in ascending byte order.

        The shared lock, a read transaction and a cursor are held for the
        life of the iteration, so the keys come from one snapshot. They are
        released when the iteration ends, when the generator is closed
        early, or on error. To stop early, iterate inside scan(), which
        releases them when its block exits:

            async with kv.scan() as keys:
                async for key in keys:
                    if done(key):
                        break

        Do not write to the same store from inside the loop: the write
        waits for the shared lock this iteration holds.
        """
        k = key_bytes(start)
        query = f'SELECT key FROM "{self._table}" WHERE key >= ? ORDER BY key'
        batch = self._db.config.list_batch_size or DEFAULT_LIST_BATCH
        deadline = None
        if timeout is not None:
            deadline = asyncio.get_running_loop().time() + timeout

        async with AsyncExitStack() as stack:
            try:
                async with asyncio.timeout_at(deadline):
                    conn = await stack.enter_async_context(self._db.shared())
                    await stack.enter_async_context(transaction(conn))
                    cursor = await stack.enter_async_context(
                        conn.execute(query, (encode_key(k),))
                    )
            except Exception as e:
                raise translate_error(e, "list", k)

            while True:
                try:
                    async with asyncio.timeout_at(deadline):
                        rows = await cursor.fetchmany(batch)
                except Exception as e:
                    raise translate_error(e, "list", k)
                if not rows:
                    return
                for (code,) in rows:
                    yield decode_key(code)

    async def len(self, *, timeout: float | None = None) -> int:
        query = f'SELECT count(*) FROM "{self._table}"'
        try:
            async with asyncio.timeout(timeout):
                async with self._db.shared() as conn, transaction(conn):
                    async with conn.execute(query) as cursor:
                        row = await cursor.fetchone()
        except Exception as e:
            raise translate_error(e, "len")
        return int(row[0])
