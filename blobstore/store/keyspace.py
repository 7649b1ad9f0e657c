"""
Keyspace registry — names to tables over one shared Database.

A keyspace is identified by a hierarchical path of names, e.g.
("blobs", "photos", "thumbs"). Its table name is the hex encoding of
that path (see encode_path), so no caller-supplied text ever reaches
SQL. Tables are created lazily, once per Database, under the exclusive
lock; the resulting KV handles are cached on the Database so every view
of it shares them.
"""

from __future__ import annotations

import asyncio
import logging

import aiosqlite

from blobstore.core.errors import translate_error
from blobstore.store.base import BlobNamespace
from blobstore.store.codec import encode_path
from blobstore.store.database import Database
from blobstore.store.kv import SQLiteKV, create_table_sql
from blobstore.store.transaction import run_in_transaction

logger = logging.getLogger(__name__)


class KeyspaceRegistry(BlobNamespace):
    """
    Keyspaces under one path prefix.

    sub() returns a nested registry: a view over the same Database, pool
    and lock. No connection is opened.

    Usage:
        root = KeyspaceRegistry(db, ("blobs",))
        photos = await root.kv("photos")           # table for ("blobs", "photos")
        thumbs = await root.sub("photos").kv("t")  # ("blobs", "photos", "t")
    """

    def __init__(self, db: Database, prefix: tuple[str, ...]) -> None:
        if not prefix:
            raise ValueError("keyspace prefix must not be empty")
        self._db = db
        self._prefix = prefix

    @property
    def prefix(self) -> tuple[str, ...]:
        return self._prefix

    @property
    def database(self) -> Database:
        return self._db

    def __repr__(self) -> str:
        return f"KeyspaceRegistry(prefix={'/'.join(self._prefix)!r})"

    def table_name(self, name: str) -> str:
        """Table identifier for keyspace name under this prefix."""
        return encode_path(self._prefix + (_check_name(name),))

    async def kv(self, name: str = "", *, timeout: float | None = None) -> SQLiteKV:
        path = self._prefix + (_check_name(name),)
        table = encode_path(path)

        kv = self._db.keyspaces.get(table)
        if kv is not None:
            return kv

        try:
            async with asyncio.timeout(timeout):
                async with self._db.exclusive() as conn:
                    # Another task may have created it while we waited
                    kv = self._db.keyspaces.get(table)
                    if kv is None:
                        await run_in_transaction(
                            conn, lambda c: _create_table(c, table), write=True
                        )
                        kv = SQLiteKV(self._db, table, path)
                        self._db.keyspaces[table] = kv
                        logger.debug(f"Keyspace {'/'.join(path)!r} ready (table {table})")
        except Exception as e:
            raise translate_error(e, "keyspace")
        return kv

    def sub(self, name: str) -> KeyspaceRegistry:
        return KeyspaceRegistry(self._db, self._prefix + (_check_name(name),))


async def _create_table(conn: aiosqlite.Connection, table: str) -> None:
    await conn.execute(create_table_sql(table))


def _check_name(name: str) -> str:
    if not isinstance(name, str):
        raise TypeError(f"keyspace name must be str, not {type(name).__name__}")
    return name
