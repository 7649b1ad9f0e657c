"""
SQLite blob store.

Uses aiosqlite for async SQLite access, with a pool of connections
behind one read/write lock (see Database). Every keyspace is its own
table in the same database file.
"""

from __future__ import annotations

import logging
from typing import Any

from blobstore.core.config import StoreConfig
from blobstore.store.base import BlobStore
from blobstore.store.database import Database
from blobstore.store.keyspace import KeyspaceRegistry
from blobstore.store.kv import SQLiteKV

logger = logging.getLogger(__name__)


class SQLiteStore(BlobStore):
    """
    SQLite-based blob store.

    Usage:
        store = await SQLiteStore.open(StoreConfig(address="~/data/blobs.db"))
        kv = await store.kv()

        await kv.put(b"user/name", b"Alex")
        value = await kv.get(b"user/name")  # b"Alex"

        await store.close()

    Or as a context manager:
        async with await open_store("file:blobs.db?compress=false") as store:
            ...
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._root = KeyspaceRegistry(db, (db.config.table,))

    @classmethod
    async def open(cls, config: StoreConfig | None = None) -> SQLiteStore:
        """Open (creating if needed) the store described by config."""
        config = config or StoreConfig.load()
        db = await Database.open(config)
        logger.debug(f"SQLite store ready at {config.address} (root {config.table!r})")
        return cls(db)

    @property
    def config(self) -> StoreConfig:
        return self._db.config

    @property
    def database(self) -> Database:
        return self._db

    @property
    def closed(self) -> bool:
        return self._db.closed

    async def kv(self, name: str = "", *, timeout: float | None = None) -> SQLiteKV:
        return await self._root.kv(name, timeout=timeout)

    def sub(self, name: str) -> KeyspaceRegistry:
        return self._root.sub(name)

    async def close(self) -> None:
        await self._db.close()


async def open_store(address: str, **options: Any) -> SQLiteStore:
    """
    Open a store from an address, e.g. "file:blobs.db?poolsize=4&compress=false".

    Keyword options override anything given in the address.
    """
    return await SQLiteStore.open(StoreConfig.from_address(address, **options))
