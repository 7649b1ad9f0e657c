"""
In-memory blob store — for testing.

Dict-based, same error semantics as the SQLite store. Data lost when
the process exits. Timeouts are accepted and ignored: no operation
ever waits.
"""

from __future__ import annotations

from typing import AsyncIterator

from blobstore.core.errors import KeyExistsError, KeyNotFoundError, StoreClosedError
from blobstore.store.base import BlobKV, BlobNamespace, BlobStore
from blobstore.store.codec import KeyLike, key_bytes


class MemoryKV(BlobKV):
    """
    Usage:
        kv = await MemoryStore().kv()
        await kv.put(b"key", b"value")
        assert await kv.get(b"key") == b"value"
    """

    def __init__(self, store: MemoryStore) -> None:
        self._store = store
        self._data: dict[bytes, bytes] = {}

    def _check(self) -> None:
        if self._store.closed:
            raise StoreClosedError("memory store is closed")

    async def get(self, key: KeyLike, *, timeout: float | None = None) -> bytes:
        self._check()
        k = key_bytes(key)
        if k not in self._data:
            raise KeyNotFoundError(k)
        return self._data[k]

    async def put(
        self,
        key: KeyLike,
        value: bytes,
        replace: bool = False,
        *,
        timeout: float | None = None,
    ) -> None:
        self._check()
        k = key_bytes(key)
        if not replace and k in self._data:
            raise KeyExistsError(k)
        self._data[k] = bytes(value)

    async def delete(self, key: KeyLike, *, timeout: float | None = None) -> None:
        self._check()
        k = key_bytes(key)
        if k not in self._data:
            raise KeyNotFoundError(k)
        del self._data[k]

    async def has(self, *keys: KeyLike, timeout: float | None = None) -> set[bytes]:
        self._check()
        return {k for k in map(key_bytes, keys) if k in self._data}

    async def size(self, key: KeyLike, *, timeout: float | None = None) -> int:
        return len(await self.get(key))

    async def list(
        self, start: KeyLike = b"", *, timeout: float | None = None
    ) -> AsyncIterator[bytes]:
        self._check()
        k = key_bytes(start)
        for key in sorted(key for key in self._data if key >= k):
            yield key

    async def len(self, *, timeout: float | None = None) -> int:
        self._check()
        return len(self._data)


class MemoryNamespace(BlobNamespace):
    def __init__(self, store: MemoryStore, prefix: tuple[str, ...]) -> None:
        self._store = store
        self._prefix = prefix

    async def kv(self, name: str = "", *, timeout: float | None = None) -> MemoryKV:
        return self._store._keyspace(self._prefix + (name,))

    def sub(self, name: str) -> MemoryNamespace:
        return MemoryNamespace(self._store, self._prefix + (name,))


class MemoryStore(BlobStore):
    """In-memory store for testing."""

    def __init__(self) -> None:
        self._keyspaces: dict[tuple[str, ...], MemoryKV] = {}
        self._root = MemoryNamespace(self, ())
        self.closed = False

    def _keyspace(self, path: tuple[str, ...]) -> MemoryKV:
        if self.closed:
            raise StoreClosedError("memory store is closed")
        if path not in self._keyspaces:
            self._keyspaces[path] = MemoryKV(self)
        return self._keyspaces[path]

    async def kv(self, name: str = "", *, timeout: float | None = None) -> MemoryKV:
        return await self._root.kv(name)

    def sub(self, name: str) -> MemoryNamespace:
        return self._root.sub(name)

    async def close(self) -> None:
        self.closed = True
        self._keyspaces.clear()
