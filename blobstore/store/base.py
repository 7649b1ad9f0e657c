"""
Blob store interface.

A store hands out keyspaces; a keyspace is a byte-keyed map of blobs.
Keys are bytes (str keys are accepted and UTF-8 encoded). Values are
bytes; serialization is the caller's responsibility.

Implementations:
    SQLiteStore — file-based, default
    MemoryStore — for testing
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import aclosing, asynccontextmanager
from typing import AsyncIterator

from blobstore.store.codec import KeyLike


class BlobKV(ABC):
    """
    One keyspace: the primitive blob operations.

    Every operation accepts an optional timeout in seconds; when it
    expires the operation raises OperationCancelled.

    A put or delete cancelled after its commit was issued still waits
    for that commit, so the change may have been applied even though
    OperationCancelled is raised. Check with has() before retrying a
    put without replace.
    """

    @abstractmethod
    async def get(self, key: KeyLike, *, timeout: float | None = None) -> bytes:
        """Return the value stored under key. Raises KeyNotFoundError."""
        ...

    @abstractmethod
    async def put(
        self,
        key: KeyLike,
        value: bytes,
        replace: bool = False,
        *,
        timeout: float | None = None,
    ) -> None:
        """
        Store value under key.

        With replace=False an existing key raises KeyExistsError and the
        stored value is left unchanged; with replace=True it is overwritten.
        """
        ...

    @abstractmethod
    async def delete(self, key: KeyLike, *, timeout: float | None = None) -> None:
        """Remove key. Raises KeyNotFoundError if absent."""
        ...

    @abstractmethod
    async def has(self, *keys: KeyLike, timeout: float | None = None) -> set[bytes]:
        """Return the subset of keys that are present."""
        ...

    @abstractmethod
    async def size(self, key: KeyLike, *, timeout: float | None = None) -> int:
        """Return the original byte length of the value. Raises KeyNotFoundError."""
        ...

    @abstractmethod
    def list(
        self, start: KeyLike = b"", *, timeout: float | None = None
    ) -> AsyncIterator[bytes]:
        """Iterate keys >= start in ascending byte order."""
        ...

    @asynccontextmanager
    async def scan(
        self, start: KeyLike = b"", *, timeout: float | None = None
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        """
        list() as a context manager: leaving the block releases everything
        the iteration holds, even after an early break.

        Usage:
            async with kv.scan(b"photo/") as keys:
                async for key in keys:
                    if done(key):
                        break
            await kv.put(b"next", data)  # not blocked by the scan
        """
        async with aclosing(self.list(start, timeout=timeout)) as keys:
            yield keys

    @abstractmethod
    async def len(self, *, timeout: float | None = None) -> int:
        """Number of keys in the keyspace."""
        ...


class BlobNamespace(ABC):
    """Hands out keyspaces and nested namespaces."""

    @abstractmethod
    async def kv(self, name: str = "", *, timeout: float | None = None) -> BlobKV:
        """Return the keyspace called name, creating it if needed."""
        ...

    @abstractmethod
    def sub(self, name: str) -> BlobNamespace:
        """Return the nested namespace called name."""
        ...


class BlobStore(BlobNamespace):
    """A namespace that owns its backing resources."""

    @abstractmethod
    async def close(self) -> None:
        """Release the backing resources."""
        ...

    async def __aenter__(self) -> BlobStore:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
