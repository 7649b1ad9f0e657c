"""
blobstore exception hierarchy.

Every error a store operation raises inherits from BlobStoreError.
Engine exceptions (sqlite3 / aiosqlite) never cross the store boundary:
translate_error() is the single place that inspects them.

Usage:
    try:
        data = await kv.get(b"alpha")
    except KeyNotFoundError:
        # Handle a missing key
    except BlobStoreError as e:
        # Handle any store error
"""

from __future__ import annotations

import sqlite3
from typing import Any

# Extended result codes reported for a duplicate primary key.
# Tables are created WITHOUT ROWID, which reports PRIMARYKEY; UNIQUE
# covers tables created by older layouts with a separate unique index.
_DUPLICATE_KEY_CODES = frozenset(
    {
        sqlite3.SQLITE_CONSTRAINT_PRIMARYKEY,
        sqlite3.SQLITE_CONSTRAINT_UNIQUE,
    }
)


class BlobStoreError(Exception):
    """Base exception for all store errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ━━━ Key Errors ━━━


class KeyNotFoundError(BlobStoreError):
    """Requested key is absent from the keyspace."""

    def __init__(self, key: bytes, details: dict | None = None):
        self.key = key
        super().__init__(f"key not found: {key!r}", details)


class KeyExistsError(BlobStoreError):
    """Put without replace targeted a key that already exists."""

    def __init__(self, key: bytes, details: dict | None = None):
        self.key = key
        super().__init__(f"key already exists: {key!r}", details)


# ━━━ Operational Errors ━━━


class OperationCancelled(BlobStoreError):
    """Deadline expired while waiting on the lock, a connection, or a statement."""

    pass


class ConfigError(BlobStoreError):
    """Store configuration is invalid or malformed."""

    pass


class StorageError(BlobStoreError):
    """Backing engine failure — I/O errors, corruption, bad SQL, etc."""

    def __init__(
        self,
        message: str,
        op: str = "",
        key: bytes | None = None,
        details: dict | None = None,
    ):
        self.op = op
        self.key = key
        super().__init__(message, details)


class StoreClosedError(StorageError):
    """Operation attempted on a store that has been closed."""

    pass


class CloseError(StorageError):
    """One or more steps of closing the store failed."""

    def __init__(self, errors: list[BaseException]):
        self.errors = list(errors)
        summary = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        super().__init__(f"close failed: {summary}", op="close")


class InvariantViolation(AssertionError):
    """
    Internal state that only this package produces is malformed.

    Deliberately outside the BlobStoreError hierarchy: it signals a bug
    or corruption, not a condition callers are expected to handle.
    """

    pass


# ━━━ Error Mapper ━━━


def is_duplicate_key(exc: BaseException) -> bool:
    """True if exc is the engine reporting a duplicate primary key."""
    return (
        isinstance(exc, sqlite3.IntegrityError)
        and getattr(exc, "sqlite_errorcode", None) in _DUPLICATE_KEY_CODES
    )


def translate_error(
    exc: BaseException,
    op: str,
    key: bytes | None = None,
    *,
    duplicate_is_conflict: bool = False,
) -> BaseException:
    """
    Map an exception raised inside a store operation onto the taxonomy.

    Store errors pass through unchanged. A duplicate-key failure becomes
    KeyExistsError only when the caller asked for insert semantics
    (duplicate_is_conflict=True). An expired deadline becomes
    OperationCancelled. Everything else is wrapped in StorageError with the
    original exception as its cause.

    Returns the exception to raise; callers do `raise translate_error(...)`.
    """
    if isinstance(exc, BlobStoreError):
        return exc

    err: BlobStoreError
    if isinstance(exc, TimeoutError):
        err = OperationCancelled(f"{op}: deadline exceeded", {"op": op, "key": key})
    elif duplicate_is_conflict and key is not None and is_duplicate_key(exc):
        err = KeyExistsError(key)
    else:
        where = f" {key!r}" if key is not None else ""
        err = StorageError(f"{op}{where}: {exc}", op=op, key=key)
    err.__cause__ = exc
    return err


def describe(exc: BaseException) -> dict[str, Any]:
    """Structured view of an error, used for logging."""
    info: dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, StorageError):
        info["op"] = exc.op
    code = getattr(exc, "sqlite_errorcode", None)
    if code is not None:
        info["sqlite_errorcode"] = code
    return info
