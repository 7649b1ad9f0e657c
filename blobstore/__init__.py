"""
blobstore — a key/value blob store on SQLite.

Public API:
    from blobstore import open_store, SQLiteStore, StoreConfig
"""

__version__ = "0.1.0"

# Core
from blobstore.core.config import StoreConfig
from blobstore.core.errors import (
    BlobStoreError,
    CloseError,
    ConfigError,
    KeyExistsError,
    KeyNotFoundError,
    OperationCancelled,
    StorageError,
    StoreClosedError,
)

# Stores
from blobstore.store.base import BlobKV, BlobNamespace, BlobStore
from blobstore.store.keyspace import KeyspaceRegistry
from blobstore.store.kv import SQLiteKV
from blobstore.store.memory import MemoryStore
from blobstore.store.sqlite import SQLiteStore, open_store

__all__ = [
    # Core
    "StoreConfig",
    "BlobStoreError",
    "CloseError",
    "ConfigError",
    "KeyExistsError",
    "KeyNotFoundError",
    "OperationCancelled",
    "StorageError",
    "StoreClosedError",
    # Stores
    "BlobKV",
    "BlobNamespace",
    "BlobStore",
    "KeyspaceRegistry",
    "SQLiteKV",
    "SQLiteStore",
    "MemoryStore",
    "open_store",
]
