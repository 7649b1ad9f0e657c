"""Shared test fixtures for blobstore."""

import pytest
import pytest_asyncio

from blobstore.core.config import StoreConfig
from blobstore.store.sqlite import SQLiteStore


@pytest.fixture
def config(tmp_path):
    """A compressed store config in a temp directory, without loading from disk."""
    return StoreConfig(address=str(tmp_path / "test.db"), pool_size=4)


@pytest_asyncio.fixture(params=[True, False], ids=["compressed", "uncompressed"])
async def store(request, tmp_path):
    """An open SQLite store, once with and once without compression."""
    cfg = StoreConfig(
        address=str(tmp_path / "test.db"),
        pool_size=4,
        compress=request.param,
        table="testblobs",
    )
    s = await SQLiteStore.open(cfg)
    yield s
    if not s.closed:
        await s.close()


@pytest_asyncio.fixture
async def kv(store):
    """The default keyspace of the store fixture."""
    return await store.kv()
