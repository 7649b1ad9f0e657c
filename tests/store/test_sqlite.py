"""Tests for the SQLite keyspace operations."""

import asyncio
import sqlite3
from contextlib import aclosing
from pathlib import Path

import pytest

from blobstore.core.config import StoreConfig
from blobstore.core.errors import (
    KeyExistsError,
    KeyNotFoundError,
    OperationCancelled,
    StoreClosedError,
)
from blobstore.store.sqlite import SQLiteStore, open_store


async def collect(it):
    return [key async for key in it]


# ━━━ Get / Put ━━━


@pytest.mark.asyncio
async def test_put_and_get(kv):
    await kv.put(b"key1", b"value1")
    assert await kv.get(b"key1") == b"value1"


@pytest.mark.asyncio
async def test_round_trip_binary(kv):
    values = {
        b"": b"empty key",
        b"\x00\xff\x10": bytes(range(256)),
        b"big": b"x" * 200_000,
        b"nothing": b"",
    }
    for key, value in values.items():
        await kv.put(key, value)
    for key, value in values.items():
        assert await kv.get(key) == value


@pytest.mark.asyncio
async def test_str_keys_are_utf8(kv):
    await kv.put("héllo", b"v")
    assert await kv.get("héllo".encode("utf-8")) == b"v"
    assert await collect(kv.list()) == ["héllo".encode("utf-8")]


@pytest.mark.asyncio
async def test_get_missing(kv):
    with pytest.raises(KeyNotFoundError) as exc_info:
        await kv.get(b"nonexistent")
    assert exc_info.value.key == b"nonexistent"


@pytest.mark.asyncio
async def test_put_existing_without_replace(kv):
    await kv.put(b"key", b"old")
    with pytest.raises(KeyExistsError):
        await kv.put(b"key", b"new")
    assert await kv.get(b"key") == b"old"


@pytest.mark.asyncio
async def test_put_with_replace(kv):
    await kv.put(b"key", b"old")
    await kv.put(b"key", b"new", replace=True)
    assert await kv.get(b"key") == b"new"
    assert await kv.len() == 1


@pytest.mark.asyncio
async def test_replace_creates_missing_key(kv):
    await kv.put(b"fresh", b"v", replace=True)
    assert await kv.get(b"fresh") == b"v"


@pytest.mark.asyncio
async def test_alpha_scenario(tmp_path: Path):
    """Compressed store: insert, conflict, replace."""
    store = await SQLiteStore.open(StoreConfig(address=str(tmp_path / "a.db"), compress=True))
    kv = await store.kv()

    await kv.put("alpha", b"hello")
    assert await kv.get("alpha") == b"hello"

    with pytest.raises(KeyExistsError):
        await kv.put("alpha", b"world", replace=False)

    await kv.put("alpha", b"world", replace=True)
    assert await kv.get("alpha") == b"world"
    await store.close()


# ━━━ Delete ━━━


@pytest.mark.asyncio
async def test_delete(kv):
    await kv.put(b"key", b"value")
    await kv.delete(b"key")
    with pytest.raises(KeyNotFoundError):
        await kv.get(b"key")


@pytest.mark.asyncio
async def test_delete_missing_leaves_count(kv):
    await kv.put(b"a", b"1")
    with pytest.raises(KeyNotFoundError):
        await kv.delete(b"missing")
    assert await kv.len() == 1


@pytest.mark.asyncio
async def test_not_found_after_delete(kv):
    await kv.put(b"gone", b"soon")
    await kv.delete(b"gone")
    with pytest.raises(KeyNotFoundError):
        await kv.get(b"gone")
    with pytest.raises(KeyNotFoundError):
        await kv.delete(b"gone")
    with pytest.raises(KeyNotFoundError):
        await kv.size(b"gone")


# ━━━ Has / Size / Len ━━━


@pytest.mark.asyncio
async def test_has_returns_present_subset(kv):
    await kv.put(b"a", b"1")
    await kv.put(b"c", b"3")
    assert await kv.has(b"a", b"b", b"c", b"d") == {b"a", b"c"}


@pytest.mark.asyncio
async def test_has_no_keys(kv):
    assert await kv.has() == set()


@pytest.mark.asyncio
async def test_size_is_original_length(kv):
    data = b"a" * 10_000  # compresses well
    await kv.put(b"big", data)
    assert await kv.size(b"big") == 10_000


@pytest.mark.asyncio
async def test_len_matches_has(kv):
    keys = [f"k{i}".encode() for i in range(10)]
    for key in keys:
        await kv.put(key, key)
    await kv.delete(b"k3")
    present = await kv.has(*keys)
    assert await kv.len() == len(present) == 9


@pytest.mark.asyncio
async def test_len_empty(kv):
    assert await kv.len() == 0


# ━━━ List ━━━


@pytest.mark.asyncio
async def test_list_all_in_byte_order(kv):
    keys = [b"b", b"a", b"\xff", b"ab", b"\x00", b"B"]
    for key in keys:
        await kv.put(key, b"")
    assert await collect(kv.list()) == sorted(keys)


@pytest.mark.asyncio
async def test_list_from_start(kv):
    for key in (b"apple", b"banana", b"cherry", b"date"):
        await kv.put(key, b"")
    assert await collect(kv.list(b"c")) == [b"cherry", b"date"]
    assert await collect(kv.list(b"banana")) == [b"banana", b"cherry", b"date"]
    assert await collect(kv.list(b"zzz")) == []


@pytest.mark.asyncio
async def test_list_empty(kv):
    assert await collect(kv.list()) == []


@pytest.mark.asyncio
async def test_list_spans_batches(tmp_path: Path):
    cfg = StoreConfig(address=str(tmp_path / "b.db"), list_batch_size=3)
    async with await SQLiteStore.open(cfg) as store:
        kv = await store.kv()
        keys = [f"{i:03d}".encode() for i in range(10)]
        for key in keys:
            await kv.put(key, b"")
        assert await collect(kv.list()) == keys


@pytest.mark.asyncio
async def test_list_early_stop_releases_lock(kv):
    for key in (b"a", b"b", b"c"):
        await kv.put(key, b"")

    seen = []
    async with aclosing(kv.list()) as keys:
        async for key in keys:
            seen.append(key)
            break

    assert seen == [b"a"]
    # A writer can proceed: the shared lock was released
    await asyncio.wait_for(kv.put(b"d", b""), timeout=5)
    assert await kv.len() == 4


@pytest.mark.asyncio
async def test_scan_releases_lock_after_break(kv):
    for key in (b"a", b"b", b"c"):
        await kv.put(key, b"")

    async with kv.scan(b"b") as keys:
        async for key in keys:
            break

    # keys is still referenced, yet the writer is not blocked
    assert key == b"b"
    await kv.put(b"d", b"", timeout=1)
    assert await kv.len() == 4
    assert keys is not None


@pytest.mark.asyncio
async def test_list_is_a_snapshot(kv):
    await kv.put(b"a", b"")
    await kv.put(b"b", b"")
    it = kv.list()
    first = await it.__anext__()

    # A write queued during iteration waits until the iteration ends
    writer = asyncio.create_task(kv.put(b"c", b""))
    rest = [key async for key in it]
    await writer

    assert [first, *rest] == [b"a", b"b"]
    assert await collect(kv.list()) == [b"a", b"b", b"c"]


# ━━━ Concurrency ━━━


@pytest.mark.asyncio
async def test_concurrent_puts(kv):
    n = 50
    await asyncio.gather(*(kv.put(f"key-{i}".encode(), b"v") for i in range(n)))
    assert await kv.len() == n


@pytest.mark.asyncio
async def test_concurrent_same_key_one_wins(kv):
    results = await asyncio.gather(
        *(kv.put(b"same", str(i).encode()) for i in range(10)),
        return_exceptions=True,
    )
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 9
    assert all(isinstance(e, KeyExistsError) for e in errors)
    assert await kv.len() == 1


@pytest.mark.asyncio
async def test_concurrent_reads_and_writes(kv):
    for i in range(10):
        await kv.put(f"r{i}".encode(), b"x" * i)

    async def reader(i):
        return await kv.get(f"r{i}".encode())

    async def writer(i):
        await kv.put(f"w{i}".encode(), b"y")

    results = await asyncio.gather(
        *(reader(i) for i in range(10)), *(writer(i) for i in range(10))
    )
    assert results[:10] == [b"x" * i for i in range(10)]
    assert await kv.len() == 20


@pytest.mark.asyncio
async def test_timeout_while_waiting_for_lock(kv):
    await kv.put(b"a", b"")
    db = kv._db
    async with db.lock.write():
        with pytest.raises(OperationCancelled):
            await kv.get(b"a", timeout=0.05)
        with pytest.raises(OperationCancelled):
            await kv.put(b"b", b"", timeout=0.05)
    # The lock was left consistent
    assert await kv.get(b"a") == b""
    assert await kv.len() == 1


@pytest.mark.asyncio
async def test_list_timeout_while_waiting_for_lock(kv):
    async with kv._db.lock.write():
        with pytest.raises(OperationCancelled):
            await collect(kv.list(timeout=0.05))


@pytest.mark.asyncio
async def test_task_cancellation_propagates(kv):
    async with kv._db.lock.write():
        task = asyncio.create_task(kv.get(b"a"))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
    assert await kv.len() == 0


# ━━━ Persistence / Lifecycle ━━━


@pytest.mark.asyncio
async def test_persistence(tmp_path: Path):
    """Data persists across opens."""
    cfg = StoreConfig(address=str(tmp_path / "persist.db"))

    store1 = await SQLiteStore.open(cfg)
    await (await store1.kv()).put(b"key", b"persisted")
    await store1.close()

    store2 = await SQLiteStore.open(cfg)
    assert await (await store2.kv()).get(b"key") == b"persisted"
    await store2.close()


@pytest.mark.asyncio
async def test_compressed_values_are_stored_compressed(tmp_path: Path):
    path = tmp_path / "c.db"
    async with await SQLiteStore.open(StoreConfig(address=str(path))) as store:
        kv = await store.kv()
        await kv.put(b"k", b"a" * 10_000)
        table = kv.table

    with sqlite3.connect(path) as raw:
        value, vsize = raw.execute(f'SELECT value, vsize FROM "{table}"').fetchone()
    assert vsize == 10_000
    assert len(value) < 10_000


@pytest.mark.asyncio
async def test_keys_stored_as_hex(tmp_path: Path):
    path = tmp_path / "h.db"
    async with await SQLiteStore.open(StoreConfig(address=str(path), compress=False)) as store:
        kv = await store.kv()
        await kv.put(b"\x01ab", b"v")
        table = kv.table

    with sqlite3.connect(path) as raw:
        row = raw.execute(f'SELECT key, value FROM "{table}"').fetchone()
    assert row == ("016162", b"v")


@pytest.mark.asyncio
async def test_creates_directory(tmp_path: Path):
    db_path = tmp_path / "deep" / "nested" / "test.db"
    async with await SQLiteStore.open(StoreConfig(address=str(db_path))) as store:
        kv = await store.kv()
        await kv.put(b"test", b"value")
        assert await kv.get(b"test") == b"value"
    assert db_path.exists()


@pytest.mark.asyncio
async def test_operations_after_close(store):
    kv = await store.kv()
    await store.close()
    with pytest.raises(StoreClosedError):
        await kv.get(b"a")
    with pytest.raises(StoreClosedError):
        await kv.put(b"a", b"")
    with pytest.raises(StoreClosedError):
        await store.kv("other")


@pytest.mark.asyncio
async def test_open_store_from_address(tmp_path: Path):
    addr = f"file:{tmp_path / 'u.db'}?poolsize=2&compress=false&journal=wal"
    store = await open_store(addr)
    assert store.config.pool_size == 2
    assert store.config.compress is False
    assert store.config.journal_mode == "wal"
    kv = await store.kv()
    await kv.put(b"a", b"b")
    assert await kv.get(b"a") == b"b"
    await store.close()
