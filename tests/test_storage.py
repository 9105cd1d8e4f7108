import asyncio
import os
import sys

import pytest
import pytest_asyncio

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app.services.blob_store import (
    BlobNotFound,
    InvalidKey,
    MemoryBlobStore,
    StoreWriteFailed,
    is_valid_key,
)
from app.services.storage_manager import StorageManager


@pytest_asyncio.fixture
async def storage_manager(tmp_path):
    manager = StorageManager(tmp_path / "data", tmp_path / "data" / ".incoming", chunk_size=4)
    await manager.initialize()
    return manager


async def chunks_of(*parts):
    for part in parts:
        yield part


async def failing_chunks(*parts, error):
    for part in parts:
        yield part
    raise error


async def read_all(reader):
    async with reader:
        return b"".join([chunk async for chunk in reader])


def partial_files(manager):
    return list(manager.temp_dir.iterdir())


@pytest.mark.asyncio
async def test_put_get_delete(storage_manager):
    size = await storage_manager.put("blob-1", chunks_of(b"hello ", b"world"))

    assert size == 11
    assert await storage_manager.exists("blob-1")
    assert (storage_manager.data_dir / "blob-1").read_bytes() == b"hello world"
    assert await read_all(await storage_manager.get("blob-1")) == b"hello world"
    assert partial_files(storage_manager) == []

    assert await storage_manager.delete("blob-1") is True
    assert not await storage_manager.exists("blob-1")
    assert await storage_manager.delete("blob-1") is False


@pytest.mark.asyncio
async def test_reader_streams_in_chunks(storage_manager):
    await storage_manager.put("blob-2", chunks_of(b"0123456789"))

    reader = await storage_manager.get("blob-2")
    chunks = [chunk async for chunk in reader]
    await reader.aclose()

    assert chunks == [b"0123", b"4567", b"89"]
    assert reader.closed


@pytest.mark.asyncio
async def test_failed_stream_leaves_nothing(storage_manager):
    with pytest.raises(RuntimeError):
        await storage_manager.put("blob-3", failing_chunks(b"partial", error=RuntimeError("connection lost")))

    assert not await storage_manager.exists("blob-3")
    assert partial_files(storage_manager) == []


@pytest.mark.asyncio
async def test_cancelled_put_leaves_nothing(storage_manager):
    started = asyncio.Event()

    async def endless():
        while True:
            yield b"x"
            started.set()
            await asyncio.sleep(0.01)

    task = asyncio.create_task(storage_manager.put("blob-4", endless()))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert not await storage_manager.exists("blob-4")
    assert partial_files(storage_manager) == []


@pytest.mark.asyncio
async def test_put_does_not_overwrite(storage_manager):
    await storage_manager.put("blob-5", chunks_of(b"first"))

    with pytest.raises(StoreWriteFailed):
        await storage_manager.put("blob-5", chunks_of(b"second"))

    assert await read_all(await storage_manager.get("blob-5")) == b"first"


@pytest.mark.asyncio
async def test_get_missing_blob(storage_manager):
    with pytest.raises(BlobNotFound):
        await storage_manager.get("missing")
    assert not await storage_manager.exists("missing")


@pytest.mark.asyncio
async def test_initialize_removes_partial_uploads(tmp_path):
    temp_dir = tmp_path / "incoming"
    temp_dir.mkdir()
    (temp_dir / "stale.part").write_bytes(b"left over")

    manager = StorageManager(tmp_path / "data", temp_dir)
    await manager.initialize()

    assert manager.data_dir.is_dir()
    assert list(temp_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_put_recreates_missing_directories(tmp_path):
    manager = StorageManager(tmp_path / "data", tmp_path / "data" / ".incoming")

    await manager.put("blob-6", chunks_of(b"data"))

    assert (tmp_path / "data" / "blob-6").read_bytes() == b"data"


@pytest.mark.parametrize("key", ["", ".", "..", ".hidden", "a/b", "..%2Fetc", "a\\b", "a" * 201])
def test_invalid_keys(tmp_path, key):
    manager = StorageManager(tmp_path, tmp_path / ".incoming")

    assert not is_valid_key(key)
    with pytest.raises(InvalidKey):
        manager.get_blob_path(key)


@pytest.mark.parametrize("key", ["abc", "A-b_c", "v1.2", "a" * 200])
def test_valid_keys(key):
    assert is_valid_key(key)


@pytest.mark.asyncio
async def test_memory_store():
    store = MemoryBlobStore(chunk_size=3)

    await store.put("blob", chunks_of(b"abc", b"def", b"g"))
    assert await store.exists("blob")
    assert await read_all(await store.get("blob")) == b"abcdefg"

    with pytest.raises(RuntimeError):
        await store.put("other", failing_chunks(b"abc", error=RuntimeError("boom")))
    assert not await store.exists("other")
    assert len(store) == 1

    with pytest.raises(InvalidKey):
        await store.exists("../blob")

    assert await store.delete("blob") is True
    with pytest.raises(BlobNotFound):
        await store.get("blob")
