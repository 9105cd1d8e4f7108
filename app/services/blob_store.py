"""Blob store capability interface and the in-memory backend.

Handlers only talk to a ``BlobStore``: ``put`` consumes an async stream of
chunks, ``get`` opens a ``BlobReader``, ``exists`` and ``delete`` address a
blob by key. A store must never expose a blob whose ``put`` did not complete.
"""
import re
from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict

import config


class StoreError(Exception):
    """Base class for storage faults."""


class BlobNotFound(StoreError):
    pass


class InvalidKey(BlobNotFound):
    """The key cannot name a blob inside the storage namespace."""


class StoreUnavailable(StoreError):
    pass


class StoreWriteFailed(StoreError):
    pass


class StoreReadFailed(StoreError):
    pass


KEY_PATTERN = re.compile(r'^[a-zA-Z0-9_-][a-zA-Z0-9._-]*$')


def is_valid_key(key: str) -> bool:
    """Check that the key is a single, non-hidden path segment."""
    if not key or len(key) > config.MAX_KEY_LENGTH:
        return False
    return bool(KEY_PATTERN.match(key))


def validate_key(key: str) -> str:
    if not is_valid_key(key):
        raise InvalidKey(f"Invalid blob key: {key!r}")
    return key


class BlobReader(ABC):
    """An open blob. Iterate it for chunks, then close it."""

    @abstractmethod
    async def read(self) -> bytes:
        """Return the next chunk, or ``b""`` at the end of the blob."""

    @abstractmethod
    async def aclose(self) -> None:
        ...

    async def __aiter__(self):
        while chunk := await self.read():
            yield chunk

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()


class BlobStore(ABC):
    async def initialize(self) -> None:
        """Prepare the backend. Called once at application startup."""

    @abstractmethod
    async def put(self, key: str, chunks: AsyncIterator[bytes]) -> int:
        """Write every chunk under ``key`` and return the number of bytes stored.

        If the chunk stream or the write raises, nothing is left under ``key``
        and the exception propagates (I/O faults as ``StoreWriteFailed``).
        """

    @abstractmethod
    async def get(self, key: str) -> BlobReader:
        """Open the blob for reading, raising ``BlobNotFound`` if it is absent."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove the blob. Returns False when there was nothing to remove."""


class MemoryBlobReader(BlobReader):
    def __init__(self, data: bytes, chunk_size: int):
        self._view = memoryview(data)
        self._offset = 0
        self._chunk_size = chunk_size
        self.closed = False

    async def read(self) -> bytes:
        if self.closed:
            raise StoreReadFailed("Blob reader is closed")
        chunk = self._view[self._offset:self._offset + self._chunk_size]
        self._offset += len(chunk)
        return bytes(chunk)

    async def aclose(self) -> None:
        self.closed = True


class MemoryBlobStore(BlobStore):
    """Keeps blobs in a dict. Contents are lost when the process exits."""

    def __init__(self, chunk_size: int = config.CHUNK_SIZE):
        self.chunk_size = chunk_size
        self._blobs: Dict[str, bytes] = {}

    async def put(self, key: str, chunks: AsyncIterator[bytes]) -> int:
        validate_key(key)
        if key in self._blobs:
            raise StoreWriteFailed(f"Blob {key} already exists")
        buffer = bytearray()
        async for chunk in chunks:
            buffer.extend(chunk)
        # Published only once the whole stream has been consumed
        self._blobs[key] = bytes(buffer)
        return len(buffer)

    async def get(self, key: str) -> BlobReader:
        validate_key(key)
        try:
            data = self._blobs[key]
        except KeyError:
            raise BlobNotFound(key) from None
        return MemoryBlobReader(data, self.chunk_size)

    async def exists(self, key: str) -> bool:
        validate_key(key)
        return key in self._blobs

    async def delete(self, key: str) -> bool:
        validate_key(key)
        return self._blobs.pop(key, None) is not None

    def __len__(self) -> int:
        return len(self._blobs)
