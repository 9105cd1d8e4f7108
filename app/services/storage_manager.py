from pathlib import Path
from typing import AsyncIterator

import aiofiles
import aiofiles.os

import config
from app.services.blob_store import (
    BlobNotFound,
    BlobReader,
    BlobStore,
    StoreReadFailed,
    StoreUnavailable,
    StoreWriteFailed,
    validate_key,
)
from logger_config import setup_logger, structured_log

logger = setup_logger()

PARTIAL_SUFFIX = ".part"


class FileBlobReader(BlobReader):
    def __init__(self, key: str, handle, chunk_size: int):
        self.key = key
        self._handle = handle
        self._chunk_size = chunk_size
        self.closed = False

    async def read(self) -> bytes:
        try:
            return await self._handle.read(self._chunk_size)
        except (OSError, ValueError) as e:
            # ValueError: read on a handle closed under us
            raise StoreReadFailed(f"Could not read blob {self.key}") from e

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._handle.close()


class StorageManager(BlobStore):
    """Filesystem blob store.

    Each blob is a single file named by its key directly under ``data_dir``.
    Uploads are written to ``temp_dir`` first and renamed into place once
    complete, so a blob file is never visible half written.
    """

    def __init__(self, data_dir: Path, temp_dir: Path, chunk_size: int = config.CHUNK_SIZE):
        self.data_dir = Path(data_dir)
        self.temp_dir = Path(temp_dir)
        self.chunk_size = chunk_size

    async def initialize(self):
        """Create the storage directories and drop uploads interrupted by a previous run."""
        logger.info("Initializing storage manager...")

        await self._ensure_directories()
        logger.debug(f"Storage directories created/verified: {self.data_dir}, {self.temp_dir}")

        files_removed = 0
        for file in self.temp_dir.glob(f"*{PARTIAL_SUFFIX}"):
            if file.is_file():
                await aiofiles.os.unlink(file)
                files_removed += 1
        logger.info(f"Cleaned temporary directory, removed {files_removed} files")

    async def _ensure_directories(self):
        try:
            await aiofiles.os.makedirs(self.data_dir, exist_ok=True)
            await aiofiles.os.makedirs(self.temp_dir, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(f"Storage directory {self.data_dir} is not usable") from e

    def get_blob_path(self, key: str) -> Path:
        """Get the path where the blob for ``key`` is stored."""
        return self.data_dir / validate_key(key)

    def get_temp_path(self, key: str) -> Path:
        return self.temp_dir / f"{validate_key(key)}{PARTIAL_SUFFIX}"

    async def put(self, key: str, chunks: AsyncIterator[bytes]) -> int:
        blob_path = self.get_blob_path(key)
        temp_path = self.get_temp_path(key)

        # The data directory may have been removed since startup
        await self._ensure_directories()

        if await aiofiles.os.path.exists(blob_path):
            raise StoreWriteFailed(f"Blob {key} already exists")

        size = 0
        created = committed = False
        try:
            async with aiofiles.open(temp_path, 'xb') as f:
                created = True
                async for chunk in chunks:
                    size += len(chunk)
                    await f.write(chunk)
            await aiofiles.os.rename(str(temp_path), str(blob_path))
            committed = True
        except OSError as e:
            raise StoreWriteFailed(f"Could not write blob {key}") from e
        finally:
            if created and not committed:
                await self._discard(temp_path)

        return size

    async def _discard(self, path: Path):
        try:
            await aiofiles.os.unlink(path)
        except FileNotFoundError:
            return
        except OSError as e:
            # Left in temp_dir, invisible to readers and purged on next startup
            logger.error(structured_log("failed to remove partial upload", path=path, error=e))
        else:
            logger.debug(f"Removed partial upload {path}")

    async def get(self, key: str) -> FileBlobReader:
        blob_path = self.get_blob_path(key)
        try:
            handle = await aiofiles.open(blob_path, 'rb')
        except FileNotFoundError:
            raise BlobNotFound(key) from None
        except OSError as e:
            raise StoreReadFailed(f"Could not open blob {key}") from e
        return FileBlobReader(key, handle, self.chunk_size)

    async def exists(self, key: str) -> bool:
        return await aiofiles.os.path.isfile(self.get_blob_path(key))

    async def delete(self, key: str) -> bool:
        blob_path = self.get_blob_path(key)
        try:
            await aiofiles.os.unlink(blob_path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StoreWriteFailed(f"Could not delete blob {key}") from e
        return True
