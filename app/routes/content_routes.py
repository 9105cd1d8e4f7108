import asyncio
from typing import AsyncIterator, Optional, Tuple

from fastapi import APIRouter, Request, Response
from fastapi.responses import StreamingResponse
from starlette.requests import ClientDisconnect

from app.errors import (
    ContentNotFound,
    ContentStoreError,
    DownloadFailed,
    PayloadTooLarge,
    UploadFailed,
    UploadTimedOut,
)
from app.models.content import ErrorResponse, UploadResponse
from app.services.blob_store import BlobReader, InvalidKey, StoreError
from logger_config import setup_logger, structured_log

logger = setup_logger()

router = APIRouter()

OCTET_STREAM = "application/octet-stream"


def declared_length(request: Request) -> Optional[int]:
    value = request.headers.get("content-length")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


async def limited_body(request: Request, max_bytes: int) -> AsyncIterator[bytes]:
    """Yield the request body, raising PayloadTooLarge once more than max_bytes arrived."""
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > max_bytes:
            raise PayloadTooLarge(max_bytes)
        yield chunk


async def store_upload(request: Request) -> Tuple[str, int]:
    """Stream the request body into a new blob and return its key and size."""
    state = request.app.state
    max_size = state.settings.max_upload_size

    length = declared_length(request)
    if length is not None and length > max_size:
        logger.warning(structured_log("upload rejected, declared size too large",
                                      declared=length, max_upload_size=max_size))
        raise PayloadTooLarge(max_size)

    data_key = state.key_generator.generate()
    body = limited_body(request, max_size)

    try:
        size = await asyncio.wait_for(state.store.put(data_key, body), timeout=state.settings.upload_timeout)
    except PayloadTooLarge:
        logger.warning(structured_log("upload rejected, body too large",
                                      dataKey=data_key, max_upload_size=max_size))
        raise
    except asyncio.TimeoutError:
        logger.warning(structured_log("upload timed out", dataKey=data_key,
                                      timeout=state.settings.upload_timeout))
        raise UploadTimedOut() from None
    except ClientDisconnect:
        logger.warning(structured_log("client disconnected during upload", dataKey=data_key))
        raise UploadFailed() from None
    except StoreError as e:
        logger.error(structured_log("failed to store upload", dataKey=data_key, error=repr(e)), exc_info=True)
        raise UploadFailed() from e
    except Exception as e:
        logger.error(f"Unexpected error storing upload {data_key}: {str(e)}", exc_info=True)
        raise UploadFailed() from e

    return data_key, size


@router.post(
    "/api/v2/post/",
    response_model=UploadResponse,
    responses={
        408: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def upload_content(request: Request, response: Response):
    """Store the raw request body as a new blob.

    Returns the generated key and an absolute URL the blob can be fetched
    from. Nothing is stored unless the whole body was written.
    """
    origin = request.headers.get("origin")
    cors_headers = request.app.state.cors.upload_headers(origin)

    try:
        data_key, size = await store_upload(request)
    except ContentStoreError as e:
        e.headers.update(cors_headers)
        raise

    url = str(request.url_for("download_content", data_key=data_key))
    logger.info(structured_log("file uploaded successfully", dataKey=data_key, size=size, origin=origin))

    response.headers.update(cors_headers)
    return UploadResponse(data_key=data_key, url=url)


async def stream_blob(reader: BlobReader, data_key: str, timeout: Optional[float] = None) -> AsyncIterator[bytes]:
    """Relay the blob chunks, closing the reader however the stream ends.

    Headers are already sent when this runs, so failures are raised to make
    the server abort the connection instead of ending the body cleanly.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout if timeout else None
    sent = 0
    try:
        while True:
            if deadline is None:
                chunk = await reader.read()
            else:
                try:
                    chunk = await asyncio.wait_for(reader.read(), timeout=max(deadline - loop.time(), 0))
                except asyncio.TimeoutError:
                    logger.warning(structured_log("download deadline exceeded", dataKey=data_key, sent=sent))
                    raise TimeoutError(f"Download of {data_key} exceeded {timeout}s") from None
            if not chunk:
                break
            sent += len(chunk)
            yield chunk
    except StoreError as e:
        logger.error(structured_log("failed to send file", dataKey=data_key, sent=sent, error=repr(e)))
        raise
    finally:
        await reader.aclose()

    logger.info(structured_log("file downloaded successfully", dataKey=data_key, size=sent))


@router.get(
    "/api/v2/{data_key}",
    name="download_content",
    response_class=StreamingResponse,
    responses={
        200: {"content": {OCTET_STREAM: {}}},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def download_content(data_key: str, request: Request):
    """Stream a stored blob back verbatim."""
    state = request.app.state
    cors_headers = state.cors.download_headers()

    try:
        found = await state.store.exists(data_key)
    except InvalidKey:
        logger.warning(structured_log("rejected invalid key", dataKey=data_key))
        raise ContentNotFound(headers=cors_headers) from None
    except StoreError as e:
        logger.error(structured_log("failed to check file", dataKey=data_key, error=repr(e)))
        raise DownloadFailed(headers=cors_headers) from e

    if not found:
        logger.warning(structured_log("file not found", dataKey=data_key))
        raise ContentNotFound(headers=cors_headers)

    try:
        reader = await state.store.get(data_key)
    except StoreError as e:
        # Removed or unreadable since the existence check
        logger.error(structured_log("failed to open file", dataKey=data_key, error=repr(e)))
        raise DownloadFailed(headers=cors_headers) from e

    return StreamingResponse(
        stream_blob(reader, data_key, state.settings.download_timeout),
        media_type=OCTET_STREAM,
        headers=cors_headers,
    )
