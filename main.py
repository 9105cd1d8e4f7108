from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.errors import ContentNotFound, ContentStoreError, MethodNotAllowed
from app.routes.content_routes import router
from app.services.blob_store import BlobStore, MemoryBlobStore
from app.services.cors import CorsPolicy
from app.services.key_generator import KeyGenerator, RandomKeyGenerator
from app.services.storage_manager import StorageManager
from config import Settings
from logger_config import setup_logger, structured_log

logger = setup_logger()


def build_store(settings: Settings) -> BlobStore:
    if settings.store_backend == "memory":
        return MemoryBlobStore(settings.chunk_size)
    return StorageManager(settings.data_dir, settings.incoming_dir, settings.chunk_size)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    logger.info(structured_log(
        "starting content store",
        data_dir=settings.data_dir,
        store_backend=settings.store_backend,
        max_upload_size=settings.max_upload_size,
        cors_allow_all=settings.cors_allow_all,
    ))
    await app.state.store.initialize()
    yield


async def content_store_error_handler(request: Request, exc: ContentStoreError):
    return JSONResponse(exc.to_body(), status_code=exc.status_code, headers=exc.headers or None)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    # Routing errors (unknown path, wrong method) use the same body shape as ours
    if exc.status_code == MethodNotAllowed.status_code:
        body = MethodNotAllowed().to_body()
    elif exc.status_code == ContentNotFound.status_code:
        body = ContentNotFound().to_body()
    else:
        body = {"message": exc.detail}
    return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[BlobStore] = None,
    key_generator: Optional[KeyGenerator] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(title="Content Store", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store if store is not None else build_store(settings)
    app.state.key_generator = key_generator if key_generator is not None else RandomKeyGenerator()
    app.state.cors = CorsPolicy.from_settings(settings)

    app.add_exception_handler(ContentStoreError, content_store_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    settings = app.state.settings
    logger.info("Starting Content Store server...")
    logger.info(f"Data directory: {settings.data_dir}")
    logger.info(f"Maximum upload size: {settings.max_upload_size / (1024*1024):.2f} MB")
    uvicorn.run(app, host=settings.host, port=settings.port)
