"""
FastAPI application entry point.

This module creates and configures the FastAPI application. The lifespan
builds the long-lived objects (provider registry, metadata repository,
storage service) once and fails startup if any provider cannot be set up.

For local development:
    uvicorn mediavault.main:app --reload

For production:
    gunicorn mediavault.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.routes import files, health, storage
from .config.settings import Settings, get_settings
from .core.storage.errors import StorageError, StorageErrorCode
from .core.storage.repository import FileRepository
from .core.storage.service import MediaStorageService
from .infrastructure.media.probe import create_media_probe
from .infrastructure.snowflake.client import SnowflakeConfig, SnowflakeConnectionPool
from .infrastructure.snowflake.repositories.files import (
    InMemoryFileRepository,
    SnowflakeFileRepository,
)
from .infrastructure.storage.factory import build_registry

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    StorageErrorCode.VALIDATION_FAILED: 400,
    StorageErrorCode.FILE_NOT_FOUND: 404,
    StorageErrorCode.NOT_IMPLEMENTED: 501,
    StorageErrorCode.DATABASE_ERROR: 500,
    StorageErrorCode.UPLOAD_FAILED: 502,
    StorageErrorCode.DELETE_FAILED: 502,
    StorageErrorCode.LIST_FAILED: 502,
    StorageErrorCode.URL_GENERATION_FAILED: 502,
    StorageErrorCode.DOWNLOAD_FAILED: 502,
}


def create_file_repository(
    settings: Settings,
) -> tuple[FileRepository, Optional[SnowflakeConnectionPool]]:
    """Build the metadata repository (and its pool, for real Snowflake)."""
    if settings.snowflake_mock_mode:
        return InMemoryFileRepository(), None

    config = SnowflakeConfig(
        account=settings.snowflake_account,
        user=settings.snowflake_user,
        password=settings.snowflake_password or None,
        private_key_path=settings.snowflake_private_key_path,
        private_key_base64=settings.snowflake_private_key_base64,
        database=settings.snowflake_database,
        schema=settings.snowflake_schema,
        warehouse=settings.snowflake_warehouse,
        role=settings.snowflake_role,
    )
    pool = SnowflakeConnectionPool(config)
    return SnowflakeFileRepository(pool.connection), pool


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup builds the registry, repository and service and stores them on
    ``app.state``. A misconfigured provider raises here, so the process
    never starts serving with fewer providers than configured.
    """
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    logger.info(
        "MediaVault API starting",
        extra={
            "version": settings.api_version,
            "providers": settings.enabled_providers_list,
            "mock_mode": {
                "storage": settings.storage_mock_mode,
                "snowflake": settings.snowflake_mock_mode,
            },
        }
    )

    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )

    registry = build_registry(settings)
    repository, pool = create_file_repository(settings)

    app.state.file_repository = repository
    app.state.storage_service = MediaStorageService(
        registry=registry,
        repository=repository,
        probe=create_media_probe(settings),
        url_expires_in=settings.signed_url_expires_in,
    )

    yield

    # Shutdown
    if pool is not None:
        pool.close()
    logger.info("MediaVault API shutting down")


def create_app() -> FastAPI:
    """
    Application factory.

    Creates and configures the FastAPI application. Called once at startup
    in production, and once per test with different settings.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        Multi-provider media storage.

        Files are stored with one of the configured providers (AWS S3,
        Google Cloud Storage, Azure Blob Storage, local disk), chosen
        round-robin with failover, and described by a metadata record.

        ## Workflow

        1. **Upload**: `POST /api/v1/storage/upload`
        2. **Browse**: `GET /api/v1/storage/files`
        3. **Share**: `GET /api/v1/storage/files/{file_id}/url`
        4. **Download**: `GET /api/v1/storage/files/{file_id}/download`
        5. **Delete**: `DELETE /api/v1/storage/files/{file_id}?permanent=false`
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        storage.router,
        prefix="/api/v1/storage",
        tags=["Storage"],
    )

    app.include_router(
        files.router,
        prefix="/api/v1/files",
        tags=["Files"],
    )

    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint - points at the docs."""
        return {
            "message": "MediaVault Storage API",
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
        }

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        """Map storage error codes to HTTP status codes."""
        status_code = ERROR_STATUS_CODES.get(exc.code, 500)
        log = logger.warning if status_code < 500 else logger.error
        log(
            "Storage error",
            extra={
                "path": request.url.path,
                "method": request.method,
                "code": exc.code.value,
                "error": exc.message,
            },
        )
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Catch-all exception handler.

        Prevents stack traces from leaking to clients. We log the full
        error server-side but return a generic message.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )

        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error. Please contact support if this persists."
            }
        )

    logger.info(
        "FastAPI application created",
        extra={
            "title": settings.api_title,
            "version": settings.api_version,
        }
    )

    return app


# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)

# This is what uvicorn/gunicorn will import
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "mediavault.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
