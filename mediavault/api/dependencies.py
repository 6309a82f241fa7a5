"""
FastAPI dependency injection.

Dependencies provide the storage service, the metadata repository and
configuration to route handlers. The long-lived objects (provider registry,
repository, service) are built once in the application lifespan and kept on
``app.state``; the functions here just hand them to routes, which keeps
routes free of construction logic and easy to test.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status

from ..config.settings import Settings, get_settings
from ..core.storage.models import ProviderType
from ..core.storage.repository import FileRepository
from ..core.storage.service import MediaStorageService
from ..infrastructure.storage.local import LocalFileStorageAdapter

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

def get_storage_service(request: Request) -> MediaStorageService:
    """Provide the MediaStorageService built at startup."""
    service = getattr(request.app.state, "storage_service", None)
    if service is None:
        logger.error("Storage service requested before startup completed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage service not initialized",
        )
    return service


def get_file_repository(request: Request) -> FileRepository:
    """Provide the metadata repository built at startup."""
    repository = getattr(request.app.state, "file_repository", None)
    if repository is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Metadata store not initialized",
        )
    return repository


def get_local_adapter(
    service: Annotated[MediaStorageService, Depends(get_storage_service)],
) -> Optional[LocalFileStorageAdapter]:
    """
    Provide the local filesystem adapter, if it is enabled.

    Returns None in storage mock mode or when ``local`` is not configured.
    """
    if not service.registry.has(ProviderType.LOCAL):
        return None
    adapter = service.registry.get(ProviderType.LOCAL)
    if isinstance(adapter, LocalFileStorageAdapter):
        return adapter
    return None


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
StorageServiceDep = Annotated[MediaStorageService, Depends(get_storage_service)]
FileRepositoryDep = Annotated[FileRepository, Depends(get_file_repository)]
LocalAdapterDep = Annotated[Optional[LocalFileStorageAdapter], Depends(get_local_adapter)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
