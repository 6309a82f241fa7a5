"""
Media storage orchestration.

Contains the domain models, the error taxonomy, the adapter and repository
contracts, the signed URL cache, the provider registry and the service that
sequences storage writes with metadata writes.
"""

from .adapter import DEFAULT_URL_EXPIRY_SECONDS, StorageAdapter
from .errors import (
    DatabaseError,
    DeleteFailed,
    DownloadFailed,
    FileNotFound,
    ListFailed,
    NotImplementedYet,
    StorageError,
    StorageErrorCode,
    UploadFailed,
    UrlGenerationFailed,
    ValidationFailed,
)
from .models import (
    DeleteResult,
    DownloadResult,
    FileFilter,
    FileListPage,
    FileRecord,
    FileStatus,
    FileType,
    ProviderType,
    StorageFileInfo,
    StorageInfoRecord,
    StorageMetadata,
    StoredUpload,
    UploadRequest,
    UploadResult,
)
from .registry import ProviderRegistry
from .repository import FileRepository
from .service import MediaInfo, MediaProbe, MediaStorageService
from .url_cache import SignedUrlCache

__all__ = [
    "DEFAULT_URL_EXPIRY_SECONDS",
    "DatabaseError",
    "DeleteFailed",
    "DeleteResult",
    "DownloadFailed",
    "DownloadResult",
    "FileFilter",
    "FileListPage",
    "FileNotFound",
    "FileRecord",
    "FileRepository",
    "FileStatus",
    "FileType",
    "ListFailed",
    "MediaInfo",
    "MediaProbe",
    "MediaStorageService",
    "NotImplementedYet",
    "ProviderRegistry",
    "ProviderType",
    "SignedUrlCache",
    "StorageAdapter",
    "StorageError",
    "StorageErrorCode",
    "StorageFileInfo",
    "StorageInfoRecord",
    "StorageMetadata",
    "StoredUpload",
    "UploadFailed",
    "UploadRequest",
    "UploadResult",
    "UrlGenerationFailed",
    "ValidationFailed",
]
