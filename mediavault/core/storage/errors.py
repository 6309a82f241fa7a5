"""
Error taxonomy for the storage layer.

Every failure that crosses an adapter boundary is one of these exceptions.
Provider SDK errors are caught inside the adapters and re-raised as the
matching kind, with the original error kept in ``details`` and chained via
``raise ... from``. Callers above the adapters (the service, the HTTP layer)
only ever see this hierarchy.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class StorageErrorCode(Enum):
    """Stable error codes, also used in HTTP error bodies."""
    UPLOAD_FAILED = "UPLOAD_FAILED"
    DELETE_FAILED = "DELETE_FAILED"
    LIST_FAILED = "LIST_FAILED"
    URL_GENERATION_FAILED = "URL_GENERATION_FAILED"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"
    DATABASE_ERROR = "DATABASE_ERROR"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"


class StorageError(Exception):
    """
    Base class for storage failures.

    Carries a human-readable message and optional structured details
    (provider name, storage id, the provider's own error text).
    """
    code: StorageErrorCode = StorageErrorCode.VALIDATION_FAILED

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Render the error as a response body."""
        return {
            "message": self.message,
            "code": self.code.value,
            "details": self.details,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, details={self.details!r})"


class UploadFailed(StorageError):
    code = StorageErrorCode.UPLOAD_FAILED


class DeleteFailed(StorageError):
    code = StorageErrorCode.DELETE_FAILED


class ListFailed(StorageError):
    code = StorageErrorCode.LIST_FAILED


class UrlGenerationFailed(StorageError):
    code = StorageErrorCode.URL_GENERATION_FAILED


class FileNotFound(StorageError):
    code = StorageErrorCode.FILE_NOT_FOUND


class ValidationFailed(StorageError):
    """Bad input or misconfiguration (unknown provider, missing bucket...)."""
    code = StorageErrorCode.VALIDATION_FAILED


class DatabaseError(StorageError):
    code = StorageErrorCode.DATABASE_ERROR


class DownloadFailed(StorageError):
    code = StorageErrorCode.DOWNLOAD_FAILED


class NotImplementedYet(StorageError):
    """An operation a provider does not support."""
    code = StorageErrorCode.NOT_IMPLEMENTED


def describe_error(error: BaseException) -> dict[str, Any]:
    """
    Flatten an exception into JSON-safe details.

    Storage errors keep their own code and details so that a wrapped
    error (e.g. the last adapter failure inside an UploadFailed raised by
    failover) is still inspectable.
    """
    if isinstance(error, StorageError):
        return {
            "code": error.code.value,
            "message": error.message,
            "details": error.details,
        }
    return {
        "type": type(error).__name__,
        "message": str(error),
    }
