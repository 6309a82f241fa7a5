"""
Media storage orchestration.

MediaStorageService couples operations on object storage with operations on
the metadata store:

- upload: round-robin across providers with failover, then one metadata
  transaction creating the File and its StorageInfo
- delete: soft (mark invisible) or permanent (best-effort provider delete,
  then unconditional row delete)
- download / URL issuance: read the metadata record, then dispatch to the
  adapter whose provider tag the record carries

Two consistency gaps are known and kept as-is:

1. If the metadata write fails after a successful upload, the uploaded
   object is left orphaned in the provider. No compensating delete is
   issued; the failure is logged with the provider and storage id so an
   operator can reconcile.
2. The access counter is incremented before the download stream is opened.
   A failed open still counts as an access ("access attempted").

This module is framework-agnostic: it knows adapters, the registry and the
repository only through their protocols.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol
from uuid import uuid4

from .adapter import DEFAULT_URL_EXPIRY_SECONDS, StorageAdapter
from .errors import (
    DatabaseError,
    DownloadFailed,
    FileNotFound,
    UploadFailed,
    ValidationFailed,
    describe_error,
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
    StorageInfoRecord,
    StoredUpload,
    UploadRequest,
    UploadResult,
)
from .registry import ProviderRegistry
from .repository import FileRepository

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Media probing
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MediaInfo:
    """Dimensions and timing extracted from media bytes."""
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None
    encoding: Optional[str] = None

    def as_object_metadata(self) -> dict[str, str]:
        """Render as provider user metadata (string values only)."""
        values = {
            "width": self.width,
            "height": self.height,
            "duration": self.duration,
            "encoding": self.encoding,
        }
        return {key: str(value) for key, value in values.items() if value is not None}


class MediaProbe(Protocol):
    """
    Inspects media bytes before they are stored.

    The service attaches what the probe finds as object metadata, so the
    adapters can report width/height/duration/encoding back.
    """

    async def probe(self, data: bytes, content_type: str) -> MediaInfo:
        ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_NAME_PATTERN = re.compile(r"^(\d{4})_(\d{1,2})_([^_]+)_(.+)$")


def resolve_year_month(request: UploadRequest, now: datetime) -> tuple[int, int]:
    """
    Pick the year/month a file is filed under.

    Explicit request values win. Otherwise a ``YYYY_M_branch_name`` filename
    supplies them, and the current date is the last resort.
    """
    parsed_year: Optional[int] = None
    parsed_month: Optional[int] = None

    match = _NAME_PATTERN.match(request.filename or "")
    if match:
        parsed_year = int(match.group(1))
        month = int(match.group(2))
        parsed_month = month if 1 <= month <= 12 else None

    year = request.year or parsed_year or now.year
    month = request.month or parsed_month or now.month
    return year, month


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class MediaStorageService:
    """
    Sequences storage-side and metadata-side work for media files.

    Args:
        registry: live adapters and the round-robin cursor
        repository: File/StorageInfo metadata store
        probe: optional media inspector run before uploads
        url_expires_in: lifetime of URLs issued through get_file_url
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        repository: FileRepository,
        probe: Optional[MediaProbe] = None,
        url_expires_in: int = DEFAULT_URL_EXPIRY_SECONDS,
    ) -> None:
        self._registry = registry
        self._repository = repository
        self._probe = probe
        self._url_expires_in = url_expires_in

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    # -----------------------------------------------------------------------
    # Upload
    # -----------------------------------------------------------------------

    async def upload_file(self, request: UploadRequest, data: bytes) -> StoredUpload:
        """
        Store bytes with failover, then record File + StorageInfo.

        Raises:
            ValidationFailed: empty payload
            UploadFailed: every configured adapter failed
            DatabaseError: the metadata write failed (the object is orphaned)
        """
        if not data:
            raise ValidationFailed(
                "Cannot upload an empty file",
                details={"filename": request.filename},
            )

        object_metadata = await self._probe_metadata(request, data)
        result = await self._upload_with_failover(request, data, object_metadata)

        now = _utcnow()
        year, month = resolve_year_month(request, now)
        meta = result.storage_metadata

        file_record = FileRecord(
            id=str(uuid4()),
            name=request.filename,
            type=FileType.from_mime_type(request.content_type),
            status=FileStatus.COMPLETE,
            mime_type=request.content_type,
            file_size=len(data),
            file_hash=meta.file_hash,
            width=meta.width,
            height=meta.height,
            duration=meta.duration,
            encoding=meta.encoding,
            metadata=dict(request.metadata),
            year=year,
            month=month,
            branch_id=request.branch_id,
            created_at=now,
            updated_at=now,
        )
        storage_record = StorageInfoRecord(
            id=str(uuid4()),
            file_id=file_record.id,
            provider=result.provider,
            storage_file_id=result.storage_file_id,
            storage_url=result.storage_url,
            url_issued_at=now if result.storage_url else None,
            storage_metadata=meta,
            is_active=True,
            created_at=now,
            updated_at=now,
        )

        try:
            created = await asyncio.to_thread(
                self._repository.create_with_storage, file_record, storage_record
            )
        except Exception as e:
            # known gap: the object stays in the provider without a record
            logger.error(
                "Metadata write failed after upload; stored object is orphaned",
                extra={
                    "provider": result.provider.value,
                    "storage_file_id": result.storage_file_id,
                    "error": str(e),
                },
            )
            if isinstance(e, DatabaseError):
                raise
            raise DatabaseError(
                "Failed to complete file upload transaction",
                details={
                    "provider": result.provider.value,
                    "storage_file_id": result.storage_file_id,
                    "error": describe_error(e),
                },
            ) from e

        logger.info(
            "Uploaded file",
            extra={
                "file_id": created.id,
                "provider": result.provider.value,
                "storage_file_id": result.storage_file_id,
                "size_bytes": len(data),
            },
        )

        return StoredUpload(
            file_id=created.id,
            storage_file_id=result.storage_file_id,
            provider=result.provider,
            storage_metadata=meta,
            storage_url=result.storage_url,
        )

    async def _upload_with_failover(
        self,
        request: UploadRequest,
        data: bytes,
        object_metadata: dict[str, str],
    ) -> UploadResult:
        """
        Try each adapter at most once, starting at the registry cursor.

        Every attempt consumes a cursor position, successful or not, so
        selection stays balanced over time even when a provider is failing.
        """
        attempts = len(self._registry)
        tried: list[str] = []
        last_error: Optional[BaseException] = None

        for _ in range(attempts):
            adapter = self._registry.next()
            tried.append(adapter.provider.value)
            try:
                return await adapter.upload(
                    data,
                    content_type=request.content_type,
                    size=len(data),
                    destination=request.destination,
                    filename=request.filename,
                    metadata=object_metadata,
                )
            except Exception as e:
                last_error = e
                logger.warning(
                    "Upload failed on provider, trying next",
                    extra={
                        "provider": adapter.provider.value,
                        "filename": request.filename,
                        "error": str(e),
                    },
                )

        logger.error(
            "All storage adapters failed to upload the file",
            extra={"filename": request.filename, "providers": tried},
        )
        raise UploadFailed(
            "All storage adapters failed to upload the file",
            details={
                "providers": tried,
                "last_error": describe_error(last_error) if last_error else None,
            },
        ) from last_error

    async def _probe_metadata(self, request: UploadRequest, data: bytes) -> dict[str, str]:
        if self._probe is None:
            return {}
        try:
            info = await self._probe.probe(data, request.content_type)
        except Exception as e:
            logger.warning(
                "Media probe failed; uploading without dimensions",
                extra={"filename": request.filename, "error": str(e)},
            )
            return {}
        return info.as_object_metadata()

    # -----------------------------------------------------------------------
    # Delete
    # -----------------------------------------------------------------------

    async def delete_file(self, file_id: str, permanent: bool = False) -> DeleteResult:
        """
        Soft-delete (default) or permanently delete a file.

        Permanent deletes favour a clean metadata store: a provider failure
        is logged and ignored, and the rows are removed regardless.
        """
        record = await asyncio.to_thread(
            self._repository.get, file_id, permanent
        )
        if record is None:
            raise FileNotFound("File not found", details={"file_id": file_id})

        if not permanent:
            deleted_at = _utcnow()
            await asyncio.to_thread(self._repository.soft_delete, file_id, deleted_at)
            logger.info("Soft-deleted file", extra={"file_id": file_id})
            return DeleteResult(file_id=file_id, success=True, deleted_at=deleted_at)

        await self._delete_stored_object(record)
        await asyncio.to_thread(self._repository.hard_delete, file_id)
        logger.info("Permanently deleted file", extra={"file_id": file_id})
        return DeleteResult(file_id=file_id, success=True, deleted_at=None)

    async def _delete_stored_object(self, record: FileRecord) -> None:
        storage = record.storage
        if storage is None:
            return

        if not self._registry.has(storage.provider):
            logger.warning(
                "Provider not configured; leaving stored object in place",
                extra={
                    "file_id": record.id,
                    "provider": storage.provider.value,
                    "storage_file_id": storage.storage_file_id,
                },
            )
            return

        adapter = self._registry.get(storage.provider)
        try:
            await adapter.delete(storage.storage_file_id)
        except Exception as e:
            logger.warning(
                "Failed to delete from storage; continuing with database deletion",
                extra={
                    "file_id": record.id,
                    "provider": storage.provider.value,
                    "storage_file_id": storage.storage_file_id,
                    "error": str(e),
                },
            )

    # -----------------------------------------------------------------------
    # Read paths
    # -----------------------------------------------------------------------

    async def list_files(
        self,
        file_filter: Optional[FileFilter] = None,
        page: int = 1,
        limit: int = 10,
    ) -> FileListPage:
        """Page through visible files, newest first."""
        if page < 1:
            raise ValidationFailed("page must be >= 1", details={"page": page})
        if limit < 1:
            raise ValidationFailed("limit must be >= 1", details={"limit": limit})

        files, total = await asyncio.to_thread(
            self._repository.list_active,
            file_filter or FileFilter(),
            (page - 1) * limit,
            limit,
        )
        return FileListPage(files=files, total_count=total, current_page=page, limit=limit)

    async def download_file(
        self,
        file_id: str,
        provider: "Optional[ProviderType | str]" = None,
    ) -> DownloadResult:
        """
        Open a download stream for a visible file.

        The access counter is bumped only once the adapter lookup has
        succeeded, and before the stream is opened.
        """
        record = await self._get_visible(file_id)
        adapter = self._resolve_adapter(record, provider)

        updated = await asyncio.to_thread(self._repository.increment_access_count, file_id)

        try:
            stream = await adapter.download(record.storage.storage_file_id)
        except Exception as e:
            logger.error(
                "Error downloading file",
                extra={
                    "file_id": file_id,
                    "provider": adapter.provider.value,
                    "error": str(e),
                },
            )
            raise DownloadFailed(
                "Failed to download file",
                details={"file_id": file_id, "error": describe_error(e)},
            ) from e

        return DownloadResult(
            stream=stream,
            filename=updated.name,
            mimetype=updated.mime_type,
        )

    async def get_file_url(
        self,
        file_id: str,
        provider: "Optional[ProviderType | str]" = None,
    ) -> FileRecord:
        """Issue a fresh (or cached) URL and persist it on the StorageInfo."""
        record = await self._get_visible(file_id)
        adapter = self._resolve_adapter(record, provider)

        url = await adapter.get_public_url(
            record.storage.storage_file_id, self._url_expires_in
        )
        return await asyncio.to_thread(
            self._repository.update_storage_url, file_id, url, _utcnow()
        )

    async def get_file_by_path(self, path: str) -> FileRecord:
        """
        Look up a visible file by ``year/month/branch/filename``.

        The stored name is ``{year}_{month}_{branch}_{filename}``.
        """
        parts = path.strip("/").split("/")
        if len(parts) != 4:
            raise ValidationFailed(
                "Invalid file path. Expected format: year/month/branch/filename",
                details={"path": path},
            )

        year_text, month_text, branch_id, filename = parts
        try:
            year = int(year_text)
            month = int(month_text)
        except ValueError as e:
            raise ValidationFailed(
                "Invalid year or month in path", details={"path": path}
            ) from e
        if not 1 <= month <= 12:
            raise ValidationFailed("Invalid year or month in path", details={"path": path})

        name = f"{year}_{month}_{branch_id}_{filename}"
        record = await asyncio.to_thread(
            self._repository.find_by_path, year, month, branch_id, name
        )
        if record is None:
            raise FileNotFound("File not found", details={"path": path})
        return record

    # -----------------------------------------------------------------------
    # Private Methods
    # -----------------------------------------------------------------------

    async def _get_visible(self, file_id: str) -> FileRecord:
        record = await asyncio.to_thread(self._repository.get, file_id)
        if record is None or record.storage is None:
            raise FileNotFound("File not found", details={"file_id": file_id})
        return record

    def _resolve_adapter(
        self,
        record: FileRecord,
        provider: "Optional[ProviderType | str]",
    ) -> StorageAdapter:
        """
        Find the adapter that holds the record's object.

        A caller-supplied provider must agree with the stored tag; there is
        no cross-provider fallback.
        """
        stored = record.storage.provider
        if provider is not None:
            try:
                requested = ProviderType.parse(provider)
            except ValueError as e:
                raise ValidationFailed(
                    f"Storage provider not available: {provider}",
                    details={"provider": str(provider)},
                ) from e
            if requested is not stored:
                raise ValidationFailed(
                    "Requested provider does not hold this file",
                    details={
                        "file_id": record.id,
                        "requested": requested.value,
                        "stored": stored.value,
                    },
                )
        return self._registry.get(stored)
