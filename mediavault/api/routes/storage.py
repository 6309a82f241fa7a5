"""
Storage API endpoints.

Thin HTTP layer over MediaStorageService:
1. POST /upload stores bytes with provider failover and records metadata
2. GET /files pages through visible files
3. DELETE /files/{id} soft-deletes (or permanently deletes) a file
4. GET /files/{id}/url issues a fresh time-bounded URL
5. GET /files/{id}/download streams the object
6. GET /local/{key} serves signed URLs of the local filesystem provider

Routes validate input and delegate; StorageErrors are mapped to HTTP
responses by the application's exception handler.
"""

import json
import logging
import mimetypes
from datetime import datetime
from typing import Annotated, Any, BinaryIO, Iterator, Optional
from urllib.parse import quote

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ...core.storage.errors import ValidationFailed
from ...core.storage.models import FileFilter, FileRecord, FileType, UploadRequest
from ...infrastructure.storage.base import ObjectMissing
from ..dependencies import LocalAdapterDep, SettingsDep, StorageServiceDep

logger = logging.getLogger(__name__)

router = APIRouter()

STREAM_CHUNK_SIZE = 64 * 1024


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class StorageMetadataResponse(BaseModel):
    file_size: int
    mime_type: str
    file_hash: str
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None
    encoding: Optional[str] = None


class UploadResponse(BaseModel):
    """Response after a completed upload."""
    file_id: str = Field(description="Identifier of the new File record")
    storage_file_id: str = Field(description="Provider-side object key")
    provider: str = Field(description="Provider that holds the object")
    storage_url: Optional[str] = Field(default=None, description="URL issued at upload time")
    storage_metadata: StorageMetadataResponse


class FileInfoResponse(BaseModel):
    """A File record with its storage binding."""
    id: str
    name: str
    type: str
    status: str
    mime_type: str
    file_size: int
    file_hash: str
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None
    encoding: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    path: str = Field(description="year/month/branch")
    year: int
    month: int
    branch_id: Optional[str] = None
    access_count: int
    is_active: bool
    provider: Optional[str] = None
    storage_file_id: Optional[str] = None
    storage_url: Optional[str] = None
    url_issued_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: FileRecord) -> "FileInfoResponse":
        storage = record.storage
        return cls(
            id=record.id,
            name=record.name,
            type=record.type.value,
            status=record.status.value,
            mime_type=record.mime_type,
            file_size=record.file_size,
            file_hash=record.file_hash,
            width=record.width,
            height=record.height,
            duration=record.duration,
            encoding=record.encoding,
            metadata=record.metadata,
            path=record.path,
            year=record.year,
            month=record.month,
            branch_id=record.branch_id,
            access_count=record.access_count,
            is_active=record.is_active,
            provider=storage.provider.value if storage else None,
            storage_file_id=storage.storage_file_id if storage else None,
            storage_url=storage.storage_url if storage else None,
            url_issued_at=storage.url_issued_at if storage else None,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class FileListResponse(BaseModel):
    files: list[FileInfoResponse]
    total_count: int
    current_page: int
    total_pages: int


class DeleteResponse(BaseModel):
    file_id: str
    success: bool
    deleted_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

def _parse_metadata_field(raw: Optional[str]) -> dict[str, Any]:
    """Caller metadata arrives as a JSON object in a form field."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationFailed("metadata must be a JSON object") from e
    if not isinstance(parsed, dict):
        raise ValidationFailed("metadata must be a JSON object")
    return parsed


def _iter_stream(stream: BinaryIO) -> Iterator[bytes]:
    """Read a provider stream in chunks and close it when done."""
    try:
        while True:
            chunk = stream.read(STREAM_CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    finally:
        stream.close()


def _content_disposition(filename: str) -> str:
    """
    Attachment header that survives non-ASCII names.

    Header values must be latin-1, so ``filename`` carries an ASCII
    fallback and ``filename*`` the UTF-8 percent-encoded name (RFC 6266).
    """
    fallback = "".join(
        ch if 32 <= ord(ch) < 127 and ch not in '"\\' else "_"
        for ch in filename
    )
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/upload",
    response_model=UploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a media file",
    description="Store a file with the next available provider and record its metadata",
)
async def upload_file(
    service: StorageServiceDep,
    settings: SettingsDep,
    file: Annotated[UploadFile, File(description="Image or video file")],
    branch_id: Annotated[Optional[str], Form()] = None,
    year: Annotated[Optional[int], Form(ge=1970, le=9999)] = None,
    month: Annotated[Optional[int], Form(ge=1, le=12)] = None,
    destination: Annotated[Optional[str], Form(description="Explicit object key")] = None,
    metadata: Annotated[Optional[str], Form(description="JSON object of caller metadata")] = None,
) -> UploadResponse:
    filename = file.filename or "upload"
    content_type = (
        file.content_type
        or mimetypes.guess_type(filename)[0]
        or "application/octet-stream"
    )

    data = await file.read()
    if len(data) > settings.max_upload_size_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large. Maximum size: {settings.max_upload_size_mb}MB",
        )

    logger.info(
        "Upload started",
        extra={
            "upload_filename": filename,
            "content_type": content_type,
            "size_bytes": len(data),
            "branch_id": branch_id,
        },
    )

    stored = await service.upload_file(
        UploadRequest(
            filename=filename,
            content_type=content_type,
            branch_id=branch_id,
            year=year,
            month=month,
            destination=destination,
            metadata=_parse_metadata_field(metadata),
        ),
        data,
    )

    return UploadResponse(
        file_id=stored.file_id,
        storage_file_id=stored.storage_file_id,
        provider=stored.provider.value,
        storage_url=stored.storage_url,
        storage_metadata=StorageMetadataResponse(**stored.storage_metadata.to_dict()),
    )


@router.get(
    "/files",
    response_model=FileListResponse,
    summary="List files",
    description="Page through visible files, newest first",
)
async def list_files(
    service: StorageServiceDep,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    branch_id: Optional[str] = None,
    prefix: Optional[str] = None,
    type: Optional[FileType] = None,
) -> FileListResponse:
    result = await service.list_files(
        FileFilter(branch_id=branch_id, prefix=prefix, file_type=type),
        page=page,
        limit=limit,
    )
    return FileListResponse(
        files=[FileInfoResponse.from_record(r) for r in result.files],
        total_count=result.total_count,
        current_page=result.current_page,
        total_pages=result.total_pages,
    )


@router.delete(
    "/files/{file_id}",
    response_model=DeleteResponse,
    summary="Delete a file",
    description="Soft delete by default; permanent=true also removes the stored object",
)
async def delete_file(
    file_id: str,
    service: StorageServiceDep,
    permanent: bool = False,
) -> DeleteResponse:
    result = await service.delete_file(file_id, permanent=permanent)
    return DeleteResponse(
        file_id=result.file_id,
        success=result.success,
        deleted_at=result.deleted_at,
    )


@router.get(
    "/files/{file_id}/url",
    response_model=FileInfoResponse,
    summary="Issue a file URL",
    description="Return the file with a freshly issued (or still valid cached) URL",
)
async def get_file_url(
    file_id: str,
    service: StorageServiceDep,
    provider: Optional[str] = None,
) -> FileInfoResponse:
    record = await service.get_file_url(file_id, provider=provider)
    return FileInfoResponse.from_record(record)


@router.get(
    "/files/{file_id}/download",
    summary="Download a file",
    description="Stream the stored object; counts as one access",
    response_class=StreamingResponse,
)
async def download_file(
    file_id: str,
    service: StorageServiceDep,
    provider: Optional[str] = None,
) -> StreamingResponse:
    result = await service.download_file(file_id, provider=provider)
    try:
        return StreamingResponse(
            _iter_stream(result.stream),
            media_type=result.mimetype,
            headers={"Content-Disposition": _content_disposition(result.filename)},
        )
    except Exception:
        # the generator never started, so its finally will not close the stream
        result.stream.close()
        raise


@router.get(
    "/local/{key:path}",
    summary="Serve a local-provider object",
    description="Target of signed URLs issued by the local filesystem provider",
    response_class=StreamingResponse,
)
async def serve_local_file(
    key: str,
    local_adapter: LocalAdapterDep,
    expires: int,
    signature: str,
) -> StreamingResponse:
    if local_adapter is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Local storage is not enabled",
        )

    if not local_adapter.verify_signature(key, expires, signature):
        logger.warning("Rejected local file request", extra={"storage_file_id": key})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired signature",
        )

    try:
        stream, content_type = local_adapter.open_for_serving(key)
    except ObjectMissing:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    return StreamingResponse(_iter_stream(stream), media_type=content_type)
