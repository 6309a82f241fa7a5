"""
Shared machinery for provider adapters.

Each concrete adapter implements a handful of small *blocking* hooks that
speak the provider SDK (put, head, delete, iterate, sign, open). This base
class turns them into the async StorageAdapter operations:

- every hook runs in a worker thread, bounded by the provider timeout
- provider exceptions are re-classified into the storage error taxonomy,
  with the provider's message kept in ``details``
- signed URLs go through the adapter's SignedUrlCache
- object keys and media metadata are derived the same way for every provider

Hooks signal a missing object by raising ObjectMissing, which becomes
FileNotFound at the adapter boundary.
"""

import asyncio
import io
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, BinaryIO, Callable, Iterable, Iterator, Optional, Type

from mediavault.core.storage.adapter import DEFAULT_URL_EXPIRY_SECONDS
from mediavault.core.storage.errors import (
    DeleteFailed,
    DownloadFailed,
    FileNotFound,
    ListFailed,
    StorageError,
    UploadFailed,
    UrlGenerationFailed,
    ValidationFailed,
)
from mediavault.core.storage.models import (
    LIST_FIELDS,
    ProviderType,
    StorageFileInfo,
    StorageMetadata,
    UploadResult,
)
from mediavault.core.storage.url_cache import SignedUrlCache

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class ObjectMissing(LookupError):
    """Raised by adapter hooks when the provider reports no such object."""


@dataclass
class ObjectHead:
    """Provider-neutral view of an object's properties."""
    key: str
    size: int = 0
    content_type: str = ""
    file_hash: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    last_modified: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def derive_object_key(filename: Optional[str], destination: Optional[str] = None) -> str:
    """Use the destination verbatim, else ``{epoch_millis}-{filename}``."""
    if destination:
        return destination
    return f"{int(time.time() * 1000)}-{filename or 'upload'}"


def _parse_number(value: Optional[str], cast: Callable[[str], Any]) -> Any:
    if value is None or value == "":
        return None
    try:
        return cast(value)
    except (TypeError, ValueError):
        return None


def parse_media_metadata(metadata: Optional[dict[str, str]]) -> dict[str, Any]:
    """
    Read width/height/duration/encoding out of provider user metadata.

    Providers differ in key casing (S3 lowercases, Azure preserves), so
    lookups are case-insensitive. Unparseable values become None.
    """
    lowered = {str(k).lower(): v for k, v in (metadata or {}).items()}
    return {
        "width": _parse_number(lowered.get("width"), int),
        "height": _parse_number(lowered.get("height"), int),
        "duration": _parse_number(lowered.get("duration"), float),
        "encoding": lowered.get("encoding") or None,
    }


def stringify_metadata(metadata: Optional[dict[str, Any]]) -> dict[str, str]:
    """Provider user metadata only holds strings."""
    return {str(k): str(v) for k, v in (metadata or {}).items() if v is not None}


class ChunkedStream(io.RawIOBase):
    """
    Read-once binary stream over an iterator of byte chunks.

    Lets SDKs that hand out chunk iterators (Azure) look like a file.
    """

    def __init__(self, chunks: Iterable[bytes]) -> None:
        self._chunks: Iterator[bytes] = iter(chunks)
        self._buffer = b""

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        while not self._buffer:
            try:
                self._buffer = next(self._chunks)
            except StopIteration:
                return 0
        size = min(len(b), len(self._buffer))
        b[:size] = self._buffer[:size]
        self._buffer = self._buffer[size:]
        return size


# ---------------------------------------------------------------------------
# Base adapter
# ---------------------------------------------------------------------------

class BaseStorageAdapter:
    """
    Async StorageAdapter built from blocking provider hooks.

    Subclasses set ``provider`` and implement the ``_`` hooks below.
    ``requires_existence_for_url`` makes get_public_url check the object
    first and raise FileNotFound, for providers whose signer would happily
    sign a URL for a missing key.
    """

    provider: ProviderType
    requires_existence_for_url: bool = False

    def __init__(
        self,
        url_cache: Optional[SignedUrlCache] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._url_cache = url_cache if url_cache is not None else SignedUrlCache()
        self._timeout = timeout_seconds

    @property
    def url_cache(self) -> SignedUrlCache:
        return self._url_cache

    # -----------------------------------------------------------------------
    # Provider hooks (blocking, run in a worker thread)
    # -----------------------------------------------------------------------

    def _put_object(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, str],
    ) -> str:
        """Write the object and return its provider-native hash."""
        raise NotImplementedError

    def _head_object(self, key: str) -> Optional[ObjectHead]:
        """Return object properties, or None when it does not exist."""
        raise NotImplementedError

    def _delete_object(self, key: str) -> None:
        raise NotImplementedError

    def _iter_objects(self, prefix: Optional[str]) -> Iterable[ObjectHead]:
        raise NotImplementedError

    def _sign_url(self, key: str, expires_in: int) -> str:
        raise NotImplementedError

    def _open_stream(self, key: str) -> BinaryIO:
        raise NotImplementedError

    async def _storage_url(self, key: str) -> Optional[str]:
        """URL recorded at upload time; the signed URL unless overridden."""
        return await self.get_public_url(key, DEFAULT_URL_EXPIRY_SECONDS)

    # -----------------------------------------------------------------------
    # StorageAdapter operations
    # -----------------------------------------------------------------------

    async def upload(
        self,
        data: bytes,
        content_type: str,
        size: int,
        destination: Optional[str] = None,
        filename: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> UploadResult:
        if not data:
            raise ValidationFailed(
                "Cannot upload an empty file",
                details={"provider": self.provider.value, "filename": filename},
            )

        key = derive_object_key(filename, destination)
        object_metadata = stringify_metadata(metadata)

        file_hash = await self._call(
            "upload", UploadFailed, key, self._put_object,
            key, data, content_type, object_metadata,
        )

        try:
            storage_url = await self._storage_url(key)
        except StorageError as e:
            raise UploadFailed(
                f"Failed to upload file to {self.provider.value}",
                details=self._details(key, e),
            ) from e

        logger.info(
            "Uploaded object",
            extra={
                "provider": self.provider.value,
                "storage_file_id": key,
                "size_bytes": size,
            },
        )

        return UploadResult(
            storage_file_id=key,
            provider=self.provider,
            storage_url=storage_url,
            storage_metadata=StorageMetadata(
                file_size=size,
                mime_type=content_type,
                file_hash=file_hash or "",
                **parse_media_metadata(object_metadata),
            ),
        )

    async def delete(self, storage_file_id: str) -> None:
        head = await self._call(
            "delete", DeleteFailed, storage_file_id, self._head_object, storage_file_id
        )
        if head is None:
            raise self._not_found(storage_file_id)

        await self._call(
            "delete", DeleteFailed, storage_file_id, self._delete_object, storage_file_id
        )
        self._url_cache.evict(storage_file_id)

        logger.info(
            "Deleted object",
            extra={"provider": self.provider.value, "storage_file_id": storage_file_id},
        )

    async def list_files(
        self,
        prefix: Optional[str] = None,
        fields: Optional[Iterable[str]] = None,
    ) -> list[StorageFileInfo]:
        wanted = set(LIST_FIELDS if fields is None else fields)
        unknown = wanted - LIST_FIELDS
        if unknown:
            raise ValidationFailed(
                "Unknown list fields requested",
                details={"fields": sorted(unknown), "allowed": sorted(LIST_FIELDS)},
            )

        heads = await self._call(
            "list", ListFailed, prefix or "",
            lambda: list(self._iter_objects(prefix)),
        )

        files = []
        for head in heads:
            info = StorageFileInfo(storage_file_id=head.key)
            if "file_name" in wanted:
                info.file_name = head.key.rsplit("/", 1)[-1]
            if "file_size" in wanted:
                info.file_size = head.size
            if "created_at" in wanted:
                info.created_at = head.last_modified
            if "last_checked_at" in wanted:
                info.last_checked_at = head.last_modified
            if "is_active" in wanted:
                info.is_active = True
            if "file_url" in wanted:
                try:
                    info.file_url = await self.get_public_url(head.key)
                except StorageError as e:
                    raise ListFailed(
                        f"Failed to list files from {self.provider.value}",
                        details=self._details(head.key, e),
                    ) from e
            files.append(info)
        return files

    async def get_public_url(
        self,
        storage_file_id: str,
        expires_in: int = DEFAULT_URL_EXPIRY_SECONDS,
    ) -> str:
        cached = self._url_cache.get(storage_file_id)
        if cached is not None:
            return cached

        if self.requires_existence_for_url:
            head = await self._call(
                "sign", UrlGenerationFailed, storage_file_id,
                self._head_object, storage_file_id,
            )
            if head is None:
                raise self._not_found(storage_file_id)

        url = await self._call(
            "sign", UrlGenerationFailed, storage_file_id,
            self._sign_url, storage_file_id, expires_in,
        )
        self._url_cache.put(storage_file_id, url, expires_in)
        return url

    async def exists(self, storage_file_id: str) -> bool:
        head = await self._call(
            "check", ValidationFailed, storage_file_id, self._head_object, storage_file_id
        )
        return head is not None

    async def get_file_hash(self, storage_file_id: str) -> str:
        head = await self._call(
            "hash", ValidationFailed, storage_file_id, self._head_object, storage_file_id
        )
        if head is None:
            raise self._not_found(storage_file_id)
        if not head.file_hash:
            raise ValidationFailed(
                "File hash not available",
                details={"provider": self.provider.value, "storage_file_id": storage_file_id},
            )
        return head.file_hash

    async def download(self, storage_file_id: str) -> BinaryIO:
        return await self._call(
            "download", DownloadFailed, storage_file_id, self._open_stream, storage_file_id
        )

    # -----------------------------------------------------------------------
    # Private Methods
    # -----------------------------------------------------------------------

    async def _call(
        self,
        operation: str,
        error_cls: Type[StorageError],
        storage_file_id: str,
        fn: Callable[..., Any],
        *args: Any,
    ) -> Any:
        """
        Run a blocking hook in a thread, bounded by the provider timeout.

        StorageErrors pass through; ObjectMissing becomes FileNotFound;
        anything else (SDK errors, timeouts) becomes ``error_cls``.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args), timeout=self._timeout
            )
        except StorageError:
            raise
        except ObjectMissing as e:
            raise self._not_found(storage_file_id) from e
        except asyncio.TimeoutError as e:
            logger.error(
                "Provider call timed out",
                extra={
                    "provider": self.provider.value,
                    "operation": operation,
                    "storage_file_id": storage_file_id,
                    "timeout_seconds": self._timeout,
                },
            )
            raise error_cls(
                f"{self.provider.value} {operation} timed out after {self._timeout}s",
                details={
                    "provider": self.provider.value,
                    "storage_file_id": storage_file_id,
                },
            ) from e
        except Exception as e:
            logger.error(
                "Provider call failed",
                extra={
                    "provider": self.provider.value,
                    "operation": operation,
                    "storage_file_id": storage_file_id,
                    "error": str(e),
                },
            )
            raise error_cls(
                f"Failed to {operation} file on {self.provider.value}",
                details=self._details(storage_file_id, e),
            ) from e

    def _not_found(self, storage_file_id: str) -> FileNotFound:
        return FileNotFound(
            "File not found",
            details={"provider": self.provider.value, "storage_file_id": storage_file_id},
        )

    def _details(self, storage_file_id: str, error: BaseException) -> dict[str, Any]:
        return {
            "provider": self.provider.value,
            "storage_file_id": storage_file_id,
            "error": str(error),
        }
