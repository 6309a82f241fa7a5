"""
The capability contract every storage provider implements.

The service is written against this protocol only. It never inspects the
concrete adapter class; the ``provider`` tag is the one piece of identity it
reads, to record which provider holds an object.
"""

from typing import BinaryIO, Iterable, Optional, Protocol, runtime_checkable

from .models import ProviderType, StorageFileInfo, UploadResult


DEFAULT_URL_EXPIRY_SECONDS = 3600


@runtime_checkable
class StorageAdapter(Protocol):
    """
    Uniform async operations over one object-storage backend.

    All failures are raised as StorageError subclasses; see errors.py.
    """

    provider: ProviderType

    async def upload(
        self,
        data: bytes,
        content_type: str,
        size: int,
        destination: Optional[str] = None,
        filename: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> UploadResult:
        """Store bytes; ``destination`` is used verbatim as the key when given."""
        ...

    async def delete(self, storage_file_id: str) -> None:
        """Remove an object and evict its cached URL."""
        ...

    async def list_files(
        self,
        prefix: Optional[str] = None,
        fields: Optional[Iterable[str]] = None,
    ) -> list[StorageFileInfo]:
        """List objects in the provider's native order."""
        ...

    async def get_public_url(
        self,
        storage_file_id: str,
        expires_in: int = DEFAULT_URL_EXPIRY_SECONDS,
    ) -> str:
        """Return a time-bounded URL, served from cache while still valid."""
        ...

    async def exists(self, storage_file_id: str) -> bool:
        ...

    async def get_file_hash(self, storage_file_id: str) -> str:
        """Provider-native content hash (ETag / MD5)."""
        ...

    async def download(self, storage_file_id: str) -> BinaryIO:
        """Open a read-once byte stream."""
        ...
