"""
Shared fixtures for the unit tests.

Everything here is in-memory: no cloud accounts, no Snowflake, no ffprobe.
"""

from typing import Optional

import pytest

from mediavault.core.storage.errors import DatabaseError, DownloadFailed, UploadFailed
from mediavault.core.storage.models import ProviderType
from mediavault.core.storage.registry import ProviderRegistry
from mediavault.core.storage.service import MediaInfo, MediaStorageService
from mediavault.core.storage.url_cache import SignedUrlCache
from mediavault.infrastructure.snowflake.repositories.files import InMemoryFileRepository
from mediavault.infrastructure.storage.memory import InMemoryStorageAdapter


class FakeClock:
    """Controllable epoch-seconds clock."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FlakyAdapter(InMemoryStorageAdapter):
    """
    In-memory adapter that can be told to fail, and records calls.

    upload_calls / download_calls count attempts, failed or not.
    """

    def __init__(
        self,
        provider: "ProviderType | str",
        fail_uploads: bool = False,
        fail_downloads: bool = False,
        fail_deletes: bool = False,
        url_cache: Optional[SignedUrlCache] = None,
    ) -> None:
        super().__init__(provider, url_cache=url_cache)
        self.fail_uploads = fail_uploads
        self.fail_downloads = fail_downloads
        self.fail_deletes = fail_deletes
        self.upload_calls = 0
        self.download_calls = 0
        self.delete_calls = 0

    async def upload(self, data, content_type, size, destination=None, filename=None, metadata=None):
        self.upload_calls += 1
        if self.fail_uploads:
            raise UploadFailed(
                f"{self.provider.value} is down",
                details={"provider": self.provider.value},
            )
        return await super().upload(
            data, content_type, size,
            destination=destination, filename=filename, metadata=metadata,
        )

    async def download(self, storage_file_id):
        self.download_calls += 1
        if self.fail_downloads:
            raise DownloadFailed("stream broke", details={"provider": self.provider.value})
        return await super().download(storage_file_id)

    async def delete(self, storage_file_id):
        self.delete_calls += 1
        if self.fail_deletes:
            raise RuntimeError("provider exploded")
        return await super().delete(storage_file_id)


class FailingWriteRepository(InMemoryFileRepository):
    """Metadata store whose create transaction always fails."""

    def create_with_storage(self, file, storage):
        raise DatabaseError("connection reset", details={"file_id": file.id})


class StaticProbe:
    """MediaProbe returning fixed dimensions."""

    def __init__(self, info: MediaInfo) -> None:
        self.info = info
        self.calls = 0

    async def probe(self, data, content_type):
        self.calls += 1
        return self.info


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository() -> InMemoryFileRepository:
    return InMemoryFileRepository()


@pytest.fixture
def aws() -> FlakyAdapter:
    return FlakyAdapter(ProviderType.AWS)


@pytest.fixture
def google() -> FlakyAdapter:
    return FlakyAdapter(ProviderType.GOOGLE)


@pytest.fixture
def azure() -> FlakyAdapter:
    return FlakyAdapter(ProviderType.AZURE)


@pytest.fixture
def service(aws, google, azure, repository) -> MediaStorageService:
    """Service over three healthy in-memory providers."""
    return MediaStorageService(
        registry=ProviderRegistry([aws, google, azure]),
        repository=repository,
    )
