"""
Google Cloud Storage adapter.

Uses google-cloud-storage with service-account credentials. The URL
recorded at upload time is the static ``storage.googleapis.com`` URL;
get_public_url hands out V4 signed URLs, and checks the blob exists first
since the signer does not.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import BinaryIO, Iterable, Optional

from mediavault.core.storage.errors import ValidationFailed
from mediavault.core.storage.models import ProviderType
from mediavault.core.storage.url_cache import SignedUrlCache

from .base import DEFAULT_TIMEOUT_SECONDS, BaseStorageAdapter, ObjectHead, ObjectMissing

logger = logging.getLogger(__name__)

PUBLIC_BASE_URL = "https://storage.googleapis.com"


@dataclass
class GoogleCloudConfig:
    bucket_name: str
    credentials_path: str
    project_id: Optional[str] = None


class GoogleCloudStorageAdapter(BaseStorageAdapter):
    """
    Google Cloud Storage adapter.

    The content hash is the blob's base64 MD5. Uploads record the static
    ``storage.googleapis.com`` URL; get_public_url issues v4 signed URLs and
    checks the blob exists first, since signing never touches the bucket.
    """

    provider = ProviderType.GOOGLE
    requires_existence_for_url = True

    def __init__(
        self,
        config: GoogleCloudConfig,
        url_cache: Optional[SignedUrlCache] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client=None,
    ) -> None:
        super().__init__(url_cache=url_cache, timeout_seconds=timeout_seconds)

        if not config.bucket_name or not config.credentials_path:
            raise ValidationFailed(
                "Google Cloud storage requires a bucket name and credentials path",
                details={"provider": self.provider.value},
            )
        self._config = config

        if client is None:
            from google.cloud import storage

            client = storage.Client.from_service_account_json(
                config.credentials_path,
                project=config.project_id,
            )
        self._client = client
        self._bucket = client.bucket(config.bucket_name)

        logger.info(
            "Initialized Google Cloud storage adapter",
            extra={"bucket": config.bucket_name},
        )

    async def _storage_url(self, key: str) -> Optional[str]:
        return f"{PUBLIC_BASE_URL}/{self._config.bucket_name}/{key}"

    def _put_object(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, str],
    ) -> str:
        blob = self._bucket.blob(key)
        if metadata:
            blob.metadata = metadata
        blob.upload_from_string(data, content_type=content_type)
        return blob.md5_hash or ""

    def _head_object(self, key: str) -> Optional[ObjectHead]:
        blob = self._bucket.get_blob(key)
        if blob is None:
            return None
        return self._to_head(blob)

    def _delete_object(self, key: str) -> None:
        from google.api_core.exceptions import NotFound

        try:
            self._bucket.blob(key).delete()
        except NotFound as e:
            raise ObjectMissing(key) from e

    def _iter_objects(self, prefix: Optional[str]) -> Iterable[ObjectHead]:
        for blob in self._client.list_blobs(self._config.bucket_name, prefix=prefix or None):
            yield self._to_head(blob)

    def _sign_url(self, key: str, expires_in: int) -> str:
        return self._bucket.blob(key).generate_signed_url(
            version="v4",
            expiration=timedelta(seconds=expires_in),
            method="GET",
        )

    def _open_stream(self, key: str) -> BinaryIO:
        blob = self._bucket.get_blob(key)
        if blob is None:
            raise ObjectMissing(key)
        return blob.open("rb")

    @staticmethod
    def _to_head(blob) -> ObjectHead:
        return ObjectHead(
            key=blob.name,
            size=blob.size or 0,
            content_type=blob.content_type or "",
            file_hash=blob.md5_hash or "",
            metadata=blob.metadata or {},
            last_modified=blob.updated or blob.time_created,
        )
