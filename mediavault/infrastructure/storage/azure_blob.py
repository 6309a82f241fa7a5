"""
Azure Blob Storage adapter.

Uses azure-storage-blob with a connection string. Signed URLs are
read-only blob SAS tokens signed with the account key; the content hash is
the blob ETag.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import BinaryIO, Iterable, Optional

from mediavault.core.storage.errors import ValidationFailed
from mediavault.core.storage.models import ProviderType
from mediavault.core.storage.url_cache import SignedUrlCache

from .base import (
    DEFAULT_TIMEOUT_SECONDS,
    BaseStorageAdapter,
    ChunkedStream,
    ObjectHead,
    ObjectMissing,
)

logger = logging.getLogger(__name__)


@dataclass
class AzureBlobConfig:
    connection_string: str
    container_name: str


class AzureBlobStorageAdapter(BaseStorageAdapter):
    """
    Azure Blob Storage adapter.

    The content hash is the blob ETag without quotes. Signed URLs are
    read-only SAS tokens appended to the blob URL. Downloads stream the
    blob chunk by chunk.
    """

    provider = ProviderType.AZURE

    def __init__(
        self,
        config: AzureBlobConfig,
        url_cache: Optional[SignedUrlCache] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        service_client=None,
    ) -> None:
        super().__init__(url_cache=url_cache, timeout_seconds=timeout_seconds)

        if not config.connection_string or not config.container_name:
            raise ValidationFailed(
                "Azure storage requires a connection string and container name",
                details={"provider": self.provider.value},
            )
        self._config = config

        if service_client is None:
            from azure.storage.blob import BlobServiceClient

            service_client = BlobServiceClient.from_connection_string(
                config.connection_string
            )
        self._service = service_client
        self._container = service_client.get_container_client(config.container_name)

        logger.info(
            "Initialized Azure blob storage adapter",
            extra={"container": config.container_name},
        )

    def _put_object(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, str],
    ) -> str:
        from azure.storage.blob import ContentSettings

        response = self._container.get_blob_client(key).upload_blob(
            data,
            overwrite=True,
            content_settings=ContentSettings(content_type=content_type),
            metadata=metadata or None,
        )
        return (response.get("etag") or "").strip('"')

    def _head_object(self, key: str) -> Optional[ObjectHead]:
        from azure.core.exceptions import ResourceNotFoundError

        try:
            props = self._container.get_blob_client(key).get_blob_properties()
        except ResourceNotFoundError:
            return None
        return self._to_head(props)

    def _delete_object(self, key: str) -> None:
        from azure.core.exceptions import ResourceNotFoundError

        try:
            self._container.get_blob_client(key).delete_blob()
        except ResourceNotFoundError as e:
            raise ObjectMissing(key) from e

    def _iter_objects(self, prefix: Optional[str]) -> Iterable[ObjectHead]:
        for props in self._container.list_blobs(name_starts_with=prefix or None):
            yield self._to_head(props)

    def _sign_url(self, key: str, expires_in: int) -> str:
        from azure.storage.blob import BlobSasPermissions, generate_blob_sas

        blob_client = self._container.get_blob_client(key)
        sas_token = generate_blob_sas(
            account_name=self._service.account_name,
            container_name=self._config.container_name,
            blob_name=key,
            account_key=self._service.credential.account_key,
            permission=BlobSasPermissions(read=True),
            expiry=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )
        return f"{blob_client.url}?{sas_token}"

    def _open_stream(self, key: str) -> BinaryIO:
        from azure.core.exceptions import ResourceNotFoundError

        try:
            downloader = self._container.get_blob_client(key).download_blob()
        except ResourceNotFoundError as e:
            raise ObjectMissing(key) from e
        return ChunkedStream(downloader.chunks())

    @staticmethod
    def _to_head(props) -> ObjectHead:
        content_settings = getattr(props, "content_settings", None)
        return ObjectHead(
            key=props.name,
            size=props.size or 0,
            content_type=getattr(content_settings, "content_type", None) or "",
            file_hash=(props.etag or "").strip('"'),
            metadata=props.metadata or {},
            last_modified=props.last_modified,
        )
