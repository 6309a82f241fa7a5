"""
AWS S3 storage adapter.

Uses boto3. Also works against S3-compatible services (R2, MinIO) when an
endpoint URL is configured.
"""

import logging
from dataclasses import dataclass
from typing import BinaryIO, Iterable, Optional

from mediavault.core.storage.errors import ValidationFailed
from mediavault.core.storage.models import ProviderType
from mediavault.core.storage.url_cache import SignedUrlCache

from .base import DEFAULT_TIMEOUT_SECONDS, BaseStorageAdapter, ObjectHead, ObjectMissing

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass
class S3Config:
    """Configuration for S3 (or S3-compatible) storage."""
    bucket_name: str
    region: str
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    endpoint_url: Optional[str] = None


class S3StorageAdapter(BaseStorageAdapter):
    """
    S3 adapter.

    The content hash is the object's ETag with its surrounding quotes
    stripped. Signed URLs are presigned ``get_object`` URLs.
    """

    provider = ProviderType.AWS

    def __init__(
        self,
        config: S3Config,
        url_cache: Optional[SignedUrlCache] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client=None,
    ) -> None:
        super().__init__(url_cache=url_cache, timeout_seconds=timeout_seconds)

        if not config.bucket_name or not config.region:
            raise ValidationFailed(
                "AWS storage requires a bucket name and region",
                details={"provider": self.provider.value},
            )
        self._config = config

        if client is None:
            # boto3 is only needed when aws is enabled
            import boto3
            from botocore.config import Config

            client = boto3.client(
                "s3",
                region_name=config.region,
                endpoint_url=config.endpoint_url,
                aws_access_key_id=config.access_key_id,
                aws_secret_access_key=config.secret_access_key,
                config=Config(signature_version="s3v4"),
            )
        self._s3_client = client

        logger.info(
            "Initialized S3 storage adapter",
            extra={"bucket": config.bucket_name, "region": config.region},
        )

    def _put_object(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, str],
    ) -> str:
        response = self._s3_client.put_object(
            Bucket=self._config.bucket_name,
            Key=key,
            Body=data,
            ContentType=content_type,
            Metadata=metadata,
        )
        return (response.get("ETag") or "").strip('"')

    def _head_object(self, key: str) -> Optional[ObjectHead]:
        try:
            response = self._s3_client.head_object(
                Bucket=self._config.bucket_name,
                Key=key,
            )
        except Exception as e:
            if _is_not_found(e):
                return None
            raise

        return ObjectHead(
            key=key,
            size=response.get("ContentLength", 0),
            content_type=response.get("ContentType", ""),
            file_hash=(response.get("ETag") or "").strip('"'),
            metadata=response.get("Metadata") or {},
            last_modified=response.get("LastModified"),
        )

    def _delete_object(self, key: str) -> None:
        self._s3_client.delete_object(Bucket=self._config.bucket_name, Key=key)

    def _iter_objects(self, prefix: Optional[str]) -> Iterable[ObjectHead]:
        paginator = self._s3_client.get_paginator("list_objects_v2")
        params = {"Bucket": self._config.bucket_name}
        if prefix:
            params["Prefix"] = prefix

        for page in paginator.paginate(**params):
            for obj in page.get("Contents", []):
                yield ObjectHead(
                    key=obj["Key"],
                    size=obj.get("Size", 0),
                    file_hash=(obj.get("ETag") or "").strip('"'),
                    last_modified=obj.get("LastModified"),
                )

    def _sign_url(self, key: str, expires_in: int) -> str:
        return self._s3_client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self._config.bucket_name, "Key": key},
            ExpiresIn=expires_in,
        )

    def _open_stream(self, key: str) -> BinaryIO:
        try:
            response = self._s3_client.get_object(
                Bucket=self._config.bucket_name,
                Key=key,
            )
        except Exception as e:
            if _is_not_found(e):
                raise ObjectMissing(key) from e
            raise
        return response["Body"]


def _is_not_found(error: Exception) -> bool:
    """True for botocore ClientErrors that mean the key does not exist."""
    response = getattr(error, "response", None) or {}
    code = str(response.get("Error", {}).get("Code", ""))
    return code in _NOT_FOUND_CODES
