"""
Builds adapters and the provider registry from settings.

Startup fails hard: an empty provider list, an unknown tag, or an adapter
that cannot be constructed raises instead of starting with fewer providers.
"""

import logging
from typing import Optional

from mediavault.config import Settings
from mediavault.core.storage.errors import StorageError, ValidationFailed
from mediavault.core.storage.models import ProviderType
from mediavault.core.storage.registry import ProviderRegistry
from mediavault.core.storage.url_cache import SignedUrlCache

from .aws_s3 import S3Config, S3StorageAdapter
from .azure_blob import AzureBlobConfig, AzureBlobStorageAdapter
from .base import BaseStorageAdapter
from .google_cloud import GoogleCloudConfig, GoogleCloudStorageAdapter
from .local import LocalFileStorageAdapter, LocalStorageConfig
from .memory import InMemoryStorageAdapter

logger = logging.getLogger(__name__)


def create_adapter(
    provider: "ProviderType | str",
    settings: Settings,
    url_cache: Optional[SignedUrlCache] = None,
) -> BaseStorageAdapter:
    """
    Create the adapter for one provider tag.

    In storage mock mode every tag gets an in-memory adapter.

    Raises:
        ValidationFailed: unknown tag, or the adapter could not be built
    """
    try:
        tag = ProviderType.parse(provider)
    except ValueError as e:
        raise ValidationFailed(
            f"Unknown storage provider: {provider}",
            details={"provider": str(provider)},
        ) from e

    if url_cache is None:
        url_cache = SignedUrlCache(max_entries=settings.signed_url_cache_max_entries)
    timeout = settings.provider_timeout_seconds

    if settings.storage_mock_mode:
        return InMemoryStorageAdapter(tag, url_cache=url_cache, timeout_seconds=timeout)

    try:
        if tag is ProviderType.AWS:
            return S3StorageAdapter(
                S3Config(
                    bucket_name=settings.aws_bucket_name,
                    region=settings.aws_region,
                    access_key_id=settings.aws_access_key_id,
                    secret_access_key=settings.aws_secret_access_key,
                    endpoint_url=settings.aws_endpoint_url,
                ),
                url_cache=url_cache,
                timeout_seconds=timeout,
            )
        if tag is ProviderType.GOOGLE:
            return GoogleCloudStorageAdapter(
                GoogleCloudConfig(
                    bucket_name=settings.gcp_bucket_name,
                    credentials_path=settings.gcp_credentials_path,
                    project_id=settings.gcp_project_id,
                ),
                url_cache=url_cache,
                timeout_seconds=timeout,
            )
        if tag is ProviderType.AZURE:
            return AzureBlobStorageAdapter(
                AzureBlobConfig(
                    connection_string=settings.azure_connection_string,
                    container_name=settings.azure_container_name,
                ),
                url_cache=url_cache,
                timeout_seconds=timeout,
            )
        return LocalFileStorageAdapter(
            LocalStorageConfig(
                root_dir=settings.local_storage_root,
                public_base_url=settings.local_public_base_url,
                signing_secret=settings.local_signing_secret,
            ),
            url_cache=url_cache,
            timeout_seconds=timeout,
        )
    except StorageError:
        raise
    except Exception as e:
        logger.error(
            "Failed to initialize storage adapter",
            extra={"provider": tag.value, "error": str(e)},
        )
        raise ValidationFailed(
            f"Failed to initialize storage provider: {tag.value}",
            details={"provider": tag.value, "error": str(e)},
        ) from e


def build_registry(settings: Settings) -> ProviderRegistry:
    """Create one adapter per enabled provider, in configured order."""
    tags = settings.enabled_providers_list
    if not tags:
        raise ValidationFailed("ENABLED_CLOUD_PROVIDERS is empty")

    adapters = [create_adapter(tag, settings) for tag in tags]
    return ProviderRegistry(adapters)
