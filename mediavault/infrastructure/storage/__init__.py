"""
Object storage adapters: AWS S3, Google Cloud Storage, Azure Blob Storage,
the local filesystem, and an in-memory mock for development and tests.
"""

from .aws_s3 import S3Config, S3StorageAdapter
from .azure_blob import AzureBlobConfig, AzureBlobStorageAdapter
from .base import BaseStorageAdapter
from .factory import build_registry, create_adapter
from .google_cloud import GoogleCloudConfig, GoogleCloudStorageAdapter
from .local import LocalFileStorageAdapter, LocalStorageConfig
from .memory import InMemoryStorageAdapter

__all__ = [
    "AzureBlobConfig",
    "AzureBlobStorageAdapter",
    "BaseStorageAdapter",
    "GoogleCloudConfig",
    "GoogleCloudStorageAdapter",
    "InMemoryStorageAdapter",
    "LocalFileStorageAdapter",
    "LocalStorageConfig",
    "S3Config",
    "S3StorageAdapter",
    "build_registry",
    "create_adapter",
]
