"""
Infrastructure layer - external service integrations.

Each subdirectory wraps an external dependency:
- storage: Object storage providers (S3, GCS, Azure Blob, local disk)
- snowflake: Metadata persistence
- media: FFprobe media inspection

These wrappers translate between external formats and our domain models.
"""
