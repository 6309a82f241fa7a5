"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables (and a .env file) with
defaults suited to local development. Provider credentials are only checked
for the providers listed in ENABLED_CLOUD_PROVIDERS, and mock modes swap
real backends for in-memory ones.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    For lists (like enabled_cloud_providers), use comma-separated values.
    """

    # API Configuration
    api_title: str = "MediaVault Storage API"
    api_version: str = "v1"

    # Provider selection
    enabled_cloud_providers: str = Field(
        default="local",
        description="Comma-separated provider tags (aws, google, azure, local). Order is the round-robin order."
    )
    provider_timeout_seconds: float = Field(
        default=30.0,
        description="Upper bound on any single provider call before it counts as a failure."
    )
    signed_url_expires_in: int = Field(
        default=3600,
        description="Lifetime in seconds of URLs issued by the file URL endpoint."
    )
    signed_url_cache_max_entries: Optional[int] = Field(
        default=10_000,
        description="Per-adapter signed URL cache size. 0 disables the bound."
    )
    storage_mock_mode: bool = Field(
        default=False,
        description="Use in-memory adapters for every enabled provider. Enables local dev without cloud accounts."
    )

    # AWS S3
    aws_bucket_name: str = Field(default="", description="S3 bucket name")
    aws_region: str = Field(default="", description="S3 bucket region")
    aws_access_key_id: Optional[str] = Field(
        default=None,
        description="Access key ID. Falls back to the default boto3 credential chain when unset."
    )
    aws_secret_access_key: Optional[str] = Field(default=None, description="Secret access key")
    aws_endpoint_url: Optional[str] = Field(
        default=None,
        description="Custom endpoint for S3-compatible services (R2, MinIO)"
    )

    # Google Cloud Storage
    gcp_bucket_name: str = Field(default="", description="GCS bucket name")
    gcp_credentials_path: str = Field(
        default="",
        description="Path to a service-account JSON key file"
    )
    gcp_project_id: Optional[str] = Field(default=None, description="GCP project ID (optional)")

    # Azure Blob Storage
    azure_connection_string: str = Field(default="", description="Storage account connection string")
    azure_container_name: str = Field(default="", description="Blob container name")

    # Local filesystem storage
    local_storage_root: str = Field(
        default="./data/storage",
        description="Directory holding objects for the local provider"
    )
    local_public_base_url: str = Field(
        default="http://localhost:8000/api/v1/storage/local",
        description="Base URL of the route that serves local-provider signed URLs"
    )
    local_signing_secret: str = Field(
        default="change-me",
        description="HMAC secret for local-provider signed URLs"
    )

    # Snowflake Configuration
    snowflake_account: str = Field(
        default="",
        description="Snowflake account identifier"
    )
    snowflake_user: str = Field(
        default="",
        description="Snowflake service account username"
    )
    snowflake_password: str = Field(
        default="",
        description="Snowflake service account password"
    )
    snowflake_private_key_path: Optional[str] = Field(
        default=None,
        description="Path to RSA private key file for key-pair authentication"
    )
    snowflake_private_key_base64: Optional[str] = Field(
        default=None,
        description="Base64-encoded private key (for deployment, alternative to file path)"
    )
    snowflake_database: str = Field(
        default="MEDIAVAULT",
        description="Snowflake database name"
    )
    snowflake_schema: str = Field(
        default="STORAGE",
        description="Snowflake schema name"
    )
    snowflake_warehouse: str = Field(
        default="COMPUTE_WH",
        description="Snowflake warehouse for query execution"
    )
    snowflake_role: Optional[str] = Field(
        default=None,
        description="Snowflake role to use (optional)"
    )
    snowflake_mock_mode: bool = Field(
        default=False,
        description="Use in-memory mock instead of real Snowflake connection. Enables local dev without DB."
    )

    # Media probing
    media_probe_enabled: bool = Field(
        default=True,
        description="Run ffprobe on uploads to record width/height/duration/codec."
    )
    ffprobe_path: str = Field(default="ffprobe", description="ffprobe executable")
    media_probe_timeout_seconds: float = Field(
        default=15.0,
        description="Upper bound on one ffprobe run before the upload proceeds without dimensions."
    )

    # Application Behavior
    max_upload_size_mb: int = Field(
        default=100,
        description="Maximum upload size in MB."
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def enabled_providers_list(self) -> list[str]:
        """Parse comma-separated provider tags, lowercased, order kept."""
        return [
            tag.strip().lower()
            for tag in self.enabled_cloud_providers.split(",")
            if tag.strip()
        ]

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set for the enabled providers.

        Returns list of missing required fields. Requirements depend on
        which providers are enabled and on the mock modes, so this is not
        expressed as Pydantic validation.
        """
        missing = []
        enabled = set(self.enabled_providers_list)

        if not self.storage_mock_mode:
            if "aws" in enabled:
                if not self.aws_bucket_name:
                    missing.append("AWS_BUCKET_NAME")
                if not self.aws_region:
                    missing.append("AWS_REGION")
            if "google" in enabled:
                if not self.gcp_bucket_name:
                    missing.append("GCP_BUCKET_NAME")
                if not self.gcp_credentials_path:
                    missing.append("GCP_CREDENTIALS_PATH")
            if "azure" in enabled:
                if not self.azure_connection_string:
                    missing.append("AZURE_CONNECTION_STRING")
                if not self.azure_container_name:
                    missing.append("AZURE_CONTAINER_NAME")
            if "local" in enabled and not self.local_storage_root:
                missing.append("LOCAL_STORAGE_ROOT")

        # Snowflake only required if not in mock mode
        if not self.snowflake_mock_mode:
            if not self.snowflake_account:
                missing.append("SNOWFLAKE_ACCOUNT")
            if not self.snowflake_user:
                missing.append("SNOWFLAKE_USER")
            has_key = self.snowflake_private_key_path or self.snowflake_private_key_base64
            if not self.snowflake_password and not has_key:
                missing.append("SNOWFLAKE_PASSWORD or SNOWFLAKE_PRIVATE_KEY_PATH")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once per process. For tests, call
    get_settings.cache_clear() to reset.
    """
    return Settings()
