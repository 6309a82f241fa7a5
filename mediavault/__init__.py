"""
MediaVault - multi-provider media storage service.

This package contains the complete application:
- core: Framework-agnostic storage orchestration
- infrastructure: Provider SDKs, metadata store, media probing
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
