"""
Repository pattern implementations for Snowflake.

Repositories translate between domain models and database representations.
"""

from .files import InMemoryFileRepository, SnowflakeFileRepository

__all__ = ["InMemoryFileRepository", "SnowflakeFileRepository"]
