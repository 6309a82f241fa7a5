"""
Contract for the metadata store holding File and StorageInfo records.

Every method is its own unit of atomicity: it opens a transaction, does its
work and commits (or rolls back) before returning. Nothing holds a
transaction open across calls.

Implementations raise DatabaseError for store failures and return None
(rather than raising) when a looked-up record does not exist.
"""

from datetime import datetime
from typing import Optional, Protocol

from .models import FileFilter, FileRecord, StorageInfoRecord


class FileRepository(Protocol):

    def create_with_storage(
        self,
        file: FileRecord,
        storage: StorageInfoRecord,
    ) -> FileRecord:
        """Insert a File and its StorageInfo in one transaction."""
        ...

    def get(self, file_id: str, include_deleted: bool = False) -> Optional[FileRecord]:
        """Load a File with its StorageInfo; soft-deleted rows only on request."""
        ...

    def list_active(
        self,
        file_filter: FileFilter,
        offset: int,
        limit: int,
    ) -> tuple[list[FileRecord], int]:
        """Visible files newest first, plus the total count matching the filter."""
        ...

    def find_by_path(
        self,
        year: int,
        month: int,
        branch_id: str,
        name: str,
    ) -> Optional[FileRecord]:
        ...

    def soft_delete(self, file_id: str, deleted_at: datetime) -> None:
        """Set deleted_at on the File and is_active=False on its StorageInfo."""
        ...

    def hard_delete(self, file_id: str) -> None:
        """Remove the File and its StorageInfo rows."""
        ...

    def increment_access_count(self, file_id: str) -> FileRecord:
        """Atomically add one to access_count and return the updated record."""
        ...

    def update_storage_url(
        self,
        file_id: str,
        storage_url: str,
        issued_at: datetime,
    ) -> FileRecord:
        """Persist a freshly issued URL on the File's StorageInfo."""
        ...
