"""
Snowflake repository for media files and their storage bindings.

The repository:
1. Translates between FileRecord/StorageInfoRecord and FILES/STORAGE_INFO rows
2. Encapsulates all SQL queries
3. Runs every method in its own transaction (commit on success, rollback
   and DatabaseError on failure)

The service never writes SQL directly; it asks the repository for what it
needs in domain terms. InMemoryFileRepository implements the same contract
for mock mode and tests.
"""

import copy
import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, ContextManager, Generator, Optional

from mediavault.core.storage.errors import DatabaseError, FileNotFound, StorageError
from mediavault.core.storage.models import (
    FileFilter,
    FileRecord,
    FileStatus,
    FileType,
    ProviderType,
    StorageInfoRecord,
    StorageMetadata,
)

from ..client import SnowflakeConnection

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], ContextManager[SnowflakeConnection]]

_FILE_COLUMNS = """
    f.id, f.name, f.type, f.status, f.mime_type, f.file_size, f.file_hash,
    f.width, f.height, f.duration, f.encoding, f.metadata,
    f.year, f.month, f.branch_id, f.access_count, f.version,
    f.created_at, f.updated_at, f.deleted_at,
    s.id, s.provider, s.storage_file_id, s.storage_url, s.url_issued_at,
    s.storage_metadata, s.is_active, s.created_at, s.updated_at
"""

_SELECT_FILES = f"""
    SELECT {_FILE_COLUMNS}
    FROM files f
    LEFT JOIN storage_info s ON s.file_id = f.id
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SnowflakeFileRepository:
    """
    File/StorageInfo persistence on Snowflake.

    Args:
        connection_factory: returns a context manager yielding a connection
            (normally ``SnowflakeConnectionPool.connection``)
    """

    def __init__(self, connection_factory: ConnectionFactory) -> None:
        self._connect = connection_factory

    def create_with_storage(
        self,
        file: FileRecord,
        storage: StorageInfoRecord,
    ) -> FileRecord:
        """Insert a File and its StorageInfo in one transaction."""
        with self._transaction("create_with_storage", file_id=file.id) as cursor:
            cursor.execute("""
                INSERT INTO files (
                    id, name, type, status, mime_type, file_size, file_hash,
                    width, height, duration, encoding, metadata,
                    year, month, branch_id, access_count, version,
                    created_at, updated_at
                )
                SELECT %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                       PARSE_JSON(%s), %s, %s, %s, %s, %s, %s, %s
            """, (
                file.id, file.name, file.type.value, file.status.value,
                file.mime_type, file.file_size, file.file_hash,
                file.width, file.height, file.duration, file.encoding,
                json.dumps(file.metadata, default=str),
                file.year, file.month, file.branch_id,
                file.access_count, file.version,
                file.created_at, file.updated_at,
            ))

            metadata_json = json.dumps(
                storage.storage_metadata.to_dict() if storage.storage_metadata else {}
            )
            cursor.execute("""
                INSERT INTO storage_info (
                    id, file_id, provider, storage_file_id, storage_url,
                    url_issued_at, storage_metadata, is_active,
                    created_at, updated_at
                )
                SELECT %s, %s, %s, %s, %s, %s, PARSE_JSON(%s), %s, %s, %s
            """, (
                storage.id, file.id, storage.provider.value,
                storage.storage_file_id, storage.storage_url,
                storage.url_issued_at, metadata_json, storage.is_active,
                storage.created_at, storage.updated_at,
            ))

        return replace(file, storage=storage)

    def get(self, file_id: str, include_deleted: bool = False) -> Optional[FileRecord]:
        query = _SELECT_FILES + " WHERE f.id = %s"
        if not include_deleted:
            query += " AND f.deleted_at IS NULL"

        with self._transaction("get", file_id=file_id) as cursor:
            cursor.execute(query, (file_id,))
            row = cursor.fetchone()

        return self._build_file(row) if row else None

    def list_active(
        self,
        file_filter: FileFilter,
        offset: int,
        limit: int,
    ) -> tuple[list[FileRecord], int]:
        """
        Visible files newest first, plus the total count.

        ``prefix`` matches the start of the file name or of the storage key.
        """
        clauses = ["f.deleted_at IS NULL"]
        params: list = []

        if file_filter.branch_id:
            clauses.append("f.branch_id = %s")
            params.append(file_filter.branch_id)
        if file_filter.file_type:
            clauses.append("f.type = %s")
            params.append(file_filter.file_type.value)
        if file_filter.prefix:
            clauses.append("(STARTSWITH(f.name, %s) OR STARTSWITH(s.storage_file_id, %s))")
            params.extend([file_filter.prefix, file_filter.prefix])

        where = " WHERE " + " AND ".join(clauses)

        with self._transaction("list_active") as cursor:
            cursor.execute(f"""
                SELECT COUNT(*)
                FROM files f
                LEFT JOIN storage_info s ON s.file_id = f.id
                {where}
            """, tuple(params))
            total = cursor.fetchone()[0]

            cursor.execute(
                _SELECT_FILES + where + " ORDER BY f.created_at DESC LIMIT %s OFFSET %s",
                tuple(params) + (limit, offset),
            )
            rows = cursor.fetchall()

        return [self._build_file(row) for row in rows], int(total)

    def find_by_path(
        self,
        year: int,
        month: int,
        branch_id: str,
        name: str,
    ) -> Optional[FileRecord]:
        with self._transaction("find_by_path", name=name) as cursor:
            cursor.execute(_SELECT_FILES + """
                WHERE f.year = %s AND f.month = %s AND f.branch_id = %s
                  AND f.name = %s AND f.deleted_at IS NULL
                ORDER BY f.created_at DESC
                LIMIT 1
            """, (year, month, branch_id, name))
            row = cursor.fetchone()

        return self._build_file(row) if row else None

    def soft_delete(self, file_id: str, deleted_at: datetime) -> None:
        with self._transaction("soft_delete", file_id=file_id) as cursor:
            cursor.execute("""
                UPDATE files
                SET deleted_at = %s, updated_at = %s
                WHERE id = %s AND deleted_at IS NULL
            """, (deleted_at, deleted_at, file_id))
            if cursor.rowcount == 0:
                raise FileNotFound("File not found", details={"file_id": file_id})

            cursor.execute("""
                UPDATE storage_info
                SET is_active = FALSE, updated_at = %s
                WHERE file_id = %s
            """, (deleted_at, file_id))

    def ping(self) -> None:
        """Round-trip to the store; raises DatabaseError when unreachable."""
        with self._transaction("ping") as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()

    def hard_delete(self, file_id: str) -> None:
        with self._transaction("hard_delete", file_id=file_id) as cursor:
            cursor.execute("DELETE FROM storage_info WHERE file_id = %s", (file_id,))
            cursor.execute("DELETE FROM files WHERE id = %s", (file_id,))

    def increment_access_count(self, file_id: str) -> FileRecord:
        with self._transaction("increment_access_count", file_id=file_id) as cursor:
            cursor.execute("""
                UPDATE files
                SET access_count = access_count + 1, updated_at = %s
                WHERE id = %s AND deleted_at IS NULL
            """, (_utcnow(), file_id))
            if cursor.rowcount == 0:
                raise FileNotFound("File not found", details={"file_id": file_id})

            cursor.execute(_SELECT_FILES + " WHERE f.id = %s", (file_id,))
            row = cursor.fetchone()

        return self._build_file(row)

    def update_storage_url(
        self,
        file_id: str,
        storage_url: str,
        issued_at: datetime,
    ) -> FileRecord:
        with self._transaction("update_storage_url", file_id=file_id) as cursor:
            cursor.execute("""
                UPDATE storage_info
                SET storage_url = %s, url_issued_at = %s, updated_at = %s
                WHERE file_id = %s
            """, (storage_url, issued_at, issued_at, file_id))
            if cursor.rowcount == 0:
                raise FileNotFound("File not found", details={"file_id": file_id})

            cursor.execute(_SELECT_FILES + " WHERE f.id = %s", (file_id,))
            row = cursor.fetchone()

        return self._build_file(row)

    # -----------------------------------------------------------------------
    # Private Methods
    # -----------------------------------------------------------------------

    @contextmanager
    def _transaction(self, operation: str, **context) -> Generator:
        """Yield a cursor; commit on success, roll back and wrap on failure."""
        with self._connect() as conn:
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except StorageError:
                conn.rollback()
                raise
            except Exception as e:
                conn.rollback()
                logger.error(
                    "Metadata store operation failed",
                    extra={"operation": operation, "error": str(e), **context},
                )
                raise DatabaseError(
                    f"Database operation failed: {operation}",
                    details={"operation": operation, "error": str(e), **context},
                ) from e
            finally:
                cursor.close()

    def _build_file(self, row) -> FileRecord:
        """Construct a FileRecord (with its StorageInfo) from a joined row."""
        storage = None
        if row[20]:  # storage_info.id
            storage = StorageInfoRecord(
                id=row[20],
                file_id=row[0],
                provider=ProviderType.parse(row[21]),
                storage_file_id=row[22],
                storage_url=row[23],
                url_issued_at=row[24],
                storage_metadata=StorageMetadata.from_dict(self._parse_variant_json(row[25])),
                is_active=bool(row[26]),
                created_at=row[27],
                updated_at=row[28],
            )

        return FileRecord(
            id=row[0],
            name=row[1],
            type=FileType(row[2]),
            status=FileStatus(row[3]),
            mime_type=row[4],
            file_size=row[5] or 0,
            file_hash=row[6] or "",
            width=row[7],
            height=row[8],
            duration=row[9],
            encoding=row[10],
            metadata=self._parse_variant_json(row[11]) or {},
            year=row[12],
            month=row[13],
            branch_id=row[14],
            access_count=row[15] or 0,
            version=row[16] or 1,
            created_at=row[17],
            updated_at=row[18],
            deleted_at=row[19],
            storage=storage,
        )

    def _parse_variant_json(self, variant_data):
        """
        Parse Snowflake VARIANT data that might be a string or already parsed.

        snowflake-connector-python returns VARIANT columns as JSON strings.
        """
        if not variant_data:
            return None

        if isinstance(variant_data, str):
            try:
                return json.loads(variant_data)
            except json.JSONDecodeError as e:
                logger.error(
                    "Failed to parse VARIANT JSON string",
                    extra={"variant_data": variant_data[:100], "error": str(e)}
                )
                return None

        return variant_data


# ---------------------------------------------------------------------------
# Mock Repository for Local Development
# ---------------------------------------------------------------------------

class InMemoryFileRepository:
    """
    In-memory File/StorageInfo store.

    Enables running the full API without a real database. Records are
    copied on the way in and out so callers cannot mutate stored state;
    every method holds one lock, which makes each call atomic.

    Not suitable for production, but perfect for local development and tests.
    """

    def __init__(self) -> None:
        self._files: dict[str, FileRecord] = {}
        self._lock = threading.RLock()
        logger.info("Initialized in-memory file repository")

    def create_with_storage(
        self,
        file: FileRecord,
        storage: StorageInfoRecord,
    ) -> FileRecord:
        record = replace(copy.deepcopy(file), storage=copy.deepcopy(storage))
        with self._lock:
            if record.id in self._files:
                raise DatabaseError(
                    "File already exists",
                    details={"file_id": record.id},
                )
            self._files[record.id] = record
            return copy.deepcopy(record)

    def get(self, file_id: str, include_deleted: bool = False) -> Optional[FileRecord]:
        with self._lock:
            record = self._files.get(file_id)
            if record is None or (record.deleted_at is not None and not include_deleted):
                return None
            return copy.deepcopy(record)

    def list_active(
        self,
        file_filter: FileFilter,
        offset: int,
        limit: int,
    ) -> tuple[list[FileRecord], int]:
        with self._lock:
            # newest insert first among equal timestamps
            candidates = [
                record for record in reversed(list(self._files.values()))
                if self._matches(record, file_filter)
            ]
            candidates.sort(
                key=lambda r: r.created_at or datetime.min.replace(tzinfo=timezone.utc),
                reverse=True,
            )
            page = candidates[offset:offset + limit]
            return [copy.deepcopy(r) for r in page], len(candidates)

    def find_by_path(
        self,
        year: int,
        month: int,
        branch_id: str,
        name: str,
    ) -> Optional[FileRecord]:
        with self._lock:
            for record in reversed(list(self._files.values())):
                if (
                    record.deleted_at is None
                    and record.year == year
                    and record.month == month
                    and record.branch_id == branch_id
                    and record.name == name
                ):
                    return copy.deepcopy(record)
        return None

    def soft_delete(self, file_id: str, deleted_at: datetime) -> None:
        with self._lock:
            record = self._require_visible(file_id)
            record.deleted_at = deleted_at
            record.updated_at = deleted_at
            if record.storage is not None:
                record.storage.is_active = False
                record.storage.updated_at = deleted_at

    def hard_delete(self, file_id: str) -> None:
        with self._lock:
            self._files.pop(file_id, None)

    def increment_access_count(self, file_id: str) -> FileRecord:
        with self._lock:
            record = self._require_visible(file_id)
            record.access_count += 1
            record.updated_at = _utcnow()
            return copy.deepcopy(record)

    def update_storage_url(
        self,
        file_id: str,
        storage_url: str,
        issued_at: datetime,
    ) -> FileRecord:
        with self._lock:
            record = self._files.get(file_id)
            if record is None or record.storage is None:
                raise FileNotFound("File not found", details={"file_id": file_id})
            record.storage.storage_url = storage_url
            record.storage.url_issued_at = issued_at
            record.storage.updated_at = issued_at
            return copy.deepcopy(record)

    def ping(self) -> None:
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._files)

    def _require_visible(self, file_id: str) -> FileRecord:
        record = self._files.get(file_id)
        if record is None or record.deleted_at is not None:
            raise FileNotFound("File not found", details={"file_id": file_id})
        return record

    @staticmethod
    def _matches(record: FileRecord, file_filter: FileFilter) -> bool:
        if record.deleted_at is not None:
            return False
        if file_filter.branch_id and record.branch_id != file_filter.branch_id:
            return False
        if file_filter.file_type and record.type is not file_filter.file_type:
            return False
        if file_filter.prefix:
            storage_key = record.storage.storage_file_id if record.storage else ""
            if not (
                record.name.startswith(file_filter.prefix)
                or storage_key.startswith(file_filter.prefix)
            ):
                return False
        return True
