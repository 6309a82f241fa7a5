"""
Tests for SnowflakeFileRepository against a fake connection.

The fake records every statement and lets a test script row counts,
query results and failures, so the transaction handling (commit, rollback,
error wrapping, not-found detection) is checked without a warehouse.
"""

import json
from contextlib import contextmanager
from datetime import datetime, timezone

import pytest

from mediavault.core.storage.errors import DatabaseError, FileNotFound
from mediavault.core.storage.models import (
    FileFilter,
    FileRecord,
    FileType,
    ProviderType,
    StorageInfoRecord,
    StorageMetadata,
)
from mediavault.infrastructure.snowflake import client as snowflake_client
from mediavault.infrastructure.snowflake.repositories.files import SnowflakeFileRepository

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fake connection
# ---------------------------------------------------------------------------

class FakeCursor:
    def __init__(self, conn):
        self._conn = conn
        self.rowcount = -1
        self.closed = False

    def execute(self, sql, params=None):
        statement = " ".join(sql.split())
        self._conn.statements.append((statement, params))
        if self._conn.fail_on and self._conn.fail_on in statement:
            raise RuntimeError("warehouse suspended")
        self.rowcount = self._conn.rowcounts.pop(0) if self._conn.rowcounts else 1

    def fetchone(self):
        return self._conn.results.pop(0) if self._conn.results else None

    def fetchall(self):
        return self._conn.results.pop(0) if self._conn.results else []

    def close(self):
        self.closed = True


class FakeConnection:
    def __init__(self):
        self.statements = []
        self.results = []
        self.rowcounts = []
        self.fail_on = None
        self.commits = 0
        self.rollbacks = 0
        self.cursors = []

    def cursor(self):
        cursor = FakeCursor(self)
        self.cursors.append(cursor)
        return cursor

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        pass


@pytest.fixture
def conn():
    return FakeConnection()


@pytest.fixture
def repo(conn):
    @contextmanager
    def connect():
        yield conn

    return SnowflakeFileRepository(connect)


def make_row(file_id="file-1", deleted_at=None, with_storage=True):
    """A joined FILES + STORAGE_INFO row in select-column order."""
    file_part = (
        file_id, "2024_3_north_pic.png", "IMAGE", "COMPLETE", "image/png", 12, "hash",
        640, 480, None, "png", '{"camera": "x100"}',
        2024, 3, "north", 2, 1,
        NOW, NOW, deleted_at,
    )
    if not with_storage:
        return file_part + (None,) * 9
    return file_part + (
        "storage-1", "aws", "objects/pic.png", "https://s3.test/pic.png", NOW,
        json.dumps({"file_size": 12, "mime_type": "image/png", "file_hash": "hash"}),
        True, NOW, NOW,
    )


def make_records():
    file = FileRecord(
        id="file-1",
        name="pic.png",
        type=FileType.IMAGE,
        mime_type="image/png",
        file_size=12,
        year=2024,
        month=3,
        metadata={"camera": "x100"},
        created_at=NOW,
        updated_at=NOW,
    )
    storage = StorageInfoRecord(
        id="storage-1",
        file_id="file-1",
        provider=ProviderType.AWS,
        storage_file_id="objects/pic.png",
        storage_metadata=StorageMetadata(file_size=12, mime_type="image/png", file_hash="hash"),
        created_at=NOW,
        updated_at=NOW,
    )
    return file, storage


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

class TestCreateWithStorage:

    def test_inserts_both_rows_in_one_commit(self, repo, conn):
        file, storage = make_records()

        created = repo.create_with_storage(file, storage)

        assert created.storage is storage
        assert len(conn.statements) == 2
        assert "INTO files" in conn.statements[0][0]
        assert "INTO storage_info" in conn.statements[1][0]
        assert conn.commits == 1
        assert conn.rollbacks == 0
        assert all(c.closed for c in conn.cursors)

    def test_variant_columns_are_sent_as_json(self, repo, conn):
        file, storage = make_records()
        repo.create_with_storage(file, storage)

        file_params = conn.statements[0][1]
        storage_params = conn.statements[1][1]
        assert json.loads(file_params[11]) == {"camera": "x100"}
        assert json.loads(storage_params[6])["file_hash"] == "hash"

    def test_failed_storage_insert_rolls_back_file_insert(self, repo, conn):
        conn.fail_on = "INTO storage_info"
        file, storage = make_records()

        with pytest.raises(DatabaseError) as excinfo:
            repo.create_with_storage(file, storage)

        assert conn.commits == 0
        assert conn.rollbacks == 1
        assert excinfo.value.details["operation"] == "create_with_storage"
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert all(c.closed for c in conn.cursors)


class TestNotFoundDetection:

    def test_soft_delete_of_missing_file(self, repo, conn):
        conn.rowcounts = [0]

        with pytest.raises(FileNotFound):
            repo.soft_delete("nope", NOW)

        assert conn.rollbacks == 1
        assert conn.commits == 0
        assert len(conn.statements) == 1

    def test_soft_delete_marks_file_and_binding(self, repo, conn):
        repo.soft_delete("file-1", NOW)

        statements = [s for s, _ in conn.statements]
        assert "UPDATE files SET deleted_at" in statements[0]
        assert "deleted_at IS NULL" in statements[0]
        assert "UPDATE storage_info SET is_active = FALSE" in statements[1]
        assert conn.commits == 1

    def test_increment_of_missing_file(self, repo, conn):
        conn.rowcounts = [0]
        with pytest.raises(FileNotFound):
            repo.increment_access_count("nope")
        assert conn.rollbacks == 1

    def test_increment_returns_updated_record(self, repo, conn):
        conn.results = [make_row()]

        record = repo.increment_access_count("file-1")

        assert "access_count = access_count + 1" in conn.statements[0][0]
        assert record.access_count == 2
        assert conn.commits == 1

    def test_update_url_of_missing_binding(self, repo, conn):
        conn.rowcounts = [0]
        with pytest.raises(FileNotFound):
            repo.update_storage_url("nope", "https://u", NOW)
        assert conn.rollbacks == 1


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

class TestReads:

    def test_get_hides_soft_deleted_rows(self, repo, conn):
        repo.get("file-1")
        repo.get("file-1", include_deleted=True)

        assert conn.statements[0][0].endswith("AND f.deleted_at IS NULL")
        assert "deleted_at IS NULL" not in conn.statements[1][0]

    def test_get_builds_record_with_binding(self, repo, conn):
        conn.results = [make_row()]

        record = repo.get("file-1")

        assert record.type is FileType.IMAGE
        assert record.metadata == {"camera": "x100"}
        assert record.path == "2024/3/north"
        assert record.storage.provider is ProviderType.AWS
        assert record.storage.storage_metadata.file_hash == "hash"
        assert record.is_active

    def test_get_row_without_binding(self, repo, conn):
        conn.results = [make_row(with_storage=False)]
        assert repo.get("file-1").storage is None

    def test_get_missing_returns_none(self, repo):
        assert repo.get("nope") is None

    def test_list_counts_then_pages_visible_rows(self, repo, conn):
        conn.results = [(3,), [make_row("a"), make_row("b")]]

        files, total = repo.list_active(
            FileFilter(branch_id="north", file_type=FileType.IMAGE, prefix="2024_"),
            offset=2,
            limit=2,
        )

        assert total == 3
        assert [f.id for f in files] == ["a", "b"]

        count_sql, count_params = conn.statements[0]
        page_sql, page_params = conn.statements[1]
        assert count_sql.startswith("SELECT COUNT(*)")
        assert "f.deleted_at IS NULL" in count_sql
        assert "f.deleted_at IS NULL" in page_sql
        assert count_params == ("north", "IMAGE", "2024_", "2024_")
        assert page_params == ("north", "IMAGE", "2024_", "2024_", 2, 2)
        assert "ORDER BY f.created_at DESC LIMIT %s OFFSET %s" in page_sql

    def test_read_failure_is_database_error(self, repo, conn):
        conn.fail_on = "SELECT"
        with pytest.raises(DatabaseError):
            repo.get("file-1")
        assert conn.rollbacks == 1


# ---------------------------------------------------------------------------
# Connection pool
# ---------------------------------------------------------------------------

class TestConnectionPool:

    @pytest.fixture
    def opened(self, monkeypatch):
        opened = []

        def fake_open(config):
            conn = FakeConnection()
            conn.closed = False
            conn.close = lambda: setattr(conn, "closed", True)
            opened.append(conn)
            return conn

        monkeypatch.setattr(snowflake_client, "open_snowflake_connection", fake_open)
        return opened

    def _pool(self, **kwargs):
        return snowflake_client.SnowflakeConnectionPool(
            snowflake_client.SnowflakeConfig(account="acct", user="svc"), **kwargs
        )

    def test_connections_are_reused(self, opened):
        pool = self._pool()

        with pool.connection() as first:
            pass
        with pool.connection() as second:
            pass

        assert first is second
        assert len(opened) == 1

    def test_checkouts_are_capped_at_pool_size(self, opened):
        pool = self._pool(pool_size=1, checkout_timeout=0.05)

        with pool.connection():
            with pytest.raises(snowflake_client.SnowflakeConnectionError):
                with pool.connection():
                    pass

        with pool.connection():
            pass
        assert len(opened) == 1

    def test_failed_block_closes_connection_and_frees_slot(self, opened):
        pool = self._pool(pool_size=1, checkout_timeout=0.05)

        with pytest.raises(RuntimeError):
            with pool.connection():
                raise RuntimeError("query failed")

        assert opened[0].closed
        with pool.connection() as conn:
            assert conn is opened[1]

    def test_close_drains_idle_connections(self, opened):
        pool = self._pool()
        with pool.connection():
            pass

        pool.close()

        assert opened[0].closed
