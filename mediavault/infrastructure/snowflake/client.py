"""
Snowflake database connection management.

Provides a connection context manager and a small pool for the metadata
store. Connections run with autocommit off: each repository method commits
or rolls back its own transaction before returning.

Most code never touches this module directly; it goes through
SnowflakeFileRepository.
"""

import base64
import logging
import queue
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generator, Optional, Protocol

from mediavault.core.storage.errors import DatabaseError

logger = logging.getLogger(__name__)


class SnowflakeConnection(Protocol):
    """The subset of the connector's connection API the repository uses."""

    def cursor(self): ...
    def commit(self) -> None: ...
    def rollback(self) -> None: ...
    def close(self) -> None: ...


@dataclass
class SnowflakeConfig:
    """Configuration for Snowflake connection."""
    account: str
    user: str
    password: Optional[str] = None
    private_key_path: Optional[str] = None
    private_key_base64: Optional[str] = None
    database: str = "MEDIAVAULT"
    schema: str = "STORAGE"
    warehouse: str = "COMPUTE_WH"
    role: Optional[str] = None


class SnowflakeConnectionError(DatabaseError):
    """Raised when a Snowflake connection cannot be established."""


def _load_private_key(key_pem: bytes) -> bytes:
    """
    Convert a PEM private key to the DER/PKCS8 bytes snowflake-connector
    expects for key-pair authentication.
    """
    from cryptography.hazmat.backends import default_backend
    from cryptography.hazmat.primitives import serialization

    private_key = serialization.load_pem_private_key(
        key_pem,
        password=None,  # No password on the key
        backend=default_backend(),
    )

    return private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _connect_params(config: SnowflakeConfig) -> dict:
    params = {
        "account": config.account,
        "user": config.user,
        "database": config.database,
        "schema": config.schema,
        "warehouse": config.warehouse,
        "role": config.role,
        "autocommit": False,
        "client_session_keep_alive": True,
    }

    if config.private_key_path:
        logger.info("Using key-pair authentication for Snowflake")
        with open(config.private_key_path, "rb") as key_file:
            params["private_key"] = _load_private_key(key_file.read())
    elif config.private_key_base64:
        logger.info("Using base64 key-pair authentication for Snowflake")
        params["private_key"] = _load_private_key(base64.b64decode(config.private_key_base64))
    elif config.password:
        logger.info("Using password authentication for Snowflake")
        params["password"] = config.password
    else:
        raise SnowflakeConnectionError(
            "Either password or a private key must be provided"
        )
    return params


def open_snowflake_connection(config: SnowflakeConfig) -> SnowflakeConnection:
    """Open a new connection. The caller owns closing it."""
    import snowflake.connector

    try:
        conn = snowflake.connector.connect(**_connect_params(config))
    except SnowflakeConnectionError:
        raise
    except Exception as e:
        logger.error(
            "Snowflake connection failed",
            extra={"error": str(e), "account": config.account},
        )
        raise SnowflakeConnectionError(
            "Database connection failed",
            details={"account": config.account, "error": str(e)},
        ) from e

    logger.debug(
        "Established Snowflake connection",
        extra={
            "account": config.account,
            "database": config.database,
            "schema": config.schema,
        },
    )
    return conn


def _close_quietly(conn: SnowflakeConnection) -> None:
    try:
        conn.close()
        logger.debug("Closed Snowflake connection")
    except Exception as e:
        logger.warning("Error closing Snowflake connection", extra={"error": str(e)})


@contextmanager
def get_snowflake_connection(config: SnowflakeConfig) -> Generator[SnowflakeConnection, None, None]:
    """
    Provide a Snowflake connection with automatic cleanup.

    Usage:
        with get_snowflake_connection(config) as conn:
            cursor = conn.cursor()
            # do work
            conn.commit()
    """
    conn = open_snowflake_connection(config)
    try:
        yield conn
    finally:
        _close_quietly(conn)


# ---------------------------------------------------------------------------
# Connection Pool
# ---------------------------------------------------------------------------

class SnowflakeConnectionPool:
    """
    Bounded pool of reusable Snowflake connections.

    At most ``pool_size`` connections are checked out at once; further
    callers wait up to ``checkout_timeout`` seconds for one to come back.
    Connections are opened lazily and returned to the pool after use. A
    connection that raised while checked out is closed instead of being
    reused.
    """

    def __init__(
        self,
        config: SnowflakeConfig,
        pool_size: int = 5,
        checkout_timeout: float = 30.0,
    ) -> None:
        self._config = config
        self._pool_size = pool_size
        self._checkout_timeout = checkout_timeout
        self._slots = threading.BoundedSemaphore(pool_size)
        self._idle: "queue.LifoQueue[SnowflakeConnection]" = queue.LifoQueue(maxsize=pool_size)

        logger.info(
            "Initialized Snowflake connection pool",
            extra={"pool_size": pool_size},
        )

    @contextmanager
    def connection(self) -> Generator[SnowflakeConnection, None, None]:
        """Check out a connection for the duration of the block."""
        if not self._slots.acquire(timeout=self._checkout_timeout):
            raise SnowflakeConnectionError(
                "Timed out waiting for a Snowflake connection",
                details={"pool_size": self._pool_size},
            )

        try:
            try:
                conn = self._idle.get_nowait()
            except queue.Empty:
                conn = open_snowflake_connection(self._config)

            try:
                yield conn
            except Exception:
                _close_quietly(conn)
                raise

            try:
                self._idle.put_nowait(conn)
            except queue.Full:
                _close_quietly(conn)
        finally:
            self._slots.release()

    def ping(self) -> None:
        """Run a trivial query; raises when the store is unreachable."""
        with self.connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute("SELECT 1")
                cursor.fetchone()
            finally:
                cursor.close()

    def close(self) -> None:
        while True:
            try:
                conn = self._idle.get_nowait()
            except queue.Empty:
                return
            _close_quietly(conn)
