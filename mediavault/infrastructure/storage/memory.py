"""
In-memory storage adapter for local development and tests.

Objects live in a dict and "signed URLs" are mock URIs carrying the expiry,
so the whole upload/download/delete flow can be exercised without any cloud
account. The adapter can stand in for any provider tag; mock mode builds one
per enabled provider so failover still has something to rotate over.

Not suitable for production.
"""

import hashlib
import io
import logging
import threading
import time
from datetime import datetime, timezone
from typing import BinaryIO, Iterable, Optional

from mediavault.core.storage.models import ProviderType
from mediavault.core.storage.url_cache import SignedUrlCache

from .base import DEFAULT_TIMEOUT_SECONDS, BaseStorageAdapter, ObjectHead, ObjectMissing

logger = logging.getLogger(__name__)


class InMemoryStorageAdapter(BaseStorageAdapter):
    """Dict-backed adapter; ``sign_calls`` counts real URL generations."""

    def __init__(
        self,
        provider: "ProviderType | str" = ProviderType.LOCAL,
        url_cache: Optional[SignedUrlCache] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(url_cache=url_cache, timeout_seconds=timeout_seconds)
        self.provider = ProviderType.parse(provider)
        self._objects: dict[str, tuple[bytes, ObjectHead]] = {}
        self._lock = threading.Lock()
        self.sign_calls = 0
        logger.info(
            "Initialized in-memory storage adapter",
            extra={"provider": self.provider.value},
        )

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._objects

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)

    def _put_object(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, str],
    ) -> str:
        file_hash = hashlib.md5(data).hexdigest()
        head = ObjectHead(
            key=key,
            size=len(data),
            content_type=content_type,
            file_hash=file_hash,
            metadata=dict(metadata),
            last_modified=datetime.now(timezone.utc),
        )
        with self._lock:
            self._objects[key] = (bytes(data), head)
        return file_hash

    def _head_object(self, key: str) -> Optional[ObjectHead]:
        with self._lock:
            entry = self._objects.get(key)
        return entry[1] if entry else None

    def _delete_object(self, key: str) -> None:
        with self._lock:
            if self._objects.pop(key, None) is None:
                raise ObjectMissing(key)

    def _iter_objects(self, prefix: Optional[str]) -> Iterable[ObjectHead]:
        with self._lock:
            heads = [head for _, head in self._objects.values()]
        return [h for h in heads if not prefix or h.key.startswith(prefix)]

    def _sign_url(self, key: str, expires_in: int) -> str:
        with self._lock:
            self.sign_calls += 1
        expires = int(time.time()) + expires_in
        return f"mock://{self.provider.value}/{key}?expires={expires}"

    def _open_stream(self, key: str) -> BinaryIO:
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            raise ObjectMissing(key)
        return io.BytesIO(entry[0])
