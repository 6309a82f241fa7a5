"""
Local filesystem storage adapter.

Objects are files under a root directory; content type, hash and user
metadata sit next to each object in a ``<key>.metadata`` JSON sidecar.
Signed URLs point at the API's local-file route and carry an expiry plus an
HMAC signature that verify_signature checks before the file is served.
"""

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterable, Optional
from urllib.parse import quote

from mediavault.core.storage.errors import ValidationFailed
from mediavault.core.storage.models import ProviderType
from mediavault.core.storage.url_cache import SignedUrlCache

from .base import DEFAULT_TIMEOUT_SECONDS, BaseStorageAdapter, ObjectHead, ObjectMissing

logger = logging.getLogger(__name__)

SIDECAR_SUFFIX = ".metadata"


@dataclass
class LocalStorageConfig:
    root_dir: str
    public_base_url: str = "http://localhost:8000/api/v1/storage/local"
    signing_secret: str = "change-me"


class LocalFileStorageAdapter(BaseStorageAdapter):
    """
    Filesystem adapter rooted at ``root_dir``.

    Content type, MD5 hash and user metadata live in a JSON sidecar next to
    each object. Signed URLs point at ``public_base_url`` and carry an
    expiry plus an HMAC-SHA256 signature checked by verify_signature.
    """

    provider = ProviderType.LOCAL
    requires_existence_for_url = True

    def __init__(
        self,
        config: LocalStorageConfig,
        url_cache: Optional[SignedUrlCache] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(url_cache=url_cache, timeout_seconds=timeout_seconds)

        if not config.root_dir:
            raise ValidationFailed(
                "Local storage requires a root directory",
                details={"provider": self.provider.value},
            )
        self._config = config
        self._root = Path(config.root_dir).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._secret = config.signing_secret.encode("utf-8")

        logger.info("Initialized local storage adapter", extra={"root": str(self._root)})

    # -----------------------------------------------------------------------
    # Signatures
    # -----------------------------------------------------------------------

    def sign(self, key: str, expires: int) -> str:
        message = f"{key}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def verify_signature(
        self,
        key: str,
        expires: int,
        signature: str,
        now: Optional[float] = None,
    ) -> bool:
        """True when the signature matches and the URL has not expired."""
        current = time.time() if now is None else now
        if expires <= current:
            return False
        return hmac.compare_digest(self.sign(key, expires), signature)

    def open_for_serving(self, key: str) -> tuple[BinaryIO, str]:
        """Open a stored file and return it with its content type."""
        head = self._head_object(key)
        if head is None:
            raise ObjectMissing(key)
        return self._open_stream(key), head.content_type

    # -----------------------------------------------------------------------
    # Hooks
    # -----------------------------------------------------------------------

    def _put_object(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, str],
    ) -> str:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_hash = hashlib.md5(data).hexdigest()

        path.write_bytes(data)
        self._sidecar_for(path).write_text(json.dumps({
            "content_type": content_type,
            "file_hash": file_hash,
            "metadata": metadata,
        }))
        return file_hash

    def _head_object(self, key: str) -> Optional[ObjectHead]:
        path = self._path_for(key)
        if not path.is_file():
            return None
        return self._to_head(key, path)

    def _delete_object(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise ObjectMissing(key) from e
        self._sidecar_for(path).unlink(missing_ok=True)

    def _iter_objects(self, prefix: Optional[str]) -> Iterable[ObjectHead]:
        for path in sorted(self._root.rglob("*")):
            if not path.is_file() or path.name.endswith(SIDECAR_SUFFIX):
                continue
            key = path.relative_to(self._root).as_posix()
            if prefix and not key.startswith(prefix):
                continue
            yield self._to_head(key, path)

    def _sign_url(self, key: str, expires_in: int) -> str:
        expires = int(time.time()) + expires_in
        signature = self.sign(key, expires)
        base = self._config.public_base_url.rstrip("/")
        return f"{base}/{quote(key)}?expires={expires}&signature={signature}"

    def _open_stream(self, key: str) -> BinaryIO:
        path = self._path_for(key)
        try:
            return path.open("rb")
        except FileNotFoundError as e:
            raise ObjectMissing(key) from e

    # -----------------------------------------------------------------------
    # Private Methods
    # -----------------------------------------------------------------------

    def _path_for(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if path == self._root or self._root not in path.parents:
            raise ValidationFailed(
                "Storage key escapes the storage root",
                details={"provider": self.provider.value, "storage_file_id": key},
            )
        if path.name.endswith(SIDECAR_SUFFIX):
            raise ValidationFailed(
                "Storage key uses a reserved suffix",
                details={"provider": self.provider.value, "storage_file_id": key},
            )
        return path

    @staticmethod
    def _sidecar_for(path: Path) -> Path:
        return path.with_name(path.name + SIDECAR_SUFFIX)

    def _to_head(self, key: str, path: Path) -> ObjectHead:
        sidecar = self._sidecar_for(path)
        info = json.loads(sidecar.read_text()) if sidecar.is_file() else {}
        stat = path.stat()
        return ObjectHead(
            key=key,
            size=stat.st_size,
            content_type=info.get("content_type", "application/octet-stream"),
            file_hash=info.get("file_hash", ""),
            metadata=info.get("metadata", {}),
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )
