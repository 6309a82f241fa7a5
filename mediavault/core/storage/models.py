"""
Domain models for media storage.

These models describe stored objects and their metadata records without
reference to any provider SDK or database driver. Adapters translate
provider responses into these types; repositories translate them into rows.
"""

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, BinaryIO, Optional


class ProviderType(Enum):
    """The closed set of storage providers an adapter can represent."""
    AWS = "aws"
    GOOGLE = "google"
    AZURE = "azure"
    LOCAL = "local"

    @classmethod
    def parse(cls, value: "str | ProviderType") -> "ProviderType":
        """
        Parse a provider tag case-insensitively.

        Accepts both the value ("aws") and the member name ("AWS"), since
        tags come from environment variables and from stored rows.
        Raises ValueError for anything else.
        """
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f"Unknown storage provider: {value!r}")


class FileType(Enum):
    """Media kind of a stored file."""
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"

    @classmethod
    def from_mime_type(cls, mime_type: str) -> "FileType":
        """image/* is an image; everything else is treated as video."""
        if (mime_type or "").lower().startswith("image/"):
            return cls.IMAGE
        return cls.VIDEO


class FileStatus(Enum):
    """Lifecycle status of a File record."""
    PENDING = "PENDING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


# Fields a caller may request from StorageAdapter.list_files
LIST_FIELDS = frozenset({
    "file_name",
    "file_url",
    "file_size",
    "created_at",
    "last_checked_at",
    "is_active",
})


@dataclass(frozen=True)
class StorageMetadata:
    """
    Provider-side facts about an uploaded object.

    width/height/duration/encoding are only known when they were attached
    as object metadata at upload time (see MediaProbe).
    """
    file_size: int
    mime_type: str
    file_hash: str
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None
    encoding: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Optional["StorageMetadata"]:
        if not data:
            return None
        return cls(
            file_size=int(data.get("file_size") or 0),
            mime_type=data.get("mime_type") or "",
            file_hash=data.get("file_hash") or "",
            width=data.get("width"),
            height=data.get("height"),
            duration=data.get("duration"),
            encoding=data.get("encoding"),
        )


@dataclass(frozen=True)
class UploadResult:
    """What an adapter returns after storing an object."""
    storage_file_id: str
    storage_metadata: StorageMetadata
    provider: ProviderType
    storage_url: Optional[str] = None


@dataclass
class StorageFileInfo:
    """
    One entry of a provider listing.

    Only storage_file_id is guaranteed; the other attributes are filled in
    when requested through the ``fields`` argument of list_files.
    """
    storage_file_id: str
    file_name: Optional[str] = None
    file_url: Optional[str] = None
    file_size: Optional[int] = None
    created_at: Optional[datetime] = None
    last_checked_at: Optional[datetime] = None
    is_active: Optional[bool] = None


@dataclass
class StorageInfoRecord:
    """The binding between a File and exactly one stored object."""
    file_id: str
    provider: ProviderType
    storage_file_id: str
    id: Optional[str] = None
    storage_url: Optional[str] = None
    url_issued_at: Optional[datetime] = None
    storage_metadata: Optional[StorageMetadata] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class FileRecord:
    """
    Metadata-store record for an uploaded media file.

    ``deleted_at`` is the soft-delete marker: a record is visible to
    listings and lookups only while it is None.
    """
    id: str
    name: str
    type: FileType
    mime_type: str
    file_size: int
    year: int
    month: int
    status: FileStatus = FileStatus.COMPLETE
    file_hash: str = ""
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None
    encoding: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    branch_id: Optional[str] = None
    access_count: int = 0
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    storage: Optional[StorageInfoRecord] = None

    @property
    def path(self) -> str:
        """Logical location: year/month/branch."""
        return f"{self.year}/{self.month}/{self.branch_id}"

    @property
    def is_active(self) -> bool:
        """Visible and bound to an active stored object."""
        return self.deleted_at is None and bool(self.storage and self.storage.is_active)


@dataclass(frozen=True)
class UploadRequest:
    """
    Caller-supplied attributes for a new upload.

    year/month are optional: when missing they are parsed from a
    ``{year}_{month}_{branch}_{name}`` filename, then default to now.
    """
    filename: str
    content_type: str
    branch_id: Optional[str] = None
    year: Optional[int] = None
    month: Optional[int] = None
    destination: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StoredUpload:
    """Result of a completed upload transaction."""
    file_id: str
    storage_file_id: str
    provider: ProviderType
    storage_metadata: StorageMetadata
    storage_url: Optional[str] = None


@dataclass(frozen=True)
class FileFilter:
    """Listing filter over visible files."""
    branch_id: Optional[str] = None
    prefix: Optional[str] = None
    file_type: Optional[FileType] = None


@dataclass
class FileListPage:
    """One page of visible files."""
    files: list[FileRecord]
    total_count: int
    current_page: int
    limit: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return math.ceil(self.total_count / self.limit)


@dataclass(frozen=True)
class DeleteResult:
    """Outcome of delete_file. deleted_at is only set for soft deletes."""
    file_id: str
    success: bool
    deleted_at: Optional[datetime] = None


@dataclass
class DownloadResult:
    """
    An open object stream plus naming taken from the metadata record.

    The stream is read once; the caller owns closing it.
    """
    stream: BinaryIO
    filename: str
    mimetype: str
