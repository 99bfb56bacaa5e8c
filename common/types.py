"""Shared data type definitions (Credential, FileUpload, UploadSession, etc.)."""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Credential:
    """
    Bearer credential for the remote object store.
    """
    token: str
    expires_at: float


@dataclass(frozen=True)
class TokenResult:
    """Raw result of a client-credential exchange."""
    access_token: str
    expires_at: float


@dataclass(frozen=True)
class DriveLocation:
    """Site and document library that hold uploaded files."""
    site_id: str
    drive_id: str


@dataclass
class FileUpload:
    """
    A file handed over by the request boundary.

    Attributes:
        data: Full payload
        name: Original file name
        mime_type: Declared content type
        size: Payload size in bytes
        path: Temporary buffer on local disk, if the boundary spooled one
    """
    data: bytes
    name: str
    mime_type: str
    size: int
    path: Optional[str] = None

    @property
    def extension(self) -> str:
        if "." not in self.name:
            return ""
        return self.name.rsplit(".", 1)[-1]


@dataclass(frozen=True)
class RemoteObjectDescriptor:
    """Item returned by the remote store once an upload completes."""
    id: str
    name: str
    size: int
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_response(cls, body: Dict[str, Any]) -> "RemoteObjectDescriptor":
        return cls(
            id=body["id"],
            name=body.get("name", ""),
            size=int(body.get("size", 0)),
            raw=body,
        )


class UploadState(str, Enum):
    RECEIVED = "received"
    TOKEN_ACQUIRED = "token_acquired"
    MAIN_FILE_UPLOADING = "main_file_uploading"
    THUMBNAIL_UPLOADING = "thumbnail_uploading"
    METADATA_PERSISTING = "metadata_persisting"
    URLS_RESOLVED = "urls_resolved"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class UploadSession:
    """
    Transient, in-process state of one upload.
    """
    upload_id: str
    total_bytes: int
    chunk_size: int
    bytes_transferred: int = 0
    state: UploadState = UploadState.RECEIVED

    @property
    def percent(self) -> int:
        return percent_of(self.bytes_transferred, self.total_bytes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uploadId": self.upload_id,
            "totalBytes": self.total_bytes,
            "bytesTransferred": self.bytes_transferred,
            "chunkSize": self.chunk_size,
            "state": self.state.value,
            "progress": self.percent,
        }


@dataclass
class SignedUrlEntry:
    """
    Cached signed download URLs for one stored object.
    """
    object_id: str
    file_url: str
    thumbnail_url: Optional[str]
    generated_at: float
    expires_at: float
    is_refreshing: bool = False

    @property
    def lifetime(self) -> float:
        return self.expires_at - self.generated_at

    def is_fresh(self, now: float, threshold: float) -> bool:
        return now - self.generated_at < threshold * self.lifetime

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignedUrlEntry":
        return cls(
            object_id=data["object_id"],
            file_url=data["file_url"],
            thumbnail_url=data.get("thumbnail_url"),
            generated_at=float(data["generated_at"]),
            expires_at=float(data["expires_at"]),
            is_refreshing=bool(data.get("is_refreshing", False)),
        )


@dataclass(frozen=True)
class FileUrls:
    """Signed URLs handed to callers."""
    file_url: str
    thumbnail_url: Optional[str] = None


def percent_of(done: int, total: int) -> int:
    """
    Whole-number percentage, rounding halves up.

    Args:
        done: Bytes transferred so far
        total: Total bytes

    Returns:
        Percentage in the range 0..100
    """
    if total <= 0:
        return 100
    return int(done * 100 / total + 0.5)
