"""Data types shared by the uploader's transfer components."""

import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from common.types import derive_transfer_id

ProgressCallback = Callable[[float], None]


@dataclass(frozen=True)
class UploadSource:
    """
    Bytes to upload plus the identity of the original file.

    transfer_id is fixed when the source is created from the original file;
    replacing the content (e.g. after compression) keeps it.
    """
    transfer_id: str
    filename: str
    size: int
    path: Optional[Path] = None
    content: Optional[bytes] = None

    @classmethod
    def from_path(cls, path: Path) -> 'UploadSource':
        """Build a source for a file on disk, read lazily chunk by chunk."""
        path = Path(path)
        stat = path.stat()
        mtime_ms = int(stat.st_mtime * 1000)
        return cls(
            transfer_id=derive_transfer_id(path.name, stat.st_size, mtime_ms),
            filename=path.name,
            size=stat.st_size,
            path=path,
        )

    @classmethod
    def from_bytes(cls, filename: str, content: bytes, mtime_ms: int) -> 'UploadSource':
        """Build an in-memory source."""
        return cls(
            transfer_id=derive_transfer_id(filename, len(content), mtime_ms),
            filename=filename,
            size=len(content),
            content=content,
        )

    def with_content(self, filename: str, content: bytes) -> 'UploadSource':
        """Same transfer identity, new bytes to send."""
        return dataclasses.replace(self, filename=filename, size=len(content), content=content, path=None)

    def read_range(self, offset: int, length: int) -> bytes:
        """Read `length` bytes starting at `offset`."""
        if self.content is not None:
            return self.content[offset:offset + length]
        if self.path is None:
            raise ValueError("UploadSource has neither content nor path")
        with open(self.path, 'rb') as f:
            f.seek(offset)
            return f.read(length)

    def read_all(self) -> bytes:
        """Read the entire payload."""
        if self.content is not None:
            return self.content
        return self.read_range(0, self.size)


@dataclass(frozen=True)
class UploadResult:
    """
    Result of one completed file transfer.

    Attributes:
        artifact_name: Final artifact name on the server; None when the merge
            outcome was tolerated without the server confirming an artifact
        reused: Server reported the transfer was already merged
        tolerated: Server could not find chunk data after a full fresh send
    """
    transfer_id: str
    filename: str
    artifact_name: Optional[str]
    reused: bool = False
    tolerated: bool = False
    chunks_sent: int = 0
    chunks_skipped: int = 0
    restarted: bool = False


@dataclass(eq=False)
class TransferQueueEntry:
    """
    One file waiting in, or running under, the transfer scheduler.

    Compared by identity so the same source can be queued twice.
    """
    source: UploadSource
    on_progress: Optional[ProgressCallback] = None
    on_success: Optional[Callable[[Any], None]] = None
    on_error: Optional[Callable[[BaseException], None]] = None


@dataclass(frozen=True)
class TransferOutcome:
    """
    Terminal state of one file requested through the transfer manager.
    """
    path: str
    success: bool
    result: Optional[UploadResult] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class TransformPayload:
    """
    Input for the shared transform worker.
    """
    filename: str
    content: bytes
    quality: float = 0.8
    target_format: str = "webp"


@dataclass(frozen=True)
class TransformResult:
    """
    Output of the shared transform worker.
    """
    filename: str
    content: bytes
    content_type: str
