"""Manages per-transfer chunk blobs on disk: write, existence checks, streaming reads and removal."""

import os
import shutil
import time
from pathlib import Path
from typing import Iterator, Optional

from common.constants import CHUNK_FILE_PREFIX
from common.logging_config import get_logger
from common.types import is_valid_transfer_id
from upload_server.exceptions import ChunkStorageError, InvalidTransferIdError

logger = get_logger(__name__)


class ChunkStore:
    """
    Ephemeral keyed blob store: (transfer_id, index) -> bytes.

    Each transfer owns one directory under the root, created lazily on the
    first chunk. Written only by the chunk receiver; read and removed only by
    the merge coordinator and the stale chunk-set cleaner.
    """

    def __init__(self, root: Path):
        """
        Initialize the store.

        Args:
            root: Directory holding one sub-directory per transfer
        """
        self.root = Path(root)

    def get_chunk_set_path(self, transfer_id: str) -> Path:
        """
        Get the directory for a transfer.

        Args:
            transfer_id: TransferId of the upload

        Returns:
            Path of the transfer's chunk directory

        Raises:
            InvalidTransferIdError: If the id is not a single safe path component
        """
        if not is_valid_transfer_id(transfer_id):
            raise InvalidTransferIdError(f"Invalid fileId: {transfer_id!r}")
        return self.root / transfer_id

    def get_chunk_path(self, transfer_id: str, index: int) -> Path:
        """Get the blob path for chunk `index` of a transfer."""
        return self.get_chunk_set_path(transfer_id) / f"{CHUNK_FILE_PREFIX}{index}"

    def write_chunk(self, transfer_id: str, index: int, data: bytes) -> Path:
        """
        Persist one chunk, replacing any blob already stored under the same key.

        The blob is written under a temporary name and renamed into place, so
        a concurrent reader sees either the old or the new bytes.

        Args:
            transfer_id: TransferId of the upload
            index: Chunk index
            data: Raw chunk bytes

        Returns:
            Path to the written blob

        Raises:
            ChunkStorageError: If the write fails
        """
        chunk_path = self.get_chunk_path(transfer_id, index)
        tmp_path = chunk_path.with_name(f"{chunk_path.name}.{os.getpid()}.{time.monotonic_ns()}.tmp")
        try:
            chunk_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(data)
            os.replace(tmp_path, chunk_path)
        except OSError as e:
            logger.error(f"Failed to store chunk {index} of {transfer_id}: {e}")
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                logger.warning(f"Could not remove temporary chunk file {tmp_path}")
            raise ChunkStorageError(f"Failed to store chunk {index}: {e}") from e
        return chunk_path

    def chunk_set_exists(self, transfer_id: str) -> bool:
        """True if any chunk of this transfer has been received."""
        return self.get_chunk_set_path(transfer_id).is_dir()

    def chunk_exists(self, transfer_id: str, index: int) -> bool:
        """True if the blob for `index` is present."""
        return self.get_chunk_path(transfer_id, index).is_file()

    def first_missing(self, transfer_id: str, total_chunks: int) -> Optional[int]:
        """
        Scan indices 0..total_chunks-1 in increasing order.

        Returns:
            The lowest missing index, or None when all are present
        """
        for index in range(total_chunks):
            if not self.chunk_exists(transfer_id, index):
                return index
        return None

    def read_chunk_streaming(
        self, transfer_id: str, index: int, piece_size: int = 64 * 1024
    ) -> Iterator[bytes]:
        """
        Stream a chunk blob in pieces.

        Raises:
            FileNotFoundError: If the chunk does not exist
            OSError: If the read fails
        """
        with open(self.get_chunk_path(transfer_id, index), 'rb') as f:
            while True:
                piece = f.read(piece_size)
                if not piece:
                    break
                yield piece

    def remove_chunk_set(self, transfer_id: str) -> bool:
        """
        Delete every chunk of a transfer.

        Returns:
            True if a directory was removed, False if none existed
        """
        path = self.get_chunk_set_path(transfer_id)
        if not path.exists():
            return False
        shutil.rmtree(path)
        return True

    def list_chunk_sets(self) -> list[str]:
        """
        List transfer ids that currently have chunk data.
        """
        if not self.root.exists():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_dir())

    def last_modified(self, transfer_id: str) -> Optional[float]:
        """
        Newest modification time among a transfer's blobs (or the directory itself).

        Returns:
            POSIX timestamp, or None if the transfer has no chunk directory
        """
        path = self.get_chunk_set_path(transfer_id)
        try:
            newest = path.stat().st_mtime
            for blob in path.iterdir():
                newest = max(newest, blob.stat().st_mtime)
        except FileNotFoundError:
            return None
        return newest
