"""Idempotent reassembly of chunk sets into final artifacts."""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Dict, Optional

from common.logging_config import get_logger
from upload_server.chunk_store import ChunkStore
from upload_server.exceptions import (
    BadRequestError,
    ChunkMissingError,
    ChunkSetMissingError,
    MergeFailedError,
)
from upload_server.marker_store import CompletionMarkerStore
from upload_server.utils import publish_artifact

logger = get_logger(__name__)


@dataclass(frozen=True)
class MergeResult:
    """
    Outcome of a merge request.

    Attributes:
        filename: Final artifact name inside the upload directory
        reused: True when an earlier merge already produced the artifact
    """
    filename: str
    reused: bool = False


class KeyedLock:
    """
    One asyncio.Lock per key, dropped once nobody holds or waits on it.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
            self._users[key] = 0
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __contains__(self, key: str) -> bool:
        return key in self._locks


class MergeCoordinator:
    """
    Reassembles a transfer's chunks in index order, exactly once.

    Per transfer the flow is: check the completion marker (fast path when its
    artifact still exists, self-heal when it does not), otherwise verify every
    chunk is present, write the artifact, record the marker, then drop the
    chunk set. Merges of the same transfer are serialized.
    """

    def __init__(
        self,
        chunk_store: ChunkStore,
        marker_store: CompletionMarkerStore,
        upload_dir: Path,
    ):
        self.chunk_store = chunk_store
        self.marker_store = marker_store
        self.upload_dir = Path(upload_dir)
        self._locks = KeyedLock()

    async def merge(self, transfer_id: str, filename: str, total_chunks: int) -> MergeResult:
        """
        Merge all chunks of a transfer into the final artifact.

        Args:
            transfer_id: TransferId whose chunks to merge
            filename: Original client filename, used to name the artifact
            total_chunks: Number of chunks the client sent

        Returns:
            MergeResult with the artifact name

        Raises:
            BadRequestError: total_chunks < 1
            InvalidTransferIdError: transfer_id unusable as a storage key
            ChunkSetMissingError: No chunk data exists for the transfer
            ChunkMissingError: A chunk index is absent (names the lowest one)
            MergeFailedError: I/O failure while writing the artifact
        """
        if total_chunks < 1:
            raise BadRequestError(f"totalChunks must be at least 1, got {total_chunks}")
        self.chunk_store.get_chunk_set_path(transfer_id)

        async with self._locks.hold(transfer_id):
            existing = await asyncio.to_thread(self._check_marker, transfer_id)
            if existing is not None:
                logger.info(f"Transfer {transfer_id} already merged into {existing}, skipping reassembly")
                return MergeResult(filename=existing, reused=True)

            logger.info(f"Merging {filename} ({total_chunks} chunks) for transfer {transfer_id}")
            artifact_name = await asyncio.to_thread(
                self._reassemble, transfer_id, filename, total_chunks
            )
            await asyncio.to_thread(self._finish, transfer_id, artifact_name)

            logger.info(f"Merge complete: {artifact_name}")
            return MergeResult(filename=artifact_name, reused=False)

    def _check_marker(self, transfer_id: str) -> Optional[str]:
        artifact_name = self.marker_store.read(transfer_id)
        if artifact_name is None:
            return None
        if (self.upload_dir / artifact_name).is_file():
            return artifact_name
        logger.warning(
            f"Completion marker for {transfer_id} points to missing artifact {artifact_name}, discarding"
        )
        self.marker_store.delete(transfer_id)
        return None

    def _reassemble(self, transfer_id: str, filename: str, total_chunks: int) -> str:
        if not self.chunk_store.chunk_set_exists(transfer_id):
            logger.warning(f"No chunk data for transfer {transfer_id}")
            raise ChunkSetMissingError("Chunk data not found, please re-upload")

        missing = self.chunk_store.first_missing(transfer_id, total_chunks)
        if missing is not None:
            logger.warning(f"Transfer {transfer_id} is missing chunk {missing}")
            raise ChunkMissingError(transfer_id, missing)

        index = 0

        def write_chunks(out: BinaryIO) -> None:
            nonlocal index
            for index in range(total_chunks):
                for piece in self.chunk_store.read_chunk_streaming(transfer_id, index):
                    out.write(piece)

        try:
            return publish_artifact(filename, self.upload_dir, write_chunks)
        except FileNotFoundError as e:
            if not self.chunk_store.chunk_exists(transfer_id, index):
                raise ChunkMissingError(transfer_id, index) from e
            raise MergeFailedError(f"Failed to merge {filename}: {e}") from e
        except OSError as e:
            logger.error(f"I/O error merging transfer {transfer_id}: {e}")
            raise MergeFailedError(f"Failed to merge {filename}: {e}") from e

    def _finish(self, transfer_id: str, artifact_name: str) -> None:
        try:
            self.marker_store.write(transfer_id, artifact_name)
        except OSError as e:
            logger.error(f"Failed to write completion marker for {transfer_id}: {e}")

        try:
            self.chunk_store.remove_chunk_set(transfer_id)
        except OSError as e:
            logger.warning(f"Failed to remove chunk set for {transfer_id}: {e}")
