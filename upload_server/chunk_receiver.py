"""Accepts single chunks and persists them under (transfer_id, index)."""

import asyncio
from dataclasses import dataclass
from typing import Optional

from common.logging_config import get_logger
from upload_server.chunk_store import ChunkStore
from upload_server.exceptions import BadRequestError, MissingChunkPayloadError

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChunkAck:
    """
    Positive acknowledgement for one stored chunk.
    """
    transfer_id: str
    index: int
    size: int


class ChunkReceiver:
    """
    Stores incoming chunks. Arrival order is irrelevant and re-sending a
    chunk simply replaces the stored blob.
    """

    def __init__(self, chunk_store: ChunkStore):
        self.chunk_store = chunk_store

    async def receive_chunk(
        self,
        transfer_id: str,
        index: int,
        total_chunks: int,
        data: Optional[bytes],
        filename: str = "",
    ) -> ChunkAck:
        """
        Persist one chunk.

        Args:
            transfer_id: TransferId the chunk belongs to
            index: Chunk index in [0, total_chunks)
            total_chunks: Total number of chunks announced by the client
            data: Chunk bytes; None when the request carried no payload
            filename: Original filename, used for logging only

        Returns:
            ChunkAck for the stored chunk

        Raises:
            MissingChunkPayloadError: No payload was sent
            BadRequestError: Index or total out of range
            InvalidTransferIdError: fileId unusable as a storage key
            ChunkStorageError: Write failed
        """
        if data is None:
            raise MissingChunkPayloadError("No chunk payload received")
        if total_chunks < 1:
            raise BadRequestError(f"totalChunks must be at least 1, got {total_chunks}")
        if not 0 <= index < total_chunks:
            raise BadRequestError(f"chunkNumber {index} outside [0, {total_chunks})")

        await asyncio.to_thread(self.chunk_store.write_chunk, transfer_id, index, data)
        logger.info(f"Received {filename or transfer_id} chunk {index}/{total_chunks} ({len(data)} bytes)")
        return ChunkAck(transfer_id=transfer_id, index=index, size=len(data))
