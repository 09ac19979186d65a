"""Per-file chunked upload: resume, bounded retry, progress and merge."""

import asyncio
from typing import Awaitable, Callable, Optional

import httpx

from common.logging_config import get_logger
from common.types import chunk_span, total_chunks
from uploader.exceptions import (
    ChunkUploadFailedError,
    MalformedResponseError,
    MissingChunkDataError,
    ServerResponseError,
    ServerUnavailableError,
)
from uploader.resume_tracker import ResumeTracker
from uploader.server_client import MergeReply, UploadServerClient
from uploader.transform import TransformTaskCorrelator, is_image_file
from uploader.types import ProgressCallback, TransformPayload, UploadResult, UploadSource

logger = get_logger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class ChunkUploader:
    """
    Uploads one file as a sequence of chunks and asks the server to merge them.

    Chunks already recorded by the resume tracker are skipped but still count
    toward progress. Each chunk gets a fixed number of attempts with a fixed
    delay between them. After the merge outcome is known the resume record is
    cleared.
    """

    def __init__(
        self,
        client: UploadServerClient,
        tracker: ResumeTracker,
        chunk_size: int,
        max_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        correlator: Optional[TransformTaskCorrelator] = None,
        compression_quality: float = 0.8,
        compression_format: str = "webp",
        sleep: Sleeper = asyncio.sleep,
    ):
        """
        Initialize uploader.

        Args:
            client: Upload server client
            tracker: Resume tracker holding acknowledged chunks
            chunk_size: Chunk size in bytes
            max_attempts: Attempts per chunk (and per merge request) before giving up
            retry_delay_seconds: Fixed delay between attempts
            correlator: When set, image files are compressed through it before upload
            compression_quality: Quality in (0, 1] passed to the compressor
            compression_format: Target image format passed to the compressor
            sleep: Awaitable sleep, replaceable in tests
        """
        self.client = client
        self.tracker = tracker
        self.chunk_size = chunk_size
        self.max_attempts = max(1, max_attempts)
        self.retry_delay_seconds = retry_delay_seconds
        self.correlator = correlator
        self.compression_quality = compression_quality
        self.compression_format = compression_format
        self._sleep = sleep

    async def upload_file(
        self, source: UploadSource, on_progress: Optional[ProgressCallback] = None
    ) -> UploadResult:
        """
        Upload one file and merge it on the server.

        Args:
            source: File to upload (its transfer_id comes from the original file)
            on_progress: Called with the completed fraction after every chunk

        Returns:
            UploadResult describing the merge outcome

        Raises:
            TransformError: Compression failed
            ChunkUploadFailedError: A chunk exhausted its attempts or was rejected
            MergeRequestError: Server refused the merge for a non-data reason
            ServerUnavailableError: Merge request could not reach the server
        """
        source = await self._prepare(source)
        return await self._transfer(source, on_progress, restarted=False)

    async def _prepare(self, source: UploadSource) -> UploadSource:
        if self.correlator is None or not is_image_file(source.filename):
            return source
        original = await asyncio.to_thread(source.read_all)
        result = await self.correlator.submit(
            TransformPayload(
                filename=source.filename,
                content=original,
                quality=self.compression_quality,
                target_format=self.compression_format,
            )
        )
        logger.info(
            f"Compressed {source.filename}: {len(original)} -> {len(result.content)} bytes as {result.filename}"
        )
        return source.with_content(result.filename, result.content)

    async def _transfer(
        self, source: UploadSource, on_progress: Optional[ProgressCallback], restarted: bool
    ) -> UploadResult:
        transfer_id = source.transfer_id
        total = total_chunks(source.size, self.chunk_size)
        remaining = self.tracker.chunks_remaining(transfer_id, total)
        skipped = total - len(remaining)
        if skipped:
            logger.info(f"Resuming {source.filename}: {skipped}/{total} chunks already acknowledged")

        sent = 0
        for index in range(total):
            if index in remaining:
                span = chunk_span(index, source.size, self.chunk_size)
                data = await asyncio.to_thread(source.read_range, span.offset, span.length)
                await self._send_chunk(source, index, total, data)
                self.tracker.mark_acknowledged(transfer_id, index)
                sent += 1
            self._report(on_progress, (index + 1) / total)

        try:
            reply = await self._merge(source, total)
        except MissingChunkDataError as e:
            self.tracker.clear(transfer_id)
            if skipped and not restarted:
                logger.warning(
                    f"Server lost chunk data for {source.filename} ({e.code}); "
                    f"discarding resume record and re-uploading all {total} chunks"
                )
                return await self._transfer(source, on_progress, restarted=True)
            logger.warning(
                f"MONITOR: merge of {source.filename} [transfer_id={transfer_id}] reported {e.code} "
                f"after all {total} chunks were sent; treating as delivered without a confirmed artifact"
            )
            return UploadResult(
                transfer_id=transfer_id,
                filename=source.filename,
                artifact_name=None,
                tolerated=True,
                chunks_sent=sent,
                chunks_skipped=skipped,
                restarted=restarted,
            )

        self.tracker.clear(transfer_id)
        logger.info(f"Upload complete: {source.filename} -> {reply.filename}")
        return UploadResult(
            transfer_id=transfer_id,
            filename=source.filename,
            artifact_name=reply.filename,
            reused=reply.reused,
            chunks_sent=sent,
            chunks_skipped=skipped,
            restarted=restarted,
        )

    async def _send_chunk(self, source: UploadSource, index: int, total: int, data: bytes) -> None:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.client.upload_chunk(source.filename, source.transfer_id, index, total, data)
                return
            except ServerResponseError as e:
                if not e.retriable:
                    raise ChunkUploadFailedError(source.transfer_id, index, attempt, str(e)) from e
                last_error = e
            except httpx.TransportError as e:
                last_error = e

            if attempt < self.max_attempts:
                logger.warning(
                    f"Chunk {index}/{total} of {source.filename} failed "
                    f"(attempt {attempt}/{self.max_attempts}): {last_error!r}, retrying in {self.retry_delay_seconds}s"
                )
                await self._sleep(self.retry_delay_seconds)

        logger.error(f"Chunk {index}/{total} of {source.filename} failed after {self.max_attempts} attempts")
        raise ChunkUploadFailedError(
            source.transfer_id, index, self.max_attempts, str(last_error)
        ) from last_error

    async def _merge(self, source: UploadSource, total: int) -> MergeReply:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self.client.merge_chunks(source.filename, source.transfer_id, total)
            except (httpx.TransportError, MalformedResponseError) as e:
                last_error = e
            if attempt < self.max_attempts:
                logger.warning(
                    f"Merge request for {source.filename} failed (attempt {attempt}/{self.max_attempts}): "
                    f"{last_error!r}, retrying in {self.retry_delay_seconds}s"
                )
                await self._sleep(self.retry_delay_seconds)
        raise ServerUnavailableError(
            f"Merge request for {source.filename} failed after {self.max_attempts} attempts: {last_error}"
        ) from last_error

    @staticmethod
    def _report(on_progress: Optional[ProgressCallback], fraction: float) -> None:
        if on_progress is None:
            return
        try:
            on_progress(fraction)
        except Exception as e:
            logger.warning(f"Progress callback raised: {e}", exc_info=True)
