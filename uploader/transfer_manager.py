"""Wires the uploader components together for a batch of files."""

import asyncio
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import httpx

from common.logging_config import get_logger
from uploader.chunk_uploader import ChunkUploader
from uploader.config import Config
from uploader.resume_tracker import ResumeTracker
from uploader.scheduler import TransferScheduler
from uploader.server_client import SingleUploadReply, UploadServerClient
from uploader.transform import TransformTaskCorrelator, TransformWorker, compress_image
from uploader.types import (
    TransferOutcome,
    TransferQueueEntry,
    TransformPayload,
    TransformResult,
    UploadResult,
    UploadSource,
)

logger = get_logger(__name__)

PathProgressCallback = Callable[[str, float], None]


class TransferManager:
    """
    Async context manager owning one HTTP session, one resume tracker, one
    shared transform worker and one scheduler.

    Usage:
        async with TransferManager(config) as manager:
            outcomes = await manager.upload_paths(["a.png", "b.bin"])
    """

    def __init__(
        self,
        config: Config,
        session: Optional[httpx.AsyncClient] = None,
        transform_fn: Optional[Callable[[TransformPayload], TransformResult]] = None,
        sleep=asyncio.sleep,
    ):
        self.config = config
        self._session = session
        self._transform_fn = transform_fn or compress_image
        self._sleep = sleep
        self.tracker = ResumeTracker(config.get_resume_state_path())
        self.client: Optional[UploadServerClient] = None
        self.worker: Optional[TransformWorker] = None
        self.correlator: Optional[TransformTaskCorrelator] = None
        self.uploader: Optional[ChunkUploader] = None
        self.scheduler: Optional[TransferScheduler] = None

    async def __aenter__(self) -> 'TransferManager':
        self.client = UploadServerClient(self.config, session=self._session)

        compression = self.config.get_compression_config()
        if compression['enabled']:
            self.worker = TransformWorker(self._transform_fn, max_workers=compression['workers'])
            self.worker.start()
            self.correlator = TransformTaskCorrelator(self.worker)

        retry = self.config.get_retry_config()
        self.uploader = ChunkUploader(
            client=self.client,
            tracker=self.tracker,
            chunk_size=self.config.get_chunk_size(),
            max_attempts=retry['max_attempts'],
            retry_delay_seconds=retry['retry_delay_seconds'],
            correlator=self.correlator,
            compression_quality=compression['quality'],
            compression_format=compression['format'],
            sleep=self._sleep,
        )
        self.scheduler = TransferScheduler(
            self._run_entry, max_concurrent=self.config.get_max_concurrent_transfers()
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self.correlator is not None:
            self.correlator.close()
        if self.worker is not None:
            self.worker.terminate()
        if self.client is not None:
            await self.client.close()

    async def _run_entry(self, entry: TransferQueueEntry) -> UploadResult:
        return await self.uploader.upload_file(entry.source, entry.on_progress)

    async def upload_paths(
        self, paths: Sequence[str], on_progress: Optional[PathProgressCallback] = None
    ) -> List[TransferOutcome]:
        """
        Upload files through the scheduler.

        Args:
            paths: Files to upload
            on_progress: Called with (path, fraction) as chunks complete

        Returns:
            One TransferOutcome per path, in input order
        """
        outcomes: List[Optional[TransferOutcome]] = [None] * len(paths)

        for position, raw_path in enumerate(paths):
            path = str(raw_path)
            try:
                source = UploadSource.from_path(Path(path).expanduser())
            except OSError as e:
                logger.error(f"Cannot read {path}: {e}")
                outcomes[position] = TransferOutcome(path=path, success=False, error=str(e))
                continue

            def record_success(result, position=position, path=path):
                outcomes[position] = TransferOutcome(path=path, success=True, result=result)

            def record_error(error, position=position, path=path):
                outcomes[position] = TransferOutcome(path=path, success=False, error=str(error))

            progress = None
            if on_progress is not None:
                def progress(fraction, path=path):
                    on_progress(path, fraction)

            self.scheduler.enqueue(TransferQueueEntry(
                source=source,
                on_progress=progress,
                on_success=record_success,
                on_error=record_error,
            ))

        await self.scheduler.wait_idle()
        return [
            outcome or TransferOutcome(path=str(paths[i]), success=False, error="transfer did not complete")
            for i, outcome in enumerate(outcomes)
        ]

    async def upload_single(self, path: str) -> SingleUploadReply:
        """Upload a whole file in one request (no resume, no chunking)."""
        return await self.client.upload_single(Path(path).expanduser())

    def forget(self, path: str) -> bool:
        """
        Drop the resume record of a local file.

        Returns:
            True if a record existed
        """
        source = UploadSource.from_path(Path(path).expanduser())
        return self.tracker.clear(source.transfer_id)

    def resume_records(self) -> dict:
        """Map of transfer id to acknowledged chunk indices."""
        return self.tracker.records()
