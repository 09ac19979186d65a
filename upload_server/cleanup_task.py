"""Background task that purges abandoned chunk sets and stale completion markers."""

import asyncio
import time
from pathlib import Path
from typing import Optional

from common.logging_config import get_logger
from upload_server.chunk_store import ChunkStore
from upload_server.marker_store import CompletionMarkerStore

logger = get_logger(__name__)


class StaleChunkSetCleaner:
    """
    Periodically removes chunk sets nobody merged within the TTL, and
    completion markers whose artifact has disappeared.
    """

    def __init__(
        self,
        chunk_store: ChunkStore,
        marker_store: CompletionMarkerStore,
        upload_dir: Path,
        max_age_seconds: int,
        interval_seconds: int,
    ):
        """
        Initialize cleaner task.

        Args:
            chunk_store: Store holding transient chunk sets
            marker_store: Store holding completion markers
            upload_dir: Directory of final artifacts
            max_age_seconds: Chunk sets untouched for longer than this are purged
            interval_seconds: Time between cleanup cycles
        """
        self.chunk_store = chunk_store
        self.marker_store = marker_store
        self.upload_dir = Path(upload_dir)
        self.max_age_seconds = max_age_seconds
        self.interval_seconds = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the background cleanup task."""
        if self._running:
            logger.warning("Cleanup task already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(
            f"Started stale chunk cleanup task (interval: {self.interval_seconds}s, ttl: {self.max_age_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop the background cleanup task."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Stopped stale chunk cleanup task")

    async def _run(self) -> None:
        """Main loop for cleanup task."""
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)

                if not self._running:
                    break

                await self.cleanup_cycle()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in cleanup task: {e}", exc_info=True)

    async def cleanup_cycle(self, now: Optional[float] = None) -> tuple[int, int]:
        """
        Execute one cleanup cycle.

        Args:
            now: Reference timestamp (defaults to time.time())

        Returns:
            Tuple of (chunk sets purged, markers purged)
        """
        return await asyncio.to_thread(self._cleanup, now if now is not None else time.time())

    def _cleanup(self, now: float) -> tuple[int, int]:
        purged_sets = 0
        for transfer_id in self.chunk_store.list_chunk_sets():
            last_modified = self.chunk_store.last_modified(transfer_id)
            if last_modified is None or now - last_modified <= self.max_age_seconds:
                continue
            try:
                if self.chunk_store.remove_chunk_set(transfer_id):
                    purged_sets += 1
                    logger.info(f"Purged stale chunk set {transfer_id}")
            except OSError as e:
                logger.warning(f"Failed to purge chunk set {transfer_id}: {e}")

        purged_markers = 0
        for transfer_id in self.marker_store.list_transfer_ids():
            artifact_name = self.marker_store.read(transfer_id)
            if artifact_name is None:
                purged_markers += 1
                continue
            if not (self.upload_dir / artifact_name).is_file():
                self.marker_store.delete(transfer_id)
                purged_markers += 1
                logger.info(f"Purged marker {transfer_id} for missing artifact {artifact_name}")

        if purged_sets or purged_markers:
            logger.info(f"Cleanup cycle complete: {purged_sets} chunk sets, {purged_markers} markers purged")
        else:
            logger.debug("Cleanup cycle complete: nothing to purge")
        return purged_sets, purged_markers
