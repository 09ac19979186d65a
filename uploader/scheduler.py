"""Bounded-concurrency FIFO scheduler for file transfers."""

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Set

from common.logging_config import get_logger
from uploader.types import TransferQueueEntry

logger = get_logger(__name__)

TransferRunner = Callable[[TransferQueueEntry], Awaitable[Any]]


class TransferScheduler:
    """
    Runs at most `max_concurrent` transfers at a time, in enqueue order.

    The queue is pumped on enqueue and once after each transfer finishes.
    Every entry gets exactly one terminal callback (on_success or on_error),
    after which its slot is released.
    """

    def __init__(self, runner: TransferRunner, max_concurrent: int = 3):
        """
        Initialize scheduler.

        Args:
            runner: Coroutine function performing one transfer
            max_concurrent: Maximum number of transfers active at once
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._runner = runner
        self.max_concurrent = max_concurrent
        self._pending: Deque[TransferQueueEntry] = deque()
        self._active = 0
        self._tasks: Set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def enqueue(self, entry: TransferQueueEntry) -> None:
        """Add an entry to the tail of the queue and start it if a slot is free."""
        self._pending.append(entry)
        self._idle.clear()
        logger.debug(f"Queued {entry.source.filename} (pending={len(self._pending)}, active={self._active})")
        self._pump()

    def remove(self, entry: TransferQueueEntry) -> bool:
        """
        Drop an entry that has not started yet.

        Returns:
            True if the entry was pending and will never run
        """
        try:
            self._pending.remove(entry)
        except ValueError:
            return False
        self._update_idle()
        return True

    async def wait_idle(self) -> None:
        """Wait until nothing is pending or active."""
        await self._idle.wait()

    def _pump(self) -> None:
        while self._active < self.max_concurrent and self._pending:
            entry = self._pending.popleft()
            self._active += 1
            task = asyncio.create_task(self._run(entry))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, entry: TransferQueueEntry) -> None:
        try:
            try:
                result = await self._runner(entry)
            except Exception as e:
                logger.error(f"Transfer of {entry.source.filename} failed: {e}")
                self._notify(entry.on_error, e, entry)
            else:
                self._notify(entry.on_success, result, entry)
        finally:
            self._active -= 1
            self._pump()
            self._update_idle()

    def _update_idle(self) -> None:
        if self._active == 0 and not self._pending:
            self._idle.set()

    @staticmethod
    def _notify(callback: Optional[Callable[[Any], None]], value: Any, entry: TransferQueueEntry) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception as e:
            logger.error(f"Callback for {entry.source.filename} raised: {e}", exc_info=True)
