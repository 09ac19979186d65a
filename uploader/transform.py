"""
Shared transform (image compression) worker and the task correlator in front of it.

The worker is one logical actor: requests go in through post(), results come
back on a single broadcast channel in whatever order they finish. The
correlator tags every request with a unique task id and routes each reply to
the caller that issued it.
"""

import asyncio
import io
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, List, Optional

from PIL import Image

from common.logging_config import get_logger
from uploader.exceptions import TransformError, WorkerCrashedError
from uploader.types import TransformPayload, TransformResult

logger = get_logger(__name__)

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp", ".bmp", ".gif", ".tif", ".tiff")

# target format -> (Pillow format, content type, file extension)
TARGET_FORMATS = {
    "webp": ("WEBP", "image/webp", ".webp"),
    "jpeg": ("JPEG", "image/jpeg", ".jpg"),
    "jpg": ("JPEG", "image/jpeg", ".jpg"),
    "png": ("PNG", "image/png", ".png"),
}

MessageListener = Callable[[dict], None]
ErrorListener = Callable[[BaseException], None]


def is_image_file(filename: str) -> bool:
    """True if the name has an image extension the compressor accepts."""
    return filename.lower().endswith(IMAGE_EXTENSIONS)


def compress_image(payload: TransformPayload) -> TransformResult:
    """
    Re-encode an image at the requested quality and format.

    Args:
        payload: Image bytes, original filename, quality in (0, 1] and target format

    Returns:
        TransformResult named after the original file with the new extension

    Raises:
        ValueError: Unsupported target format
        PIL.UnidentifiedImageError: Content is not a readable image
    """
    fmt = payload.target_format.lower()
    if fmt not in TARGET_FORMATS:
        raise ValueError(f"Unsupported target format: {payload.target_format}")
    pil_format, content_type, ext = TARGET_FORMATS[fmt]

    buffer = io.BytesIO()
    with Image.open(io.BytesIO(payload.content)) as img:
        img.load()
        if pil_format == "JPEG" and img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        elif pil_format == "WEBP" and img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA")

        save_kwargs = {}
        if pil_format in ("JPEG", "WEBP"):
            save_kwargs["quality"] = max(1, min(95, int(round(payload.quality * 100))))
        if pil_format in ("JPEG", "PNG"):
            save_kwargs["optimize"] = True
        img.save(buffer, format=pil_format, **save_kwargs)

    stem = Path(payload.filename).stem or payload.filename
    return TransformResult(filename=f"{stem}{ext}", content=buffer.getvalue(), content_type=content_type)


class TransformWorker:
    """
    Single shared transform actor backed by a small thread pool.

    Replies are delivered on the event loop to every message listener; they
    carry the task id of the request they answer. Worker-level failures go to
    the error listeners.
    """

    def __init__(
        self,
        transform_fn: Callable[[TransformPayload], TransformResult] = compress_image,
        max_workers: int = 2,
    ):
        self._transform_fn = transform_fn
        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._message_listeners: List[MessageListener] = []
        self._error_listeners: List[ErrorListener] = []
        self._terminated = False

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Bind the worker to an event loop and start its pool."""
        self._loop = loop or asyncio.get_running_loop()
        self._executor = ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="transform-worker"
        )
        self._terminated = False
        logger.debug(f"Transform worker started with {self._max_workers} threads")

    @property
    def running(self) -> bool:
        return self._executor is not None and not self._terminated

    def add_message_listener(self, listener: MessageListener) -> None:
        self._message_listeners.append(listener)

    def remove_message_listener(self, listener: MessageListener) -> None:
        if listener in self._message_listeners:
            self._message_listeners.remove(listener)

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    def remove_error_listener(self, listener: ErrorListener) -> None:
        if listener in self._error_listeners:
            self._error_listeners.remove(listener)

    def post(self, message: dict) -> None:
        """
        Queue a request. Must be called from the worker's event loop.

        Args:
            message: {"task_id": str, "payload": TransformPayload}
        """
        if not self.running:
            self._emit_error(WorkerCrashedError("Transform worker is not running"))
            return
        try:
            self._executor.submit(self._handle, message)
        except RuntimeError as e:
            logger.error(f"Transform worker rejected a task: {e}")
            self._emit_error(WorkerCrashedError(f"Transform worker unavailable: {e}"))

    def terminate(self) -> None:
        """Stop the worker; every outstanding task is failed through the error listeners."""
        if self._terminated:
            return
        self._terminated = True
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
        self._emit_error(WorkerCrashedError("Transform worker terminated"))

    def _handle(self, message: dict) -> None:
        task_id = message.get("task_id")
        try:
            result = self._transform_fn(message["payload"])
            reply = {"task_id": task_id, "success": True, "result": result}
        except MemoryError as e:
            self._deliver(self._emit_error, WorkerCrashedError(f"Transform worker crashed: {e!r}"))
            return
        except Exception as e:
            logger.warning(f"Transform task {task_id} failed: {e}")
            reply = {"task_id": task_id, "success": False, "error": str(e) or type(e).__name__}
        self._deliver(self._broadcast, reply)

    def _deliver(self, callback, argument) -> None:
        try:
            self._loop.call_soon_threadsafe(callback, argument)
        except RuntimeError:
            logger.debug("Event loop closed before transform reply could be delivered")

    def _broadcast(self, reply: dict) -> None:
        for listener in list(self._message_listeners):
            listener(reply)

    def _emit_error(self, error: BaseException) -> None:
        for listener in list(self._error_listeners):
            listener(error)


class TransformTaskCorrelator:
    """
    Routes out-of-order replies from one shared worker back to their callers.

    Each submission gets a task id unique among outstanding submissions and a
    future registered in the pending table before the request is posted. A
    reply resolves only the future with its task id; replies for unknown ids
    are ignored. A worker-level failure rejects every pending submission.
    """

    def __init__(self, worker: TransformWorker):
        self._worker = worker
        self._pending: Dict[str, asyncio.Future] = {}
        worker.add_message_listener(self._on_message)
        worker.add_error_listener(self._on_worker_error)

    @staticmethod
    def new_task_id(payload: TransformPayload) -> str:
        """Name and size keep ids readable; the uuid keeps same-named files apart."""
        return f"{payload.filename}-{len(payload.content)}-{uuid.uuid4().hex}"

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def submit(self, payload: TransformPayload) -> TransformResult:
        """
        Run one transform on the shared worker.

        Args:
            payload: Transform input

        Returns:
            The worker's result for this payload

        Raises:
            TransformError: The transform failed for this payload
            WorkerCrashedError: The worker failed as a whole
        """
        loop = asyncio.get_running_loop()
        task_id = self.new_task_id(payload)
        future = loop.create_future()
        self._pending[task_id] = future
        try:
            self._worker.post({"task_id": task_id, "payload": payload})
            return await future
        finally:
            self._pending.pop(task_id, None)

    def close(self) -> None:
        """Detach from the worker."""
        self._worker.remove_message_listener(self._on_message)
        self._worker.remove_error_listener(self._on_worker_error)

    def _on_message(self, reply: dict) -> None:
        task_id = reply.get("task_id")
        future = self._pending.pop(task_id, None)
        if future is None:
            logger.debug(f"Ignoring transform reply for unknown task {task_id}")
            return
        if future.done():
            return
        if reply.get("success"):
            future.set_result(reply["result"])
        else:
            future.set_exception(TransformError(f"Transform failed: {reply.get('error', 'unknown error')}"))

    def _on_worker_error(self, error: BaseException) -> None:
        pending = list(self._pending.items())
        self._pending.clear()
        if pending:
            logger.error(f"Transform worker failed, rejecting {len(pending)} pending tasks: {error}")
        for _, future in pending:
            if future.done():
                continue
            if isinstance(error, WorkerCrashedError):
                future.set_exception(error)
            else:
                future.set_exception(WorkerCrashedError(str(error)))
