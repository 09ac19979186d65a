"""Command handler functions for CLI operations."""

import asyncio
from pathlib import Path
from typing import Callable, List, Optional

import httpx

from common.logging_config import get_logger
from uploader.config import Config
from uploader.exceptions import ServerResponseError, TransferError
from uploader.models import ForgetCommand, ResumeStatusCommand, SendCommand, UploadCommand
from uploader.transfer_manager import TransferManager
from uploader.types import TransferOutcome
from uploader.utils import ProgressPrinter, format_file_size

logger = get_logger(__name__)


_config: Optional[Config] = None


def get_config() -> Config:
    """
    Get or create global Config instance.

    Returns:
        Config instance
    """
    global _config
    if _config is None:
        logger.debug("Loading uploader config")
        _config = Config(Path.home() / '.chunkferry' / 'config.json')
    return _config


def _format_outcome(outcome: TransferOutcome) -> str:
    if not outcome.success:
        return f"Error uploading {outcome.path}: {outcome.error}"
    result = outcome.result
    if result.tolerated:
        return f"Uploaded {outcome.path} (server did not confirm the stored name)"
    if result.reused:
        return f"Uploaded {outcome.path} -> {result.artifact_name} (already on server)"
    line = f"Uploaded {outcome.path} -> {result.artifact_name}"
    if result.chunks_skipped:
        line += f" (resumed, {result.chunks_skipped} chunk(s) skipped)"
    return line


def handle_upload(
    cmd: UploadCommand,
    config: Optional[Config] = None,
    session: Optional[httpx.AsyncClient] = None,
    on_progress: Optional[Callable[[str, float], None]] = None,
) -> str:
    """
    Handle 'upload' command.

    Args:
        cmd: UploadCommand with file_list
        config: Optional Config for dependency injection (testing)
        session: Optional AsyncClient for dependency injection (testing)
        on_progress: Progress sink; defaults to printing progress lines

    Returns:
        One result line per file
    """
    logger.info(f"Executing upload command: {len(cmd.file_list)} files")
    if config is None:
        config = get_config()
    if on_progress is None:
        on_progress = ProgressPrinter()

    async def run() -> List[TransferOutcome]:
        async with TransferManager(config, session=session) as manager:
            return await manager.upload_paths(list(cmd.file_list), on_progress=on_progress)

    outcomes = asyncio.run(run())
    succeeded = sum(1 for o in outcomes if o.success)
    logger.debug(f"Upload command completed: {succeeded}/{len(outcomes)} succeeded")
    lines = [_format_outcome(o) for o in outcomes]
    lines.append(f"{succeeded} of {len(outcomes)} file(s) uploaded.")
    return "\n".join(lines)


def handle_send(
    cmd: SendCommand,
    config: Optional[Config] = None,
    session: Optional[httpx.AsyncClient] = None,
) -> str:
    """
    Handle 'send' command.

    Args:
        cmd: SendCommand with path
        config: Optional Config for dependency injection (testing)
        session: Optional AsyncClient for dependency injection (testing)

    Returns:
        Success or error message
    """
    if config is None:
        config = get_config()
    path = Path(cmd.path).expanduser()
    if not path.is_file():
        return f"Error: File not found: {cmd.path}"
    size = path.stat().st_size

    async def run():
        async with TransferManager(config, session=session) as manager:
            return await manager.upload_single(str(path))

    try:
        reply = asyncio.run(run())
    except httpx.TransportError as e:
        logger.error(f"Single upload of {cmd.path} failed: {e}")
        return f"Error uploading {cmd.path}: Cannot connect to upload server"
    except ServerResponseError as e:
        return f"Error uploading {cmd.path}: {e} (Code: {e.code or e.status_code})"
    except (TransferError, OSError) as e:
        return f"Error uploading {cmd.path}: {e}"
    return f"Uploaded {cmd.path} ({format_file_size(size)}) -> {reply.filename}\nURL path: {reply.file_path}"


def handle_resume_status(cmd: ResumeStatusCommand, config: Optional[Config] = None) -> str:
    """
    Handle 'resume-status' command.

    Returns:
        One line per transfer with acknowledged chunks on record
    """
    if config is None:
        config = get_config()
    records = TransferManager(config).resume_records()
    if not records:
        return "No interrupted transfers on record."
    lines = [f"{len(records)} interrupted transfer(s):"]
    for transfer_id, indices in sorted(records.items()):
        lines.append(f"  {transfer_id[:16]}  {len(indices)} chunk(s) acknowledged")
    return "\n".join(lines)


def handle_forget(cmd: ForgetCommand, config: Optional[Config] = None) -> str:
    """
    Handle 'forget' command.

    Args:
        cmd: ForgetCommand with path
        config: Optional Config for dependency injection (testing)

    Returns:
        Confirmation message
    """
    if config is None:
        config = get_config()
    try:
        removed = TransferManager(config).forget(cmd.path)
    except OSError as e:
        return f"Error: {e}"
    if removed:
        return f"Resume record for {cmd.path} discarded."
    return f"No resume record for {cmd.path}."
