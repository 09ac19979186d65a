"""Utility helper functions for the upload server."""

import os
import tempfile
import time
from pathlib import Path
from typing import BinaryIO, Callable


def current_millis() -> int:
    """
    Current wall-clock time in milliseconds.

    Returns:
        Milliseconds since the epoch
    """
    return int(time.time() * 1000)


def split_filename(filename: str) -> tuple[str, str]:
    """
    Split a client-supplied filename into (basename, extension).

    Directory components are dropped so a filename can never escape the
    artifact directory.

    Args:
        filename: Name as sent by the client (e.g. "photos/a.png")

    Returns:
        Tuple like ("a", ".png"); extension may be empty
    """
    name = Path(filename.replace('\\', '/')).name
    if not name or name in ('.', '..'):
        name = 'upload'
    path = Path(name)
    if path.suffix and path.stem:
        return path.stem, path.suffix
    return name, ''


def claim_artifact_name(filename: str, directory: Path, timestamp_ms: int | None = None) -> str:
    """
    Reserve a unique artifact name of the form <basename>-<epoch_ms><ext>.

    The name is claimed by exclusively creating an empty file under it, so two
    callers can never get the same name. The timestamp is bumped while the name
    is taken.

    Args:
        filename: Original client filename
        directory: Directory the artifact will be written to
        timestamp_ms: Optional timestamp override (defaults to now)

    Returns:
        Artifact file name (no directory part)
    """
    basename, ext = split_filename(filename)
    stamp = timestamp_ms if timestamp_ms is not None else current_millis()
    while True:
        candidate = f"{basename}-{stamp}{ext}"
        try:
            fd = os.open(directory / candidate, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            stamp += 1
            continue
        os.close(fd)
        return candidate


def publish_artifact(
    filename: str,
    directory: Path,
    write: Callable[[BinaryIO], None],
    timestamp_ms: int | None = None,
) -> str:
    """
    Write an artifact into a private part file, then move it under a claimed name.

    Nothing is visible under the final name until the content is complete.
    On any failure the part file and the claimed name are removed and the
    error propagates.

    Args:
        filename: Original client filename
        directory: Artifact directory (created if missing)
        write: Callable that writes the full content to the open file
        timestamp_ms: Optional timestamp override (defaults to now)

    Returns:
        Final artifact file name
    """
    directory.mkdir(parents=True, exist_ok=True)
    fd, part = tempfile.mkstemp(dir=directory, prefix='.', suffix='.part')
    part_path = Path(part)
    artifact_name = None
    try:
        with os.fdopen(fd, 'wb') as out:
            write(out)
            out.flush()
            os.fsync(out.fileno())
        artifact_name = claim_artifact_name(filename, directory, timestamp_ms)
        os.replace(part_path, directory / artifact_name)
    except Exception:
        part_path.unlink(missing_ok=True)
        if artifact_name is not None:
            (directory / artifact_name).unlink(missing_ok=True)
        raise
    return artifact_name
