"""Durable completion markers: transfer_id -> final artifact name."""

import os
from pathlib import Path
from typing import Optional

from common.logging_config import get_logger
from common.types import is_valid_transfer_id
from upload_server.exceptions import InvalidTransferIdError

logger = get_logger(__name__)


class CompletionMarkerStore:
    """
    Key/value store recording which artifact a finished transfer produced.

    One small file per transfer, named by the transfer id and holding the
    artifact name. Stored apart from chunk data so chunk cleanup never erases
    the record. Mutated only by the merge coordinator and the cleanup task.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def _marker_path(self, transfer_id: str) -> Path:
        if not is_valid_transfer_id(transfer_id):
            raise InvalidTransferIdError(f"Invalid fileId: {transfer_id!r}")
        return self.root / transfer_id

    def read(self, transfer_id: str) -> Optional[str]:
        """
        Read the artifact name recorded for a transfer.

        An unreadable or empty marker is treated as corrupt: it is deleted and
        None is returned.

        Returns:
            Artifact name, or None if there is no usable marker
        """
        path = self._marker_path(transfer_id)
        if not path.exists():
            return None
        try:
            artifact_name = path.read_text(encoding='utf-8').strip()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Unreadable completion marker for {transfer_id}, discarding: {e}")
            self.delete(transfer_id)
            return None
        if not artifact_name or Path(artifact_name).name != artifact_name:
            logger.warning(f"Corrupt completion marker for {transfer_id}, discarding")
            self.delete(transfer_id)
            return None
        return artifact_name

    def write(self, transfer_id: str, artifact_name: str) -> None:
        """
        Record the artifact for a transfer (atomic replace).

        Raises:
            OSError: If the marker cannot be written
        """
        path = self._marker_path(transfer_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.tmp")
        tmp_path.write_text(artifact_name, encoding='utf-8')
        os.replace(tmp_path, path)

    def delete(self, transfer_id: str) -> bool:
        """
        Remove a marker.

        Returns:
            True if a marker was deleted
        """
        path = self._marker_path(transfer_id)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False

    def list_transfer_ids(self) -> list[str]:
        """List transfer ids with a marker."""
        if not self.root.exists():
            return []
        return sorted(
            p.name for p in self.root.iterdir()
            if p.is_file() and not p.name.startswith('.')
        )
