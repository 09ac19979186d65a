"""
Persistent record of which chunk indices the server has acknowledged.

The record is a hint for skipping chunks on resume, never a source of truth:
losing it only costs a full re-upload.
"""

import json
import os
import shutil
import threading
from pathlib import Path
from typing import Dict, List, Set

from common.constants import RESUME_KEY_PREFIX
from common.logging_config import get_logger

logger = get_logger(__name__)


class ResumeTracker:
    """
    Thread-safe JSON-backed map of transfer_id -> acknowledged chunk indices.

    Keys are stored namespaced ("upload_progress_<transfer_id>") with a
    sorted JSON array as value. Every mutation is written through to disk
    with an atomic replace.
    """

    def __init__(self, state_path: Path):
        """
        Initialize tracker.

        Args:
            state_path: Path of the JSON state file (created on first write)
        """
        self._state_path = Path(state_path)
        self._lock = threading.RLock()
        self._records: Dict[str, List[int]] = {}
        self._load_from_disk()

    @staticmethod
    def _key(transfer_id: str) -> str:
        return f"{RESUME_KEY_PREFIX}{transfer_id}"

    def _load_from_disk(self) -> None:
        if not self._state_path.exists():
            return
        try:
            with open(self._state_path, 'r') as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("resume state is not a JSON object")
            records = {}
            for key, indices in data.items():
                if key.startswith(RESUME_KEY_PREFIX) and isinstance(indices, list):
                    records[key] = sorted({int(i) for i in indices if isinstance(i, int) and i >= 0})
            self._records = records
            logger.debug(f"Loaded {len(records)} resume records from {self._state_path}")
        except (json.JSONDecodeError, ValueError, OSError) as e:
            backup_path = self._state_path.with_suffix('.json.bak')
            logger.warning(f"Resume state {self._state_path} unreadable, starting empty: {e}")
            try:
                shutil.copy(self._state_path, backup_path)
            except OSError:
                logger.warning(f"Could not back up resume state to {backup_path}")
            self._records = {}

    def _save_to_disk(self) -> None:
        self._state_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._state_path.with_suffix('.json.tmp')
        with open(tmp_path, 'w') as f:
            json.dump(self._records, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self._state_path)

    def acknowledged(self, transfer_id: str) -> Set[int]:
        """Indices recorded as acknowledged for a transfer."""
        with self._lock:
            return set(self._records.get(self._key(transfer_id), []))

    def chunks_remaining(self, transfer_id: str, total_chunks: int) -> Set[int]:
        """
        Chunk indices that still have to be sent.

        An empty result does not mean the transfer is finished; the caller
        must still confirm with the server through a merge.

        Args:
            transfer_id: TransferId of the file
            total_chunks: Number of chunks in the file

        Returns:
            Set of indices in [0, total_chunks) not yet acknowledged
        """
        acked = self.acknowledged(transfer_id)
        return {index for index in range(total_chunks) if index not in acked}

    def mark_acknowledged(self, transfer_id: str, index: int) -> None:
        """
        Record that the server acknowledged a chunk.

        Call only after a positive server response.
        """
        with self._lock:
            key = self._key(transfer_id)
            indices = set(self._records.get(key, []))
            if index in indices:
                return
            indices.add(index)
            self._records[key] = sorted(indices)
            self._save_to_disk()

    def clear(self, transfer_id: str) -> bool:
        """
        Drop the record for a transfer.

        Returns:
            True if a record existed
        """
        with self._lock:
            removed = self._records.pop(self._key(transfer_id), None)
            if removed is None:
                return False
            self._save_to_disk()
            return True

    def records(self) -> Dict[str, List[int]]:
        """Snapshot of all records keyed by transfer id."""
        with self._lock:
            return {
                key[len(RESUME_KEY_PREFIX):]: list(indices)
                for key, indices in self._records.items()
            }
