"""Configuration settings for the upload server."""

import os
from dataclasses import dataclass
from pathlib import Path

from common.constants import DEFAULT_SERVER_PORT, PUBLIC_UPLOADS_PREFIX


UPLOAD_DIR = os.environ.get("CHUNKFERRY_UPLOAD_DIR", "./data/uploads")

TEMP_CHUNKS_DIR = os.environ.get("CHUNKFERRY_TEMP_DIR", "./data/temp_chunks")

# Kept outside TEMP_CHUNKS_DIR so chunk cleanup never removes completion records.
COMPLETED_DIR = os.environ.get("CHUNKFERRY_COMPLETED_DIR", "./data/upload_completed")

SERVER_HOST = os.environ.get("CHUNKFERRY_HOST", "0.0.0.0")

SERVER_PORT = int(os.environ.get("CHUNKFERRY_PORT", str(DEFAULT_SERVER_PORT)))

PUBLIC_PREFIX = os.environ.get("CHUNKFERRY_PUBLIC_PREFIX", PUBLIC_UPLOADS_PREFIX)

STALE_CHUNK_TTL_SECONDS = int(os.environ.get("CHUNKFERRY_STALE_CHUNK_TTL_SECONDS", str(24 * 3600)))

CLEANUP_INTERVAL_SECONDS = int(os.environ.get("CHUNKFERRY_CLEANUP_INTERVAL_SECONDS", str(3600)))


@dataclass(frozen=True)
class ServerSettings:
    """
    Paths and tunables for one server instance.

    Defaults come from the environment; tests build their own instance
    pointing at temporary directories.
    """
    upload_dir: Path = Path(UPLOAD_DIR)
    temp_chunks_dir: Path = Path(TEMP_CHUNKS_DIR)
    completed_dir: Path = Path(COMPLETED_DIR)
    public_prefix: str = PUBLIC_PREFIX
    stale_chunk_ttl_seconds: int = STALE_CHUNK_TTL_SECONDS
    cleanup_interval_seconds: int = CLEANUP_INTERVAL_SECONDS

    def ensure_directories(self) -> None:
        """Create the artifact, chunk and marker directories if missing."""
        for directory in (self.upload_dir, self.temp_chunks_dir, self.completed_dir):
            Path(directory).mkdir(parents=True, exist_ok=True)
