"""Configuration management for the uploader client."""

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from common.constants import DEFAULT_CHUNK_SIZE_BYTES, DEFAULT_SERVER_PORT
from common.logging_config import get_logger

logger = get_logger(__name__)


class Config:
    """Manages client configuration stored in a JSON file."""

    DEFAULT_CONFIG = {
        "server_host": os.environ.get("CHUNKFERRY_SERVER_HOST", "localhost"),
        "server_port": int(os.environ.get("CHUNKFERRY_SERVER_PORT", str(DEFAULT_SERVER_PORT))),
        "timeout": 60,
        "chunk_size": DEFAULT_CHUNK_SIZE_BYTES,
        "max_concurrent_transfers": 3,
        "max_chunk_attempts": 3,
        "retry_delay_seconds": 1.0,
        "compress_images": False,
        "compression_quality": 0.8,
        "compression_format": "webp",
        "transform_workers": 2,
    }

    def __init__(self, config_path: Path):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (typically ~/.chunkferry/config.json)
        """
        self.config_path = config_path
        self.data = self._load()

    def _load(self) -> dict:
        """
        Load configuration from file, creating defaults if necessary.

        Returns:
            Configuration dictionary
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            self.config_path = Path(tempfile.gettempdir()) / '.chunkferry' / 'config.json'
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                config = self.DEFAULT_CONFIG.copy()
                config.update(data)
                return config
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Config file {self.config_path} unreadable, using defaults: {e}")
                backup_path = self.config_path.with_suffix('.json.bak')
                try:
                    shutil.copy(self.config_path, backup_path)
                except OSError:
                    logger.warning(f"Could not back up config file to {backup_path}")
                return self.DEFAULT_CONFIG.copy()
        else:
            config = self.DEFAULT_CONFIG.copy()
            try:
                with open(self.config_path, 'w') as f:
                    json.dump(config, f, indent=2)
            except IOError as e:
                logger.warning(f"Could not write default config to {self.config_path}: {e}")
            return config

    def save(self) -> None:
        """Save current configuration to file."""
        try:
            with open(self.config_path, 'w') as f:
                json.dump(self.data, f, indent=2)
        except IOError as e:
            logger.error(f"Failed to save config to {self.config_path}: {e}")

    def get_base_url(self) -> str:
        """
        Get upload server base URL.

        Returns:
            Base URL string (e.g., "http://localhost:3000")
        """
        host = self.data.get('server_host', 'localhost')
        port = self.data.get('server_port', DEFAULT_SERVER_PORT)
        return f"http://{host}:{port}"

    def get_timeout(self) -> float:
        """
        Get request timeout in seconds.
        """
        return self.data.get('timeout', 60)

    def get_chunk_size(self) -> int:
        """Chunk size in bytes."""
        return int(self.data.get('chunk_size', DEFAULT_CHUNK_SIZE_BYTES))

    def get_max_concurrent_transfers(self) -> int:
        """Number of files transferred at once."""
        return max(1, int(self.data.get('max_concurrent_transfers', 3)))

    def get_retry_config(self) -> dict:
        """
        Get chunk retry configuration.

        Returns:
            Dictionary with 'max_attempts' and 'retry_delay_seconds'
        """
        return {
            'max_attempts': max(1, int(self.data.get('max_chunk_attempts', 3))),
            'retry_delay_seconds': float(self.data.get('retry_delay_seconds', 1.0)),
        }

    def get_compression_config(self) -> dict:
        """
        Get image compression configuration.

        Returns:
            Dictionary with 'enabled', 'quality', 'format' and 'workers'
        """
        return {
            'enabled': bool(self.data.get('compress_images', False)),
            'quality': float(self.data.get('compression_quality', 0.8)),
            'format': self.data.get('compression_format', 'webp'),
            'workers': max(1, int(self.data.get('transform_workers', 2))),
        }

    def get_resume_state_path(self) -> Path:
        """
        Location of the resume record file.

        Defaults to resume.json next to the config file.
        """
        configured: Optional[str] = self.data.get('resume_state_path')
        if configured:
            return Path(configured).expanduser()
        return self.config_path.parent / 'resume.json'
