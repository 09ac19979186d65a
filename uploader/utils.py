"""Utility functions for CLI output."""

import sys
import threading
from typing import Dict

from uploader.constants import GREEN, RESET


class ProgressPrinter:
    """
    Prints one progress line per file whenever it crosses a new step.

    Several transfers run at once, so lines are appended rather than
    redrawn in place.
    """

    def __init__(self, step_percent: int = 10, stream=None):
        self.step_percent = max(1, step_percent)
        self.stream = stream or sys.stdout
        self._last_step: Dict[str, int] = {}
        self._lock = threading.Lock()

    def __call__(self, path: str, fraction: float) -> None:
        percent = max(0.0, min(1.0, fraction)) * 100
        step = int(percent // self.step_percent)
        with self._lock:
            if self._last_step.get(path) == step and percent < 100:
                return
            if percent >= 100 and self._last_step.get(path) == -1:
                return
            self._last_step[path] = -1 if percent >= 100 else step
            self.stream.write(f"Uploading {path}: {GREEN}{percent:.1f}%{RESET}\n")
            self.stream.flush()


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in bytes to human-readable format with appropriate unit.

    Uses binary units (1024-based) and automatically selects the most
    appropriate unit (B, KiB, MiB, GiB, TiB).

    Args:
        size_bytes: File size in bytes

    Returns:
        Formatted string with size and unit (e.g., "1.50 MiB", "512 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"

    units = ['KiB', 'MiB', 'GiB', 'TiB']
    size = size_bytes / 1024.0

    for unit in units:
        if size < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0

    return f"{size:.2f} PiB"
