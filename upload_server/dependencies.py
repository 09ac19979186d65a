"""FastAPI dependencies resolving the per-application service instances."""

from pathlib import Path

from fastapi import Request

from upload_server.chunk_receiver import ChunkReceiver
from upload_server.config import ServerSettings
from upload_server.merge_coordinator import MergeCoordinator


def get_settings(request: Request) -> ServerSettings:
    """Settings the application was created with."""
    return request.app.state.settings


def get_chunk_receiver(request: Request) -> ChunkReceiver:
    """Shared chunk receiver instance."""
    return request.app.state.chunk_receiver


def get_merge_coordinator(request: Request) -> MergeCoordinator:
    """Shared merge coordinator; it owns the per-transfer merge locks."""
    return request.app.state.merge_coordinator


def get_upload_dir(request: Request) -> Path:
    """Directory holding final artifacts."""
    return Path(get_settings(request).upload_dir)
