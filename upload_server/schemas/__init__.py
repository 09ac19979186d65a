"""Pydantic schemas for API requests and responses."""

from upload_server.schemas.uploads import (
    ChunkUploadResponse,
    HealthResponse,
    MergeRequest,
    MergeResponse,
    SingleUploadResponse,
)
from upload_server.schemas.common import ErrorResponse

__all__ = [
    "ChunkUploadResponse",
    "HealthResponse",
    "MergeRequest",
    "MergeResponse",
    "SingleUploadResponse",
    "ErrorResponse",
]
