"""Pydantic schemas for upload endpoints."""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class ChunkUploadResponse(BaseModel):
    """Response model for a stored chunk."""
    success: bool
    message: str


class MergeRequest(BaseModel):
    """Request model for merging a transfer's chunks."""
    model_config = ConfigDict(populate_by_name=True)

    filename: str = Field(min_length=1)
    file_id: str = Field(alias="fileId", min_length=1)
    total_chunks: int = Field(alias="totalChunks", ge=1)


class MergeResponse(BaseModel):
    """Response model for a successful or idempotent merge."""
    success: bool
    message: str
    filename: str
    reused: bool = False


class SingleUploadResponse(BaseModel):
    """Response model for the non-chunked upload fallback."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    file_path: str = Field(serialization_alias="filePath")
    filename: str


class HealthResponse(BaseModel):
    """Response model for liveness checks."""
    status: str
    service: str
    chunk_sets: Optional[int] = None
