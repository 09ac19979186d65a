"""Chunked upload, merge and single-file upload routes."""

import asyncio
import shutil
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from common.constants import MERGE_CHUNKS_ENDPOINT, SINGLE_UPLOAD_ENDPOINT, UPLOAD_CHUNK_ENDPOINT
from common.logging_config import get_logger
from upload_server.chunk_receiver import ChunkReceiver
from upload_server.dependencies import get_chunk_receiver, get_merge_coordinator, get_upload_dir
from upload_server.exceptions import ChunkStorageError, MissingChunkPayloadError
from upload_server.merge_coordinator import MergeCoordinator
from upload_server.schemas.uploads import (
    ChunkUploadResponse,
    MergeRequest,
    MergeResponse,
    SingleUploadResponse,
)
from upload_server.utils import publish_artifact

logger = get_logger(__name__)

router = APIRouter(tags=["Uploads"])


@router.post(UPLOAD_CHUNK_ENDPOINT, response_model=ChunkUploadResponse)
async def upload_chunk(
    file_id: str = Form(..., alias="fileId"),
    chunk_number: int = Form(..., alias="chunkNumber"),
    total_chunks: int = Form(..., alias="totalChunks"),
    filename: str = Form(""),
    chunk: Optional[UploadFile] = File(None),
    receiver: ChunkReceiver = Depends(get_chunk_receiver),
):
    """
    Store one chunk of a transfer.

    Parameters:
        - filename: Original file name (informational)
        - fileId: TransferId of the upload
        - chunkNumber: Chunk index, 0-based
        - totalChunks: Total number of chunks in the transfer
        - chunk: Binary chunk payload (multipart/form-data)

    Returns:
        - success: True once the chunk is durably stored
        - message: Human readable status

    Raises:
        - 400: Payload missing, index out of range or invalid fileId
        - 500: Storage failure (client should retry)
    """
    data = await chunk.read() if chunk is not None else None
    await receiver.receive_chunk(
        transfer_id=file_id,
        index=chunk_number,
        total_chunks=total_chunks,
        data=data,
        filename=filename,
    )
    return ChunkUploadResponse(success=True, message=f"Chunk {chunk_number} uploaded")


@router.post(MERGE_CHUNKS_ENDPOINT, response_model=MergeResponse)
async def merge_chunks(
    request: MergeRequest,
    coordinator: MergeCoordinator = Depends(get_merge_coordinator),
):
    """
    Reassemble a transfer's chunks into the final artifact.

    Safe to call repeatedly: once a transfer has been merged, later calls
    return the same artifact name without touching chunk storage.

    Parameters:
        - filename: Original file name
        - fileId: TransferId of the upload
        - totalChunks: Number of chunks sent

    Returns:
        - filename: Final artifact name
        - reused: True if an earlier merge produced it

    Raises:
        - 400: Chunk data missing (CHUNK_SET_MISSING) or a chunk index missing (CHUNK_MISSING)
        - 500: I/O failure while merging
    """
    result = await coordinator.merge(
        transfer_id=request.file_id,
        filename=request.filename,
        total_chunks=request.total_chunks,
    )
    message = "File already uploaded (duplicate skipped)" if result.reused else "File uploaded successfully"
    return MergeResponse(success=True, message=message, filename=result.filename, reused=result.reused)


@router.post(SINGLE_UPLOAD_ENDPOINT, response_model=SingleUploadResponse)
async def upload_single_file(
    file: Optional[UploadFile] = File(None),
    upload_dir: Path = Depends(get_upload_dir),
):
    """
    Upload a whole file in one request. No chunking, no resume.

    Parameters:
        - file: File to upload (multipart/form-data)

    Returns:
        - filePath: Server-side path of the stored file
        - filename: Stored file name (<basename>-<epoch_ms><ext>)

    Raises:
        - 400: No file in the request
        - 500: Storage failure
    """
    if file is None:
        raise MissingChunkPayloadError("No file uploaded")

    def _store() -> Path:
        name = publish_artifact(
            file.filename or "upload", upload_dir, lambda out: shutil.copyfileobj(file.file, out)
        )
        return upload_dir / name

    try:
        stored_path = await asyncio.to_thread(_store)
    except OSError as e:
        logger.error(f"Failed to store uploaded file {file.filename}: {e}")
        raise ChunkStorageError(f"Failed to store file: {e}") from e

    logger.info(f"Stored single upload {file.filename} as {stored_path.name}")
    return SingleUploadResponse(
        success=True,
        message="File uploaded successfully",
        file_path=str(stored_path),
        filename=stored_path.name,
    )
