"""Custom exception classes for the upload server."""

from common.constants import (
    CODE_BAD_REQUEST,
    CODE_CHUNK_MISSING,
    CODE_CHUNK_SET_MISSING,
    CODE_INTERNAL_ERROR,
    CODE_INVALID_FILE_ID,
    CODE_MERGE_FAILED,
    CODE_MISSING_PAYLOAD,
    CODE_STORAGE_ERROR,
)


class UploadError(Exception):
    """
    Base exception class for all upload server errors.
    """
    status_code = 500
    code = CODE_INTERNAL_ERROR


class BadRequestError(UploadError):
    """
    Raised when a request is structurally valid but its values are not.
    """
    status_code = 400
    code = CODE_BAD_REQUEST


class MissingChunkPayloadError(BadRequestError):
    """
    Raised when an upload request carries no binary payload.
    """
    code = CODE_MISSING_PAYLOAD


class InvalidTransferIdError(BadRequestError):
    """
    Raised when a fileId cannot be used as a storage key.
    """
    code = CODE_INVALID_FILE_ID


class ChunkSetMissingError(BadRequestError):
    """
    Raised when merge finds no chunk data at all for a transfer.
    """
    code = CODE_CHUNK_SET_MISSING


class ChunkMissingError(BadRequestError):
    """
    Raised when merge finds a gap in the chunk sequence.
    """
    code = CODE_CHUNK_MISSING

    def __init__(self, transfer_id: str, index: int):
        super().__init__(f"Chunk {index} is missing, please re-upload")
        self.transfer_id = transfer_id
        self.index = index


class ChunkStorageError(UploadError):
    """
    Raised when a chunk blob cannot be written to disk.
    """
    status_code = 500
    code = CODE_STORAGE_ERROR


class MergeFailedError(UploadError):
    """
    Raised when reassembly fails with an I/O error.
    """
    status_code = 500
    code = CODE_MERGE_FAILED
