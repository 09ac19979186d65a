"""Exception classes raised by the uploader client."""

from typing import Optional


class TransferError(Exception):
    """
    Base exception class for all client-side transfer errors.
    """
    pass


class ServerUnavailableError(TransferError):
    """
    Raised when the upload server cannot be reached after retries.
    """
    pass


class ChunkUploadFailedError(TransferError):
    """
    Raised when one chunk could not be sent within the attempt budget.
    """

    def __init__(self, transfer_id: str, index: int, attempts: int, reason: str):
        super().__init__(f"Chunk {index} failed after {attempts} attempts: {reason}")
        self.transfer_id = transfer_id
        self.index = index
        self.attempts = attempts


class MergeRequestError(TransferError):
    """
    Raised when the server rejects a merge for a reason other than missing data.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class MissingChunkDataError(TransferError):
    """
    Raised when the server reports that chunk data for a merge is missing.
    """

    def __init__(self, message: str, code: str, missing_index: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.missing_index = missing_index


class TransformError(TransferError):
    """
    Raised when the transform worker fails on one task.
    """
    pass


class WorkerCrashedError(TransformError):
    """
    Raised for every outstanding task when the shared transform worker fails as a whole.
    """
    pass


class ServerResponseError(TransferError):
    """
    Raised when the server answers a request with a failure status.
    """

    def __init__(self, message: str, status_code: int, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code

    @property
    def retriable(self) -> bool:
        """Server-side failures may succeed on a later attempt; client errors will not."""
        return self.status_code >= 500


class MalformedResponseError(ServerResponseError):
    """
    Raised when a success status arrives with a body that is not the expected JSON.
    """

    @property
    def retriable(self) -> bool:
        return True
