"""Async HTTP client for the upload server endpoints."""

import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from common.constants import (
    MERGE_CHUNKS_ENDPOINT,
    MISSING_DATA_CODES,
    SINGLE_UPLOAD_ENDPOINT,
    UPLOAD_CHUNK_ENDPOINT,
)
from common.logging_config import get_logger
from uploader.config import Config
from uploader.exceptions import (
    MalformedResponseError,
    MergeRequestError,
    MissingChunkDataError,
    ServerResponseError,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class MergeReply:
    """Successful merge response."""
    filename: str
    reused: bool
    message: str


@dataclass(frozen=True)
class SingleUploadReply:
    """Successful single-file upload response."""
    filename: str
    file_path: str
    message: str


class UploadServerClient:
    """
    Thin async wrapper over the upload server's HTTP API.

    Transport failures (httpx.TransportError) propagate unchanged so callers
    can decide whether to retry; failure responses become ServerResponseError
    or one of the merge-specific errors.
    """

    def __init__(self, config: Config, session: Optional[httpx.AsyncClient] = None):
        """
        Initialize server client.

        Args:
            config: Configuration instance
            session: Optional pre-built AsyncClient (tests inject mock transports)
        """
        self.config = config
        self.session = session or httpx.AsyncClient(
            base_url=config.get_base_url(),
            timeout=config.get_timeout()
        )
        logger.debug(f"Initialized UploadServerClient [base_url={config.get_base_url()}]")

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.session.aclose()

    @staticmethod
    def _new_request_headers() -> dict:
        return {'X-Request-ID': str(uuid.uuid4())}

    @staticmethod
    def _parse_error(response: httpx.Response) -> tuple[str, Optional[str], Optional[int]]:
        """
        Extract (message, code, missing index) from a failure response.
        """
        try:
            data = response.json()
        except ValueError:
            return (response.text or f"HTTP {response.status_code}"), None, None
        if not isinstance(data, dict):
            return f"HTTP {response.status_code}", None, None
        message = data.get('message') or data.get('detail') or f"HTTP {response.status_code}"
        return str(message), data.get('code'), data.get('missingIndex')

    @staticmethod
    def _success_body(response: httpx.Response, what: str) -> dict:
        """
        Decode the JSON body of a 200 response.

        Raises:
            MalformedResponseError: Body is not a JSON object
        """
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            logger.warning(f"{what}: unreadable 200 response body {response.text[:80]!r}")
            raise MalformedResponseError(
                f"{what}: malformed response from server", status_code=response.status_code
            )
        return body

    async def upload_chunk(
        self,
        filename: str,
        transfer_id: str,
        index: int,
        total_chunks: int,
        data: bytes,
    ) -> None:
        """
        Send one chunk.

        Raises:
            httpx.TransportError: Network failure or timeout
            ServerResponseError: Server answered with a failure status
        """
        headers = self._new_request_headers()
        response = await self.session.post(
            UPLOAD_CHUNK_ENDPOINT,
            data={
                'filename': filename,
                'fileId': transfer_id,
                'chunkNumber': str(index),
                'totalChunks': str(total_chunks),
            },
            files={'chunk': (f"chunk-{index}", data, 'application/octet-stream')},
            headers=headers,
        )
        if response.status_code == 200:
            body = self._success_body(response, f"Chunk {index}")
            if body.get('success'):
                logger.debug(f"Chunk {index}/{total_chunks} of {filename} acknowledged [request_id={headers['X-Request-ID']}]")
                return
        message, code, _ = self._parse_error(response)
        raise ServerResponseError(
            f"Chunk {index} rejected: {message}", status_code=response.status_code, code=code
        )

    async def merge_chunks(self, filename: str, transfer_id: str, total_chunks: int) -> MergeReply:
        """
        Ask the server to reassemble a transfer.

        Raises:
            httpx.TransportError: Network failure or timeout
            MissingChunkDataError: Server has no (or incomplete) chunk data
            MalformedResponseError: Success status with an unreadable body
            MergeRequestError: Any other failure
        """
        headers = self._new_request_headers()
        response = await self.session.post(
            MERGE_CHUNKS_ENDPOINT,
            json={'filename': filename, 'fileId': transfer_id, 'totalChunks': total_chunks},
            headers=headers,
        )
        if response.status_code == 200:
            body = self._success_body(response, f"Merge of {filename}")
            if body.get('success') and body.get('filename'):
                return MergeReply(
                    filename=body['filename'],
                    reused=bool(body.get('reused', False)),
                    message=body.get('message', ''),
                )
        message, code, missing_index = self._parse_error(response)
        if response.status_code == 400 and code in MISSING_DATA_CODES:
            raise MissingChunkDataError(message, code=code, missing_index=missing_index)
        logger.warning(
            f"Merge failed for {filename}: status={response.status_code} code={code} [request_id={headers['X-Request-ID']}]"
        )
        raise MergeRequestError(message, status_code=response.status_code, code=code)

    async def upload_single(self, path: Path) -> SingleUploadReply:
        """
        Upload a whole file through the non-chunked endpoint.

        Raises:
            httpx.TransportError: Network failure or timeout
            ServerResponseError: Server answered with a failure status
        """
        path = Path(path)
        content = path.read_bytes()
        response = await self.session.post(
            SINGLE_UPLOAD_ENDPOINT,
            files={'file': (path.name, content, 'application/octet-stream')},
            headers=self._new_request_headers(),
        )
        if response.status_code == 200:
            body = self._success_body(response, f"Upload of {path.name}")
            if body.get('success'):
                return SingleUploadReply(
                    filename=body['filename'],
                    file_path=body.get('filePath', ''),
                    message=body.get('message', ''),
                )
        message, code, _ = self._parse_error(response)
        raise ServerResponseError(message, status_code=response.status_code, code=code)
