"""Project-wide constants shared by the upload server and the uploader client."""

DEFAULT_CHUNK_SIZE_BYTES: int = 1024 * 1024  # 1 MiB

DEFAULT_SERVER_PORT: int = 3000

UPLOAD_CHUNK_ENDPOINT = "/upload-chunk"
MERGE_CHUNKS_ENDPOINT = "/merge-chunks"
SINGLE_UPLOAD_ENDPOINT = "/upload"
PUBLIC_UPLOADS_PREFIX = "/uploads"

CHUNK_FILE_PREFIX = "chunk-"

RESUME_KEY_PREFIX = "upload_progress_"

# Error codes carried in the "code" field of failed JSON responses.
CODE_BAD_REQUEST = "BAD_REQUEST"
CODE_MISSING_PAYLOAD = "MISSING_PAYLOAD"
CODE_INVALID_FILE_ID = "INVALID_FILE_ID"
CODE_CHUNK_SET_MISSING = "CHUNK_SET_MISSING"
CODE_CHUNK_MISSING = "CHUNK_MISSING"
CODE_STORAGE_ERROR = "STORAGE_ERROR"
CODE_MERGE_FAILED = "MERGE_FAILED"
CODE_INTERNAL_ERROR = "INTERNAL_ERROR"

MISSING_DATA_CODES = (CODE_CHUNK_SET_MISSING, CODE_CHUNK_MISSING)
