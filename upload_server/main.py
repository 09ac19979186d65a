"""Entry point for the upload server."""

import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from common.constants import CODE_BAD_REQUEST
from common.logging_config import setup_logging
from upload_server.chunk_receiver import ChunkReceiver
from upload_server.chunk_store import ChunkStore
from upload_server.cleanup_task import StaleChunkSetCleaner
from upload_server.config import SERVER_HOST, SERVER_PORT, ServerSettings
from upload_server.exceptions import ChunkMissingError, UploadError
from upload_server.marker_store import CompletionMarkerStore
from upload_server.merge_coordinator import MergeCoordinator
from upload_server.routes import upload_router
from upload_server.schemas.common import ErrorResponse
from upload_server.schemas.uploads import HealthResponse

logger = setup_logging('upload_server')


def _error_response(status_code: int, message: str, code: str, missing_index: Optional[int] = None) -> JSONResponse:
    body = ErrorResponse(message=message, code=code, missing_index=missing_index)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


def create_app(settings: Optional[ServerSettings] = None) -> FastAPI:
    """
    Build the FastAPI application and its storage services.

    Args:
        settings: Server settings; defaults to values from the environment

    Returns:
        Configured FastAPI application
    """
    settings = settings or ServerSettings()

    chunk_store = ChunkStore(settings.temp_chunks_dir)
    marker_store = CompletionMarkerStore(settings.completed_dir)
    cleaner = StaleChunkSetCleaner(
        chunk_store=chunk_store,
        marker_store=marker_store,
        upload_dir=settings.upload_dir,
        max_age_seconds=settings.stale_chunk_ttl_seconds,
        interval_seconds=settings.cleanup_interval_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Upload server starting up...")
        settings.ensure_directories()
        logger.info(
            f"Storage ready [uploads={settings.upload_dir}] [chunks={settings.temp_chunks_dir}] "
            f"[markers={settings.completed_dir}]"
        )
        if settings.cleanup_interval_seconds > 0:
            await cleaner.start()
        try:
            yield
        finally:
            logger.info("Upload server shutting down...")
            await cleaner.stop()

    app = FastAPI(
        title="Chunkferry Upload Server",
        description="Resumable chunked upload server with idempotent merge",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.chunk_store = chunk_store
    app.state.marker_store = marker_store
    app.state.chunk_receiver = ChunkReceiver(chunk_store)
    app.state.merge_coordinator = MergeCoordinator(chunk_store, marker_store, settings.upload_dir)
    app.state.cleaner = cleaner

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Middleware to log all HTTP requests and responses.
        """
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()

        logger.info(f"Request started: {request.method} {request.url.path} [request_id={request_id}]")

        response = await call_next(request)

        duration = time.time() - start_time

        logger.info(
            f"Request completed: {request.method} {request.url.path} "
            f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
        )

        response.headers["X-Request-ID"] = request_id

        return response

    @app.exception_handler(ChunkMissingError)
    async def chunk_missing_handler(request: Request, exc: ChunkMissingError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.warning(
            f"Chunk missing error: {exc} [request_id={request_id}] path={request.url.path}"
        )
        return _error_response(exc.status_code, str(exc), exc.code, missing_index=exc.index)

    @app.exception_handler(UploadError)
    async def upload_error_handler(request: Request, exc: UploadError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        if exc.status_code >= 500:
            logger.error(
                f"Upload error: {exc} [request_id={request_id}] path={request.url.path}",
                exc_info=True
            )
        else:
            logger.warning(
                f"Upload request rejected: {exc} [request_id={request_id}] path={request.url.path}"
            )
        return _error_response(exc.status_code, str(exc), exc.code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        fields = ", ".join(
            ".".join(str(part) for part in error.get("loc", ()) if part != "body") or "request"
            for error in exc.errors()
        )
        logger.warning(
            f"Validation error on {fields} [request_id={request_id}] path={request.url.path}"
        )
        return _error_response(status.HTTP_400_BAD_REQUEST, f"Invalid or missing fields: {fields}", CODE_BAD_REQUEST)

    app.include_router(upload_router)

    app.mount(
        settings.public_prefix,
        StaticFiles(directory=str(settings.upload_dir), check_dir=False),
        name="uploads",
    )

    @app.get("/")
    async def root():
        """
        Root endpoint for health check.
        """
        return {"message": "Chunkferry Upload Server", "status": "running"}

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """
        Health check endpoint.
        Returns 200 if service is alive.
        """
        return HealthResponse(
            status="healthy",
            service="upload_server",
            chunk_sets=len(chunk_store.list_chunk_sets()),
        )

    return app


app = create_app()


def main() -> None:
    """
    Start the FastAPI server with uvicorn.
    """
    uvicorn.run(
        "upload_server.main:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
    )


if __name__ == "__main__":
    main()
