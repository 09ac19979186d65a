"""API routes package."""

from upload_server.routes.upload_routes import router as upload_router

__all__ = ["upload_router"]
