"""API routes package."""

from portal.routes.file_routes import router as file_router
from portal.routes.upload_routes import router as upload_router
from portal.routes.upload_routes import ws_router as progress_router

__all__ = ["file_router", "progress_router", "upload_router"]
