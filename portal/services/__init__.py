"""Service layer for business logic."""

from portal.services.file_service import FileService
from portal.services.upload_service import UploadOrchestrator

__all__ = [
    "FileService",
    "UploadOrchestrator",
]
