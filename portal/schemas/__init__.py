"""Pydantic schemas for API requests and responses."""

from portal.schemas.common import ErrorResponse
from portal.schemas.uploads import (
    FileWithUrlsResponse,
    UploadAcceptedResponse,
    UploadSessionResponse
)

__all__ = [
    "ErrorResponse",
    "FileWithUrlsResponse",
    "UploadAcceptedResponse",
    "UploadSessionResponse"
]
