"""Pydantic schemas for upload and file URL endpoints."""

from typing import List, Optional

from pydantic import BaseModel


class UploadAcceptedResponse(BaseModel):
    """Response model for a submitted upload."""
    uploadId: str
    status: str = "accepted"


class UploadSessionResponse(BaseModel):
    """Response model for an in-flight upload."""
    uploadId: str
    totalBytes: int
    bytesTransferred: int
    chunkSize: int
    state: str
    progress: int


class FileWithUrlsResponse(BaseModel):
    """Response model for a file record with signed download URLs."""
    fileId: str
    name: str
    originalName: str
    description: str
    fileTypes: List[str]
    categories: List[str]
    remoteObjectId: str
    remoteThumbnailId: Optional[str] = None
    mimeType: str
    size: int
    owner: str
    sharedWith: List[str]
    createdAt: str
    updatedAt: str
    publicDownloadUrl: str
    publicThumbnailDownloadUrl: Optional[str] = None
