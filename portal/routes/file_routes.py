"""File record API routes."""

from fastapi import APIRouter, Depends, File, UploadFile

from portal.auth import get_current_user
from portal.config import MAX_UPLOAD_BYTES
from portal.schemas.common import ErrorResponse
from portal.schemas.uploads import FileWithUrlsResponse
from portal.service_locator import get_services

router = APIRouter(prefix="/files", tags=["Files"])

ERROR_RESPONSES = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


@router.get("/{file_id}/urls", response_model=FileWithUrlsResponse, responses=ERROR_RESPONSES)
async def get_file_urls(
    file_id: str,
    current_user: str = Depends(get_current_user)
):
    """
    Get a file record with signed download URLs.

    URLs are served from the download-URL cache and refreshed in the
    background once they pass 80% of their lifetime.

    Parameters:
        - file_id: Record id
        - X-User-ID header (required)

    Returns:
        - File record plus publicDownloadUrl and publicThumbnailDownloadUrl

    Raises:
        - 403: User neither owns the file nor has it shared
        - 404: File not found
        - 502: Document library unavailable and no cached URLs
    """
    return await get_services().file_service.get_file_with_urls(file_id, current_user)


@router.put("/{file_id}/thumbnail", response_model=FileWithUrlsResponse, responses=ERROR_RESPONSES)
async def replace_thumbnail(
    file_id: str,
    thumbnail: UploadFile = File(...),
    current_user: str = Depends(get_current_user)
):
    """
    Replace the preview image of a file.

    Parameters:
        - file_id: Record id
        - thumbnail: New preview image (multipart/form-data)
        - X-User-ID header (required)

    Returns:
        - Updated file record with fresh signed URLs

    Raises:
        - 403: User does not own the file
        - 404: File not found
        - 502: Thumbnail upload rejected by the document library
    """
    services = get_services()
    upload = await services.temp_store.spool(thumbnail, MAX_UPLOAD_BYTES)
    return await services.file_service.replace_thumbnail(file_id, current_user, upload)
