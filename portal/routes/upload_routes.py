"""Upload submission and progress channel routes."""

import json
import logging
import uuid
from typing import List, Optional

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
    status
)

from portal.auth import get_current_user
from portal.config import MAX_UPLOAD_BYTES
from portal.exceptions import UploadConflictError
from portal.notifications import WebSocketConnection
from portal.schemas.uploads import UploadAcceptedResponse, UploadSessionResponse
from portal.service_locator import get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["Uploads"])

ws_router = APIRouter(tags=["Uploads"])


def parse_json_list(raw: Optional[str], field: str) -> List[str]:
    """
    Parse a JSON array form field into a list of strings.

    Raises:
        HTTPException: 400 if the value is not a JSON array of strings
    """
    if raw is None or raw == "":
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{field} must be a JSON array"
        )
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{field} must be a JSON array of strings"
        )
    return value


@router.post("/upload", response_model=UploadAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_upload(
    file: UploadFile = File(...),
    thumbnail: Optional[UploadFile] = File(None),
    fileTypes: str = Form(...),
    categories: Optional[str] = Form(None),
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    uploadId: Optional[str] = Form(None),
    current_user: str = Depends(get_current_user)
):
    """
    Accept a file for background transfer to the document library.

    Parameters:
        - file: File to upload (multipart/form-data)
        - thumbnail: Optional preview image
        - fileTypes: JSON array of file type labels (e.g. '["videos"]')
        - categories: JSON array of category ids
        - name: Display name; defaults to the file name
        - description: Free-text description
        - uploadId: Id the client opened its progress socket with; generated if omitted
        - X-User-ID header (required)

    Returns:
        - uploadId: Id under which progress, completion and errors are pushed
        - status: "accepted"

    Raises:
        - 400: Malformed form fields or file too large
        - 401: Missing user
        - 409: An upload with this uploadId is still running
    """
    services = get_services()

    file_types = parse_json_list(fileTypes, "fileTypes")
    category_ids = parse_json_list(categories, "categories")
    upload_id = uploadId or str(uuid.uuid4())
    if services.orchestrator.get_session(upload_id) is not None:
        raise UploadConflictError(f"Upload {upload_id} is already in progress")

    main_file = await services.temp_store.spool(file, MAX_UPLOAD_BYTES)
    thumbnail_file = None
    if thumbnail is not None and thumbnail.filename:
        try:
            thumbnail_file = await services.temp_store.spool(thumbnail, MAX_UPLOAD_BYTES)
        except Exception:
            services.temp_store.release(main_file)
            raise

    try:
        services.orchestrator.submit(
            upload_id,
            main_file,
            thumbnail=thumbnail_file,
            owner_id=current_user,
            file_types=file_types,
            categories=category_ids,
            name=name,
            description=description,
        )
    except UploadConflictError:
        services.temp_store.release(main_file)
        services.temp_store.release(thumbnail_file)
        raise

    logger.info(f"Accepted upload {upload_id} ({main_file.size} bytes) from user {current_user}")
    return UploadAcceptedResponse(uploadId=upload_id)


@router.get("/uploads/{upload_id}", response_model=UploadSessionResponse)
async def get_upload_status(
    upload_id: str,
    current_user: str = Depends(get_current_user)
):
    """
    Get the state of an in-flight upload.

    Raises:
        - 404: Upload unknown or already finished
    """
    session = get_services().orchestrator.get_session(upload_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Upload {upload_id} is not in progress"
        )
    return UploadSessionResponse(**session.to_dict())


def release_progress_connection(services, upload_id: str, connection) -> None:
    """
    Drop a closed progress socket and, if configured, cancel its upload.

    A socket already replaced by a reconnect leaves both the newer
    registration and the upload untouched.
    """
    removed = services.channel.unregister(upload_id, connection)
    if removed and services.orchestrator.cancel_on_disconnect:
        services.orchestrator.cancel(upload_id)


@ws_router.websocket("/ws/uploads/{upload_id}")
async def progress_channel(websocket: WebSocket, upload_id: str):
    """
    Duplex channel pushing progress, completion and error events for one upload.
    """
    services = get_services()
    await websocket.accept()

    connection = WebSocketConnection(websocket)
    services.channel.register(upload_id, connection)
    try:
        while True:
            # Inbound messages are ignored; receiving detects the disconnect.
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"Progress channel for upload {upload_id} disconnected")
    finally:
        release_progress_connection(services, upload_id, connection)
