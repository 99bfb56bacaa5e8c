"""Entry point for the Resource Portal upload service."""

import time
import uuid

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from common.logging_config import setup_logging
from portal.config import PORTAL_HOST, PORTAL_PORT
from portal.database import init_database
from portal.exceptions import (
    PortalException,
    AuthAcquisitionError,
    CacheFetchError,
    FileNotFoundError,
    InvalidUploadError,
    RemoteStoreError,
    UnauthorizedAccessError,
    UploadConflictError,
    UploadFailedError
)
from portal.routes import file_router, progress_router, upload_router
from portal.service_locator import get_services, set_services

logger = setup_logging('portal')

app = FastAPI(
    title="Resource Portal",
    description="File upload pipeline backed by a SharePoint document library",
    version="1.0.0"
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Middleware to log all HTTP requests and responses.
    """
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()

    user_id = request.headers.get("x-user-id")

    logger.info(
        f"Request started: {request.method} {request.url.path} [request_id={request_id}] [user_id={user_id or 'anonymous'}]"
    )

    response = await call_next(request)

    duration = time.time() - start_time

    logger.info(
        f"Request completed: {request.method} {request.url.path} "
        f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
    )

    response.headers["X-Request-ID"] = request_id

    return response


@app.on_event("startup")
async def startup_event():
    """
    Initialize database, temp storage and pipeline services on application startup.
    """
    logger.info("Portal service starting up...")

    init_database()
    logger.info("Database initialized")

    services = get_services()
    services.temp_store.init()
    logger.info(f"Upload pipeline ready [temp_dir={services.temp_store.root}]")


@app.on_event("shutdown")
async def shutdown_event():
    """
    Drain background work and close remote clients on application shutdown.
    """
    logger.info("Portal service shutting down...")

    services = get_services()
    await services.close()
    set_services(None)
    logger.info("Pipeline services closed")


@app.exception_handler(InvalidUploadError)
async def invalid_upload_handler(request: Request, exc: InvalidUploadError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Invalid upload error: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc), "code": "INVALID_UPLOAD"}
    )


@app.exception_handler(FileNotFoundError)
async def file_not_found_handler(request: Request, exc: FileNotFoundError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"File not found error: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc), "code": "FILE_NOT_FOUND"}
    )


@app.exception_handler(UnauthorizedAccessError)
async def unauthorized_access_handler(request: Request, exc: UnauthorizedAccessError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    user_id = request.headers.get("x-user-id", "unknown")
    logger.warning(
        f"Unauthorized access error: {exc} [request_id={request_id}] [user_id={user_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"detail": str(exc), "code": "UNAUTHORIZED_ACCESS"}
    )


@app.exception_handler(AuthAcquisitionError)
async def auth_acquisition_handler(request: Request, exc: AuthAcquisitionError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Token acquisition error: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc), "code": "AUTH_UNAVAILABLE"}
    )


@app.exception_handler(UploadConflictError)
async def upload_conflict_handler(request: Request, exc: UploadConflictError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Upload conflict error: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": str(exc), "code": "UPLOAD_IN_PROGRESS"}
    )


@app.exception_handler(UploadFailedError)
async def upload_failed_handler(request: Request, exc: UploadFailedError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Upload failed error: {exc} [request_id={request_id}] [status_code={exc.status_code}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": str(exc), "code": "UPLOAD_FAILED"}
    )


@app.exception_handler(RemoteStoreError)
async def remote_store_handler(request: Request, exc: RemoteStoreError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Remote store error: {exc} [request_id={request_id}] [status_code={exc.status_code}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": str(exc), "code": "REMOTE_STORE_ERROR"}
    )


@app.exception_handler(CacheFetchError)
async def cache_fetch_handler(request: Request, exc: CacheFetchError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Cache fetch error: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc), "code": "CACHE_UNAVAILABLE"}
    )


@app.exception_handler(PortalException)
async def portal_exception_handler(request: Request, exc: PortalException):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Portal exception: {exc} [request_id={request_id}] path={request.url.path}",
        exc_info=True
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc), "code": "INTERNAL_ERROR"}
    )


app.include_router(upload_router)
app.include_router(file_router)
app.include_router(progress_router)


@app.get("/")
async def root():
    """
    Root endpoint for health check.
    """
    return {"message": "Resource Portal API", "status": "running"}


@app.get("/health")
async def health_check():
    """
    Health check endpoint for Docker healthcheck.
    Returns 200 if service is alive.
    """
    return {"status": "healthy", "service": "portal"}


@app.get("/ready")
async def ready_check():
    """
    Readiness check endpoint.
    Verifies database and URL cache connectivity.
    """
    from portal.database import get_db_connection

    try:
        with get_db_connection() as conn:
            conn.execute("SELECT 1")
        db_status = "ok"
    except Exception as e:
        db_status = f"error: {str(e)}"

    try:
        await get_services().cache.get("portal:ready")
        cache_status = "ok"
    except Exception as e:
        cache_status = f"error: {str(e)}"

    ready = db_status == "ok" and cache_status == "ok"
    status_code = status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE

    return JSONResponse(
        status_code=status_code,
        content={
            "ready": ready,
            "database": db_status,
            "cache": cache_status,
            "activeChannels": len(get_services().channel)
        }
    )


def main() -> None:
    """
    Start the FastAPI server with uvicorn.
    """
    uvicorn.run(
        "portal.main:app",
        host=PORTAL_HOST,
        port=PORTAL_PORT
    )


if __name__ == "__main__":
    main()
