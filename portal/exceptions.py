"""Custom exception classes for the portal upload pipeline."""

from typing import Any, Optional


class PortalException(Exception):
    """
    Base exception class for all portal errors.
    """
    pass


class AuthAcquisitionError(PortalException):
    """
    Raised when the identity provider is unreachable or rejects the client credentials.
    """
    pass


class UploadFailedError(PortalException):
    """
    Raised when the remote store rejects an upload request.

    Attributes:
        status_code: HTTP status returned by the remote store, if any
        payload: Decoded error body returned by the remote store
    """

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class UploadCancelledError(PortalException):
    """
    Raised when an upload is aborted through its cancellation event.
    """
    pass


class RemoteStoreError(PortalException):
    """
    Raised when a remote store metadata call (site, drive or item lookup) fails.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class CacheFetchError(PortalException):
    """
    Raised when the key-value cache backing the download URL cache is unreachable.
    """
    pass


class InvalidUploadError(PortalException):
    """
    Raised when an upload request is rejected before any transfer starts.
    """
    pass


class FileNotFoundError(PortalException):
    """
    Raised when a requested file record does not exist.
    """
    pass


class UnauthorizedAccessError(PortalException):
    """
    Raised when a user accesses a file they neither own nor have been shared.
    """
    pass


class UploadConflictError(PortalException):
    """
    Raised when an upload id is submitted while an upload under that id is still running.
    """
    pass
