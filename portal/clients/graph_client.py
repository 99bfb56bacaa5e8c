"""HTTPS client for the SharePoint document library behind Microsoft Graph."""

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from common.constants import DOCUMENT_DRIVE_NAMES, REMOTE_TIMEOUT_SECONDS
from common.types import DriveLocation
from portal.exceptions import RemoteStoreError, UploadFailedError

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = (200, 201, 202)


class GraphStoreClient:
    """
    Thin wrapper around the Graph drive endpoints used by the upload pipeline.

    Every call takes the bearer token explicitly; chunk PUTs go to the
    pre-authenticated upload session URL and carry no token.
    """

    def __init__(
        self,
        base_url: str,
        site_host: str,
        site_path: str,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._site_host = site_host
        self._site_path = site_path.strip("/")
        self._http = http_client or httpx.AsyncClient(timeout=REMOTE_TIMEOUT_SECONDS)
        self._drive: Optional[DriveLocation] = None

    async def close(self) -> None:
        await self._http.aclose()

    async def resolve_drive(self, token: str) -> DriveLocation:
        """
        Resolve the site and its document library.

        The location never changes for a deployment, so it is memoised after
        the first successful lookup.

        Args:
            token: Bearer token

        Returns:
            Site and drive identifiers

        Raises:
            RemoteStoreError: If the site or the document library cannot be found
        """
        if self._drive is not None:
            return self._drive

        site = await self._get_json(
            f"{self._base_url}/sites/{self._site_host}:/{self._site_path}",
            token,
            "Failed to get site information",
        )
        drives = await self._get_json(
            f"{self._base_url}/sites/{site['id']}/drives",
            token,
            "Failed to get drives",
        )

        document_drive = next(
            (d for d in drives.get("value", []) if d.get("name") in DOCUMENT_DRIVE_NAMES),
            None,
        )
        if document_drive is None:
            raise RemoteStoreError("Documents library not found")

        self._drive = DriveLocation(site_id=site["id"], drive_id=document_drive["id"])
        logger.info(f"Resolved document library [site_id={self._drive.site_id}] [drive_id={self._drive.drive_id}]")
        return self._drive

    async def simple_upload(
        self,
        drive: DriveLocation,
        name: str,
        data: bytes,
        mime_type: str,
        token: str,
    ) -> Dict[str, Any]:
        """Upload a whole payload with a single PUT."""
        url = f"{self._item_path(drive, name)}:/content"
        response = await self._send(
            "PUT",
            url,
            UploadFailedError,
            headers={"Authorization": f"Bearer {token}", "Content-Type": mime_type},
            content=data,
        )
        _raise_for_status(response, UploadFailedError, "Failed to upload file")
        return response.json()

    async def create_upload_session(self, drive: DriveLocation, name: str, token: str) -> str:
        """
        Open a resumable upload session for a large file.

        Returns:
            Pre-authenticated upload URL that accepts ranged PUTs
        """
        url = f"{self._item_path(drive, name)}:/createUploadSession"
        response = await self._send(
            "POST",
            url,
            UploadFailedError,
            headers={"Authorization": f"Bearer {token}"},
            json={"item": {"@microsoft.graph.conflictBehavior": "rename"}},
        )
        _raise_for_status(response, UploadFailedError, "Failed to create upload session")
        return response.json()["uploadUrl"]

    async def upload_chunk(
        self,
        upload_url: str,
        chunk: bytes,
        start: int,
        total: int,
    ) -> Optional[Dict[str, Any]]:
        """
        PUT one contiguous byte range to an upload session.

        Args:
            upload_url: Session URL from create_upload_session
            chunk: Bytes of this range
            start: Offset of the first byte of the range
            total: Total size of the file

        Returns:
            The created item for the final range, None while more ranges are expected
        """
        end = start + len(chunk) - 1
        response = await self._send(
            "PUT",
            upload_url,
            UploadFailedError,
            headers={
                "Content-Length": str(len(chunk)),
                "Content-Range": f"bytes {start}-{end}/{total}",
            },
            content=chunk,
        )
        _raise_for_status(response, UploadFailedError, "Failed to upload file chunk")

        if response.status_code in (200, 201):
            return response.json()
        return None

    async def get_download_url(self, drive: DriveLocation, item_id: str, token: str) -> str:
        """Mint a short-lived, pre-authenticated download URL for an item."""
        body = await self._get_json(
            f"{self._base_url}/sites/{drive.site_id}/drives/{drive.drive_id}/items/{item_id}",
            token,
            "Failed to get download URL",
        )
        download_url = body.get("@microsoft.graph.downloadUrl")
        if not download_url:
            raise RemoteStoreError(f"Item {item_id} has no download URL")
        return download_url

    def _item_path(self, drive: DriveLocation, name: str) -> str:
        return f"{self._base_url}/sites/{drive.site_id}/drives/{drive.drive_id}/root:/{quote(name)}"

    async def _get_json(self, url: str, token: str, failure_message: str) -> Dict[str, Any]:
        response = await self._send(
            "GET",
            url,
            RemoteStoreError,
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
        )
        _raise_for_status(response, RemoteStoreError, failure_message)
        return response.json()

    async def _send(self, method: str, url: str, error_cls, **kwargs) -> httpx.Response:
        try:
            return await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Remote store request failed: {method} {url}: {e}")
            raise error_cls(f"Remote store unreachable: {e}") from e


def _raise_for_status(response: httpx.Response, error_cls, failure_message: str) -> None:
    if response.status_code in SUCCESS_STATUSES:
        return

    payload = _decode_error(response)
    message = _error_message(payload) or failure_message
    logger.error(f"{failure_message}: status={response.status_code} message={message}")
    raise error_cls(message, status_code=response.status_code, payload=payload)


def _decode_error(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _error_message(payload: Any) -> Optional[str]:
    """Extract the human-readable message from a Graph error body."""
    if not isinstance(payload, dict):
        return payload or None
    error = payload.get("error")
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return payload.get("message")
