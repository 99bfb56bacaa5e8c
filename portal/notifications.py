"""Per-upload progress channel: maps upload ids to open push connections."""

import logging
from typing import Any, Dict, Optional, Protocol

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


class PushConnection(Protocol):
    """Duplex connection that can push JSON messages to one client."""

    @property
    def is_open(self) -> bool:
        ...

    async def send_json(self, message: Dict[str, Any]) -> None:
        ...


class WebSocketConnection:
    """Adapts a FastAPI WebSocket to PushConnection."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_json(self, message: Dict[str, Any]) -> None:
        await self.websocket.send_json(message)


class ProgressChannelRegistry:
    """
    Registry of upload id -> push connection.

    Delivery is at-most-once: events for an unknown or closed connection are
    dropped, nothing is buffered and nothing is redelivered. Terminal events
    (complete, error) remove the mapping after sending.

    The registry is process-local; uploads and their sockets must be served
    by the same process unless a shared implementation is injected in its place.
    """

    def __init__(self):
        self._connections: Dict[str, PushConnection] = {}

    def register(self, upload_id: str, connection: PushConnection) -> None:
        if upload_id in self._connections:
            logger.info(f"Replacing progress connection for upload {upload_id}")
        self._connections[upload_id] = connection
        logger.debug(f"Registered progress connection for upload {upload_id}")

    def unregister(self, upload_id: str, connection: Optional[PushConnection] = None) -> bool:
        """
        Remove the mapping for an upload.

        Args:
            upload_id: Upload identifier
            connection: When given, only remove the mapping if it still points
                at this connection (a newer registration is left alone)

        Returns:
            True if a mapping was removed
        """
        current = self._connections.get(upload_id)
        if current is None:
            return False
        if connection is not None and current is not connection:
            return False
        del self._connections[upload_id]
        logger.debug(f"Unregistered progress connection for upload {upload_id}")
        return True

    def is_connected(self, upload_id: str) -> bool:
        connection = self._connections.get(upload_id)
        return connection is not None and connection.is_open

    async def send_progress(self, upload_id: str, percent: int) -> bool:
        return await self._send(upload_id, {"type": "progress", "uploadId": upload_id, "progress": percent})

    async def send_complete(self, upload_id: str, payload: Dict[str, Any]) -> bool:
        delivered = await self._send(upload_id, {"type": "complete", "uploadId": upload_id, "data": payload})
        self.unregister(upload_id)
        return delivered

    async def send_error(self, upload_id: str, message: str) -> bool:
        delivered = await self._send(upload_id, {"type": "error", "uploadId": upload_id, "error": message})
        self.unregister(upload_id)
        return delivered

    async def _send(self, upload_id: str, message: Dict[str, Any]) -> bool:
        connection = self._connections.get(upload_id)
        if connection is None or not connection.is_open:
            logger.debug(f"Dropping {message['type']} event for upload {upload_id}: no open connection")
            return False

        try:
            await connection.send_json(message)
        except Exception as e:
            logger.warning(f"Failed to push {message['type']} event for upload {upload_id}: {e}")
            self.unregister(upload_id, connection)
            return False
        return True

    def __len__(self) -> int:
        return len(self._connections)
