"""Single-shot and chunked uploads to the remote object store."""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Iterator, Optional, Tuple, Union

from common.constants import CHUNK_SIZE_BYTES, SIMPLE_UPLOAD_LIMIT_BYTES
from common.types import DriveLocation, FileUpload, RemoteObjectDescriptor, UploadSession, percent_of
from portal.clients.graph_client import GraphStoreClient
from portal.exceptions import InvalidUploadError, UploadCancelledError, UploadFailedError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], Union[None, Awaitable[None]]]


def plan_chunks(total_size: int, chunk_size: int = CHUNK_SIZE_BYTES) -> Iterator[Tuple[int, int]]:
    """
    Split a payload into contiguous byte ranges.

    Args:
        total_size: Payload size in bytes
        chunk_size: Maximum range length

    Yields:
        (start, end) tuples with an inclusive end offset, in increasing order
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    start = 0
    while start < total_size:
        end = min(start + chunk_size, total_size) - 1
        yield start, end
        start = end + 1


class ChunkedUploadEngine:
    """
    Uploads a file to the remote store, chunking payloads of 4 MiB and above.

    Chunk PUTs are strictly sequential: the upload session only accepts the
    next contiguous range after the previous one is acknowledged.
    """

    def __init__(
        self,
        store: GraphStoreClient,
        chunk_size: int = CHUNK_SIZE_BYTES,
        simple_upload_limit: int = SIMPLE_UPLOAD_LIMIT_BYTES,
        chunk_delay_seconds: float = 0.0,
    ):
        self.store = store
        self.chunk_size = chunk_size
        self.simple_upload_limit = simple_upload_limit
        self.chunk_delay_seconds = chunk_delay_seconds

    async def upload(
        self,
        drive: DriveLocation,
        file: FileUpload,
        token: str,
        on_progress: Optional[ProgressCallback] = None,
        session: Optional[UploadSession] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RemoteObjectDescriptor:
        """
        Upload a file and return the stored item.

        Args:
            drive: Target document library
            file: Payload and its metadata; ``file.name`` is the remote name
            token: Bearer token for the remote store
            on_progress: Called with a whole percentage after each acknowledged step
            session: Upload session to keep in step with acknowledged bytes
            cancel_event: Checked before every chunk; aborts the transfer when set

        Returns:
            Descriptor of the created remote item

        Raises:
            InvalidUploadError: If the payload is empty
            UploadFailedError: If the remote store rejects any request
            UploadCancelledError: If cancel_event is set mid-transfer
        """
        total = len(file.data)
        if total == 0:
            raise InvalidUploadError(f"File {file.name} is empty")

        if total < self.simple_upload_limit:
            return await self._simple_upload(drive, file, token, on_progress, session)
        return await self._chunked_upload(drive, file, token, on_progress, session, cancel_event)

    async def _simple_upload(self, drive, file, token, on_progress, session) -> RemoteObjectDescriptor:
        await self._report(on_progress, 0)

        body = await self.store.simple_upload(drive, file.name, file.data, file.mime_type, token)

        if session is not None:
            session.bytes_transferred = len(file.data)
        await self._report(on_progress, 100)

        logger.info(f"Uploaded {file.name} in a single request ({len(file.data)} bytes)")
        return RemoteObjectDescriptor.from_response(body)

    async def _chunked_upload(self, drive, file, token, on_progress, session, cancel_event) -> RemoteObjectDescriptor:
        upload_url = await self.store.create_upload_session(drive, file.name, token)

        total = len(file.data)
        ranges = list(plan_chunks(total, self.chunk_size))
        logger.info(f"Uploading {file.name} in {len(ranges)} chunks ({total} bytes)")

        body = None
        for index, (start, end) in enumerate(ranges):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"Upload of {file.name} cancelled before chunk {index + 1}/{len(ranges)}")
                raise UploadCancelledError(f"Upload of {file.name} was cancelled")

            if index > 0 and self.chunk_delay_seconds > 0:
                await asyncio.sleep(self.chunk_delay_seconds)

            body = await self.store.upload_chunk(upload_url, file.data[start:end + 1], start, total)

            transferred = end + 1
            if session is not None:
                session.bytes_transferred = transferred
            logger.debug(f"Chunk {index + 1}/{len(ranges)} acknowledged for {file.name} ({transferred}/{total} bytes)")

            await self._report(on_progress, percent_of(transferred, total))

        if body is None:
            raise UploadFailedError(f"Upload session for {file.name} finished without returning an item")

        return RemoteObjectDescriptor.from_response(body)

    @staticmethod
    async def _report(on_progress: Optional[ProgressCallback], percent: int) -> None:
        if on_progress is None:
            return
        try:
            result = on_progress(percent)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Progress callback failed at {percent}%: {e}")
