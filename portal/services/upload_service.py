"""Upload orchestration: token, transfer, persistence, URLs and notifications."""

import asyncio
import logging
import re
import time
import uuid
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Set

from common.constants import ALLOWED_FILE_TYPES
from common.types import FileUpload, RemoteObjectDescriptor, UploadSession, UploadState
from portal.cache.url_cache import DownloadUrlCache
from portal.clients.graph_client import GraphStoreClient
from portal.exceptions import InvalidUploadError, PortalException, UploadConflictError
from portal.notifications import ProgressChannelRegistry
from portal.repositories.file_repository import FileRecord, FileRecordRepository
from portal.temp_storage import TempUploadStore
from portal.token_cache import TokenCache
from portal.upload_engine import ChunkedUploadEngine

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Failed to upload file"

_WHITESPACE = re.compile(r"\s+")


def remote_file_name(original_name: str, timestamp_ms: int) -> str:
    """Unique remote name for a main file: ``m{timestamp}_{name}`` with whitespace runs as underscores."""
    return f"m{timestamp_ms}_{_WHITESPACE.sub('_', original_name)}"


def remote_thumbnail_name(thumbnail: FileUpload, timestamp_ms: int) -> str:
    return f"t{timestamp_ms}_thumbnail.{thumbnail.extension or 'bin'}"


class UploadOrchestrator:
    """
    Drives one upload from the request boundary to its terminal notification.

    Results are never returned to the HTTP request that submitted the upload;
    they reach the client as ``complete`` or ``error`` events on the progress
    channel. Persisting the file record does not depend on that channel
    being connected.
    """

    def __init__(
        self,
        token_cache: TokenCache,
        store: GraphStoreClient,
        engine: ChunkedUploadEngine,
        url_cache: DownloadUrlCache,
        channel: ProgressChannelRegistry,
        repository=FileRecordRepository,
        clock: Callable[[], float] = time.time,
        cancel_on_disconnect: bool = False,
    ):
        self.token_cache = token_cache
        self.store = store
        self.engine = engine
        self.url_cache = url_cache
        self.channel = channel
        self.repository = repository
        self.cancel_on_disconnect = cancel_on_disconnect
        self._clock = clock
        self._sessions: Dict[str, UploadSession] = {}
        self._cancel_events: Dict[str, asyncio.Event] = {}
        self._tasks: Set[asyncio.Task] = set()

    def get_session(self, upload_id: str) -> Optional[UploadSession]:
        return self._sessions.get(upload_id)

    def submit(self, upload_id: str, main_file: FileUpload, **kwargs: Any) -> asyncio.Task:
        """
        Schedule the upload as a background task and return immediately.

        The session is opened before returning, so a second submit with the
        same id is rejected even if the first task has not started yet.

        Raises:
            UploadConflictError: If an upload with this id is still running
        """
        session = self._open_session(upload_id, main_file)
        task = asyncio.create_task(self._process(session, main_file, **kwargs))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_for_uploads(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel(self, upload_id: str) -> bool:
        """
        Signal an in-flight upload to stop before its next chunk.

        Only effective when the orchestrator was built with cancel_on_disconnect.

        Returns:
            True if a running upload was signalled
        """
        event = self._cancel_events.get(upload_id)
        if event is None:
            return False
        event.set()
        logger.info(f"Cancellation requested for upload {upload_id}")
        return True

    async def process_upload(
        self,
        upload_id: str,
        main_file: FileUpload,
        thumbnail: Optional[FileUpload] = None,
        owner_id: str = "",
        file_types: Optional[List[str]] = None,
        categories: Optional[List[str]] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        """
        Upload a file (and thumbnail), persist its record and notify the client.

        Args:
            upload_id: Identifier the client registered its progress socket under
            main_file: File to store
            thumbnail: Optional preview image, uploaded without progress events
            owner_id: Uploading user
            file_types: File type labels for the record
            categories: Category ids for the record
            name: Display name; defaults to the original file name
            description: Free-text description

        Raises:
            UploadConflictError: If an upload with this id is still running
        """
        session = self._open_session(upload_id, main_file)
        await self._process(
            session,
            main_file,
            thumbnail=thumbnail,
            owner_id=owner_id,
            file_types=file_types,
            categories=categories,
            name=name,
            description=description,
        )

    def _open_session(self, upload_id: str, main_file: FileUpload) -> UploadSession:
        if upload_id in self._sessions:
            raise UploadConflictError(f"Upload {upload_id} is already in progress")

        session = UploadSession(
            upload_id=upload_id,
            total_bytes=main_file.size,
            chunk_size=self.engine.chunk_size,
        )
        self._sessions[upload_id] = session
        if self.cancel_on_disconnect:
            self._cancel_events[upload_id] = asyncio.Event()
        return session

    def _close_session(self, session: UploadSession) -> None:
        upload_id = session.upload_id
        if self._sessions.get(upload_id) is session:
            del self._sessions[upload_id]
            self._cancel_events.pop(upload_id, None)

    async def _process(
        self,
        session: UploadSession,
        main_file: FileUpload,
        thumbnail: Optional[FileUpload] = None,
        owner_id: str = "",
        file_types: Optional[List[str]] = None,
        categories: Optional[List[str]] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        upload_id = session.upload_id
        logger.info(f"Processing upload {upload_id}: {main_file.name} ({main_file.size} bytes) for user {owner_id}")

        payload = None
        failure = None
        try:
            payload = await self._run(
                session,
                main_file,
                thumbnail,
                owner_id,
                list(file_types or []),
                list(categories or []),
                name,
                description,
            )
        except PortalException as e:
            logger.error(f"Upload {upload_id} failed in state {session.state.value}: {e}")
            failure = str(e) or GENERIC_FAILURE_MESSAGE
        except Exception as e:
            logger.error(f"Upload {upload_id} failed in state {session.state.value}: {e}", exc_info=True)
            failure = GENERIC_FAILURE_MESSAGE
        finally:
            self._release_buffers(main_file, thumbnail)
            self._close_session(session)

        if failure is not None:
            session.state = UploadState.FAILED
            await self.channel.send_error(upload_id, failure)
            return

        session.state = UploadState.COMPLETED
        await self.channel.send_complete(upload_id, payload)
        logger.info(f"Upload {upload_id} completed")

    async def _run(
        self,
        session: UploadSession,
        main_file: FileUpload,
        thumbnail: Optional[FileUpload],
        owner_id: str,
        file_types: List[str],
        categories: List[str],
        name: Optional[str],
        description: Optional[str],
    ) -> Dict[str, Any]:
        upload_id = session.upload_id
        self._validate(main_file, file_types)

        credential = await self.token_cache.get_token()
        self._advance(session, UploadState.TOKEN_ACQUIRED)

        drive = await self.store.resolve_drive(credential.token)
        timestamp_ms = int(self._clock() * 1000)

        self._advance(session, UploadState.MAIN_FILE_UPLOADING)

        async def on_progress(percent: int) -> None:
            await self.channel.send_progress(upload_id, percent)

        main_item = await self.engine.upload(
            drive,
            replace(main_file, name=remote_file_name(main_file.name, timestamp_ms)),
            credential.token,
            on_progress=on_progress,
            session=session,
            cancel_event=self._cancel_events.get(upload_id),
        )

        thumbnail_item: Optional[RemoteObjectDescriptor] = None
        if thumbnail is not None:
            self._advance(session, UploadState.THUMBNAIL_UPLOADING)
            thumbnail_item = await self.engine.upload(
                drive,
                replace(thumbnail, name=remote_thumbnail_name(thumbnail, timestamp_ms)),
                credential.token,
            )

        self._advance(session, UploadState.METADATA_PERSISTING)
        record = self.repository.create_file(FileRecord(
            file_id=str(uuid.uuid4()),
            name=name or main_file.name,
            original_name=main_file.name,
            description=description or "",
            file_types=file_types,
            category_ids=categories,
            remote_object_id=main_item.id,
            remote_thumbnail_id=thumbnail_item.id if thumbnail_item else None,
            mime_type=main_file.mime_type,
            size=main_file.size,
            owner_id=owner_id,
        ))

        urls = await self.url_cache.get_urls(main_item.id, thumbnail_item.id if thumbnail_item else None)
        self._advance(session, UploadState.URLS_RESOLVED)

        return {
            "fileId": main_item.id,
            "fileName": main_item.name,
            "thumbnailId": thumbnail_item.id if thumbnail_item else None,
            "record": {
                **record.to_dict(),
                "publicDownloadUrl": urls.file_url,
                "publicThumbnailDownloadUrl": urls.thumbnail_url,
            },
        }

    @staticmethod
    def _validate(main_file: FileUpload, file_types: List[str]) -> None:
        if main_file.size == 0 or not main_file.data:
            raise InvalidUploadError(f"File {main_file.name} is empty")
        unknown = [t for t in file_types if t not in ALLOWED_FILE_TYPES]
        if unknown:
            raise InvalidUploadError(f"Unknown file types: {', '.join(unknown)}")

    @staticmethod
    def _advance(session: UploadSession, state: UploadState) -> None:
        logger.debug(f"Upload {session.upload_id}: {session.state.value} -> {state.value}")
        session.state = state

    @staticmethod
    def _release_buffers(main_file: FileUpload, thumbnail: Optional[FileUpload]) -> None:
        for upload in (main_file, thumbnail):
            TempUploadStore.release(upload)
