"""File record service: signed URL lookups and thumbnail replacement."""

import logging
import time
from dataclasses import replace
from typing import Any, Callable, Dict

from common.types import FileUpload
from portal.cache.url_cache import DownloadUrlCache
from portal.clients.graph_client import GraphStoreClient
from portal.exceptions import FileNotFoundError, UnauthorizedAccessError
from portal.repositories.file_repository import FileRecord, FileRecordRepository
from portal.services.upload_service import remote_thumbnail_name
from portal.temp_storage import TempUploadStore
from portal.token_cache import TokenCache
from portal.upload_engine import ChunkedUploadEngine

logger = logging.getLogger(__name__)


class FileService:
    def __init__(
        self,
        token_cache: TokenCache,
        store: GraphStoreClient,
        engine: ChunkedUploadEngine,
        url_cache: DownloadUrlCache,
        repository=FileRecordRepository,
        clock: Callable[[], float] = time.time,
    ):
        self.token_cache = token_cache
        self.store = store
        self.engine = engine
        self.url_cache = url_cache
        self.repository = repository
        self._clock = clock

    def _get_record(self, file_id: str) -> FileRecord:
        record = self.repository.get_by_id(file_id)
        if record is None:
            raise FileNotFoundError(f"File {file_id} not found")
        return record

    async def with_urls(self, record: FileRecord) -> Dict[str, Any]:
        urls = await self.url_cache.get_urls(record.remote_object_id, record.remote_thumbnail_id)
        return {
            **record.to_dict(),
            "publicDownloadUrl": urls.file_url,
            "publicThumbnailDownloadUrl": urls.thumbnail_url,
        }

    async def get_file_with_urls(self, file_id: str, user_id: str) -> Dict[str, Any]:
        """
        Return a file record with signed download URLs.

        Args:
            file_id: Record id
            user_id: Requesting user; must own the file or have it shared

        Raises:
            FileNotFoundError: If the record does not exist
            UnauthorizedAccessError: If the user may not read the file
        """
        record = self._get_record(file_id)
        if not record.can_be_read_by(user_id):
            raise UnauthorizedAccessError(f"User {user_id} does not have access to file {file_id}")
        return await self.with_urls(record)

    async def replace_thumbnail(self, file_id: str, user_id: str, thumbnail: FileUpload) -> Dict[str, Any]:
        """
        Upload a new thumbnail for a file and drop its cached URLs.

        The temporary buffer of the thumbnail is released whatever the outcome.

        Args:
            file_id: Record id
            user_id: Requesting user; must own the file
            thumbnail: New preview image

        Returns:
            Updated record with fresh signed URLs
        """
        try:
            record = self._get_record(file_id)
            if record.owner_id != user_id:
                raise UnauthorizedAccessError(f"User {user_id} does not own file {file_id}")

            credential = await self.token_cache.get_token()
            drive = await self.store.resolve_drive(credential.token)
            timestamp_ms = int(self._clock() * 1000)

            item = await self.engine.upload(
                drive,
                replace(thumbnail, name=remote_thumbnail_name(thumbnail, timestamp_ms)),
                credential.token,
            )
        finally:
            TempUploadStore.release(thumbnail)

        updated = self.repository.update(file_id, remote_thumbnail_id=item.id)
        await self.url_cache.invalidate(record.remote_object_id)
        logger.info(f"Replaced thumbnail of file {file_id} [remote_thumbnail_id={item.id}]")

        return await self.with_urls(updated)
