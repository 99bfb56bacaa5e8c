"""
Signed download URL cache with lazy and background refresh.

Minting a download URL costs a token lookup, the site/drive resolution and
one item request per object, and URLs are needed for every file listing.
Entries are served straight from the cache until 80% of their lifetime has
passed; after that the still-valid URLs are returned while a single
background task mints new ones.
"""

import asyncio
import json
import logging
import time
from typing import Callable, Optional, Set

from common.constants import URL_CACHE_KEY_TEMPLATE, URL_CACHE_TTL_SECONDS, URL_REFRESH_THRESHOLD
from common.types import FileUrls, SignedUrlEntry
from portal.cache.backends import KeyValueCache
from portal.clients.graph_client import GraphStoreClient
from portal.exceptions import CacheFetchError, PortalException
from portal.token_cache import TokenCache

logger = logging.getLogger(__name__)


class DownloadUrlCache:
    """
    Caches signed URLs per remote object id in a shared key-value cache.

    The ``is_refreshing`` flag on an entry is advisory: two processes can both
    see it unset and refresh concurrently, in which case the later write wins
    with an equally fresh window.
    """

    def __init__(
        self,
        cache: KeyValueCache,
        store: GraphStoreClient,
        token_cache: TokenCache,
        ttl_seconds: int = URL_CACHE_TTL_SECONDS,
        refresh_threshold: float = URL_REFRESH_THRESHOLD,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.store = store
        self.token_cache = token_cache
        self.ttl_seconds = ttl_seconds
        self.refresh_threshold = refresh_threshold
        self._clock = clock
        self._refresh_tasks: Set[asyncio.Task] = set()

    async def get_urls(self, object_id: str, thumbnail_id: Optional[str] = None) -> FileUrls:
        """
        Return signed URLs for an object and its optional thumbnail.

        Args:
            object_id: Remote id of the main file
            thumbnail_id: Remote id of the thumbnail, if any

        Returns:
            FileUrls; thumbnail_url is None when no thumbnail was requested

        Raises:
            PortalException: If fresh URLs cannot be minted and nothing is cached
        """
        now = self._clock()
        entry = await self._read(object_id)

        if entry is not None and not entry.is_expired(now):
            if entry.is_fresh(now, self.refresh_threshold):
                return _to_urls(entry)

            if not entry.is_refreshing:
                await self._mark_refreshing(entry, now)
                self._schedule_refresh(object_id, thumbnail_id)
            return _to_urls(entry)

        try:
            return _to_urls(await self._fetch_and_store(object_id, thumbnail_id))
        except PortalException as e:
            fallback = entry or await self._read(object_id)
            if fallback is not None:
                logger.warning(f"Serving cached URLs for {object_id} after fetch failure: {e}")
                return _to_urls(fallback)
            raise

    async def invalidate(self, object_id: str) -> None:
        """Drop the cached URLs of an object whose content or thumbnail changed."""
        await self.cache.delete(self._key(object_id))
        logger.info(f"Invalidated cached URLs for {object_id}")

    async def wait_for_refreshes(self) -> None:
        """Wait until every scheduled background refresh has finished."""
        while self._refresh_tasks:
            await asyncio.gather(*list(self._refresh_tasks), return_exceptions=True)

    @property
    def pending_refreshes(self) -> int:
        return len(self._refresh_tasks)

    async def _fetch_and_store(self, object_id: str, thumbnail_id: Optional[str]) -> SignedUrlEntry:
        entry = await self._fetch(object_id, thumbnail_id)
        await self._write(entry, self.ttl_seconds)
        return entry

    async def _fetch(self, object_id: str, thumbnail_id: Optional[str]) -> SignedUrlEntry:
        credential = await self.token_cache.get_token()
        drive = await self.store.resolve_drive(credential.token)

        if thumbnail_id:
            file_url, thumbnail_url = await asyncio.gather(
                self.store.get_download_url(drive, object_id, credential.token),
                self.store.get_download_url(drive, thumbnail_id, credential.token),
            )
        else:
            file_url = await self.store.get_download_url(drive, object_id, credential.token)
            thumbnail_url = None

        generated_at = self._clock()
        return SignedUrlEntry(
            object_id=object_id,
            file_url=file_url,
            thumbnail_url=thumbnail_url,
            generated_at=generated_at,
            expires_at=generated_at + self.ttl_seconds,
        )

    def _schedule_refresh(self, object_id: str, thumbnail_id: Optional[str]) -> None:
        task = asyncio.create_task(self._refresh(object_id, thumbnail_id))
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _refresh(self, object_id: str, thumbnail_id: Optional[str]) -> None:
        try:
            entry = await self._fetch(object_id, thumbnail_id)
            # An entry that was invalidated meanwhile may describe a replaced thumbnail.
            current = await self._read(object_id)
            if current is None or not current.is_refreshing:
                logger.info(f"Discarding background refresh for {object_id}: entry was invalidated")
                return
            await self._write(entry, self.ttl_seconds)
            logger.info(f"Refreshed signed URLs for {object_id} in background")
        except Exception as e:
            logger.error(f"Background URL refresh failed for {object_id}: {e}")
            await self._clear_refreshing(object_id)

    async def _mark_refreshing(self, entry: SignedUrlEntry, now: float) -> None:
        entry.is_refreshing = True
        await self._write(entry, entry.expires_at - now)

    async def _clear_refreshing(self, object_id: str) -> None:
        entry = await self._read(object_id)
        if entry is None or not entry.is_refreshing:
            return
        now = self._clock()
        if entry.is_expired(now):
            return
        entry.is_refreshing = False
        await self._write(entry, entry.expires_at - now)

    async def _read(self, object_id: str) -> Optional[SignedUrlEntry]:
        try:
            raw = await self.cache.get(self._key(object_id))
        except CacheFetchError as e:
            logger.warning(f"URL cache read failed for {object_id}, treating as miss: {e}")
            return None
        if raw is None:
            return None
        return SignedUrlEntry.from_dict(json.loads(raw))

    async def _write(self, entry: SignedUrlEntry, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            return
        try:
            await self.cache.set(self._key(entry.object_id), json.dumps(entry.to_dict()), ttl_seconds)
        except CacheFetchError as e:
            logger.warning(f"URL cache write failed for {entry.object_id}: {e}")

    @staticmethod
    def _key(object_id: str) -> str:
        return URL_CACHE_KEY_TEMPLATE.format(object_id=object_id)


def _to_urls(entry: SignedUrlEntry) -> FileUrls:
    return FileUrls(file_url=entry.file_url, thumbnail_url=entry.thumbnail_url)
