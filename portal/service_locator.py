"""Service locator for the upload pipeline components."""

from dataclasses import dataclass
from typing import Optional

from portal import config
from portal.cache.backends import KeyValueCache, create_cache
from portal.cache.url_cache import DownloadUrlCache
from portal.clients.graph_client import GraphStoreClient
from portal.clients.identity_client import IdentityProviderClient
from portal.notifications import ProgressChannelRegistry
from portal.services.file_service import FileService
from portal.services.upload_service import UploadOrchestrator
from portal.temp_storage import TempUploadStore
from portal.token_cache import TokenCache
from portal.upload_engine import ChunkedUploadEngine


@dataclass
class PortalServices:
    """Process-wide instances shared by routes and background uploads."""
    identity_client: IdentityProviderClient
    store: GraphStoreClient
    cache: KeyValueCache
    token_cache: TokenCache
    engine: ChunkedUploadEngine
    url_cache: DownloadUrlCache
    channel: ProgressChannelRegistry
    temp_store: TempUploadStore
    orchestrator: UploadOrchestrator
    file_service: FileService

    async def close(self) -> None:
        await self.orchestrator.wait_for_uploads()
        await self.url_cache.wait_for_refreshes()
        await self.identity_client.close()
        await self.store.close()
        await self.cache.close()


_services: Optional[PortalServices] = None


def build_services() -> PortalServices:
    """Build every component from environment configuration."""
    identity_client = IdentityProviderClient(
        tenant_id=config.AZURE_TENANT_ID,
        client_id=config.AZURE_CLIENT_ID,
        client_secret=config.AZURE_CLIENT_SECRET,
        authority=config.AZURE_AUTHORITY,
    )
    store = GraphStoreClient(
        base_url=config.GRAPH_BASE_URL,
        site_host=config.SHAREPOINT_SITE_HOST,
        site_path=config.SHAREPOINT_SITE_PATH,
    )
    cache = create_cache(config.CACHE_BACKEND, config.REDIS_URL)
    token_cache = TokenCache(identity_client)
    engine = ChunkedUploadEngine(store, chunk_delay_seconds=config.CHUNK_UPLOAD_DELAY_SECONDS)
    url_cache = DownloadUrlCache(cache, store, token_cache, ttl_seconds=config.URL_CACHE_TTL)
    channel = ProgressChannelRegistry()

    return PortalServices(
        identity_client=identity_client,
        store=store,
        cache=cache,
        token_cache=token_cache,
        engine=engine,
        url_cache=url_cache,
        channel=channel,
        temp_store=TempUploadStore(config.UPLOAD_TEMP_DIR),
        orchestrator=UploadOrchestrator(
            token_cache,
            store,
            engine,
            url_cache,
            channel,
            cancel_on_disconnect=config.CANCEL_ON_DISCONNECT,
        ),
        file_service=FileService(token_cache, store, engine, url_cache),
    )


def set_services(services: Optional[PortalServices]):
    """Set global service instances"""
    global _services
    _services = services


def get_services() -> PortalServices:
    """Get global service instances, building them on first use"""
    global _services
    if _services is None:
        _services = build_services()
    return _services
