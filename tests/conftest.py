"""Shared pytest fixtures for all tests."""

import tempfile
from pathlib import Path
from typing import Generator

import httpx
import pytest

from common.types import FileUpload
from portal.cache.backends import MemoryCache
from portal.cache.url_cache import DownloadUrlCache
from portal.clients.graph_client import GraphStoreClient
from portal.clients.identity_client import IdentityProviderClient
from portal.database import init_database
from portal.notifications import ProgressChannelRegistry
from portal.services.file_service import FileService
from portal.services.upload_service import UploadOrchestrator
from portal.token_cache import TokenCache
from portal.upload_engine import ChunkedUploadEngine

GRAPH_BASE_URL = "https://graph.test/v1.0"
AUTHORITY = "https://login.test"
SITE_HOST = "contoso.sharepoint.com"
SITE_PATH = "sites/ResourcePortal"
UPLOAD_HOST = "upload.test"


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGraph:
    """
    In-memory stand-in for the identity platform and the Graph drive endpoints.

    Every request is recorded; failures are switched on per endpoint.
    """

    def __init__(self):
        self.requests = []
        self.token_requests = 0
        self.chunk_puts = []
        self.simple_puts = []
        self.download_calls = 0
        self.item_counter = 0
        self.session_counter = 0
        self.token_expires_in = 3600
        self.fail_token = False
        self.fail_chunk_number = None
        self.fail_simple_upload = False
        self.fail_download = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == "login.test":
            return self._token(request)
        if request.url.host == UPLOAD_HOST:
            return self._chunk(request)

        if request.method == "GET" and path.endswith(f"{SITE_HOST}:/{SITE_PATH}"):
            return httpx.Response(200, json={"id": "site-1"})
        if request.method == "GET" and path.endswith("/sites/site-1/drives"):
            return httpx.Response(200, json={"value": [
                {"id": "drive-style", "name": "Style Library"},
                {"id": "drive-1", "name": "Documents"},
            ]})
        if request.method == "PUT" and path.endswith(":/content"):
            return self._simple_upload(request)
        if request.method == "POST" and path.endswith(":/createUploadSession"):
            self.session_counter += 1
            return httpx.Response(200, json={
                "uploadUrl": f"https://{UPLOAD_HOST}/sessions/{self.session_counter}"
            })
        if request.method == "GET" and "/items/" in path:
            return self._download_url(path.rsplit("/", 1)[-1])

        return httpx.Response(404, json={"error": {"code": "itemNotFound", "message": "Not found"}})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def _token(self, request: httpx.Request) -> httpx.Response:
        if self.fail_token:
            return httpx.Response(401, json={
                "error": "invalid_client",
                "error_description": "AADSTS7000215: Invalid client secret provided."
            })
        self.token_requests += 1
        return httpx.Response(200, json={
            "token_type": "Bearer",
            "access_token": f"token-{self.token_requests}",
            "expires_in": self.token_expires_in,
        })

    def _simple_upload(self, request: httpx.Request) -> httpx.Response:
        name = request.url.path.split("root:/", 1)[1][:-len(":/content")]
        self.simple_puts.append(name)
        if self.fail_simple_upload:
            return httpx.Response(507, json={"error": {"code": "quotaLimitReached", "message": "Insufficient Storage"}})
        return httpx.Response(201, json=self._new_item(name, len(request.content)))

    def _chunk(self, request: httpx.Request) -> httpx.Response:
        content_range = request.headers["Content-Range"]
        self.chunk_puts.append({
            "range": content_range,
            "length": int(request.headers["Content-Length"]),
            "body_length": len(request.content),
        })
        if self.fail_chunk_number == len(self.chunk_puts):
            return httpx.Response(500, json={"error": {"code": "generalException", "message": "Chunk rejected by server"}})

        span, total = content_range[len("bytes "):].split("/")
        end = int(span.split("-")[1])
        if end + 1 < int(total):
            return httpx.Response(202, json={"nextExpectedRanges": [f"{end + 1}-"]})
        return httpx.Response(201, json=self._new_item("uploaded", int(total)))

    def _download_url(self, item_id: str) -> httpx.Response:
        if self.fail_download:
            return httpx.Response(503, json={"error": {"code": "serviceNotAvailable", "message": "Service unavailable"}})
        self.download_calls += 1
        return httpx.Response(200, json={
            "id": item_id,
            "@microsoft.graph.downloadUrl": f"https://download.test/{item_id}?tempauth=v{self.download_calls}",
        })

    def _new_item(self, name: str, size: int) -> dict:
        self.item_counter += 1
        return {"id": f"item-{self.item_counter}", "name": name, "size": size}


class FakePushConnection:
    """Push connection recording every message it is asked to send."""

    def __init__(self, is_open: bool = True, fail: bool = False):
        self.is_open = is_open
        self.fail = fail
        self.messages = []

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.messages.append(message)

    def of_type(self, message_type: str):
        return [m for m in self.messages if m["type"] == message_type]


@pytest.fixture
def test_db(monkeypatch) -> Generator[Path, None, None]:
    """
    Create a temporary test database for each test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        monkeypatch.setattr("portal.database.DATABASE_PATH", str(db_path))
        monkeypatch.setattr("portal.config.DATABASE_PATH", str(db_path))
        init_database()
        yield db_path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def graph():
    return FakeGraph()


@pytest.fixture
def identity_client(graph, clock):
    return IdentityProviderClient(
        tenant_id="tenant-1",
        client_id="client-1",
        client_secret="secret-1",
        authority=AUTHORITY,
        http_client=httpx.AsyncClient(transport=graph.transport()),
        clock=clock,
    )


@pytest.fixture
def store(graph):
    return GraphStoreClient(
        base_url=GRAPH_BASE_URL,
        site_host=SITE_HOST,
        site_path=SITE_PATH,
        http_client=httpx.AsyncClient(transport=graph.transport()),
    )


@pytest.fixture
def token_cache(identity_client, clock):
    return TokenCache(identity_client, clock=clock)


@pytest.fixture
def engine(store):
    return ChunkedUploadEngine(store)


@pytest.fixture
def memory_cache(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def url_cache(memory_cache, store, token_cache, clock):
    return DownloadUrlCache(memory_cache, store, token_cache, ttl_seconds=3600, clock=clock)


@pytest.fixture
def channel():
    return ProgressChannelRegistry()


@pytest.fixture
def orchestrator(token_cache, store, engine, url_cache, channel, clock):
    return UploadOrchestrator(token_cache, store, engine, url_cache, channel, clock=clock)


@pytest.fixture
def file_service(token_cache, store, engine, url_cache, clock):
    return FileService(token_cache, store, engine, url_cache, clock=clock)


@pytest.fixture
def make_upload(tmp_path):
    """
    Build a FileUpload backed by a real temporary buffer on disk.

    Returns:
        Factory taking (name, size, mime_type)
    """
    def factory(name: str, size: int, mime_type: str = "application/octet-stream") -> FileUpload:
        data = bytes(i % 251 for i in range(size)) if size < 4096 else b"\x5a" * size
        path = tmp_path / f"buffer-{len(list(tmp_path.iterdir()))}-{name}"
        path.write_bytes(data)
        return FileUpload(data=data, name=name, mime_type=mime_type, size=size, path=str(path))

    return factory

