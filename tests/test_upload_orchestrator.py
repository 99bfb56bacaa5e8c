"""End-to-end tests for the upload orchestrator against a fake document library."""

import asyncio
from pathlib import Path

import pytest

from common.constants import MIB
from common.types import UploadState
from conftest import FakePushConnection
from portal.exceptions import UploadConflictError
from portal.repositories.file_repository import FileRecordRepository
from portal.services.upload_service import UploadOrchestrator, remote_file_name, remote_thumbnail_name


class ExplodingRepository(FileRecordRepository):
    @staticmethod
    def create_file(record):
        raise RuntimeError("database is locked")


class CancellingConnection(FakePushConnection):
    """Requests cancellation as soon as the first progress event arrives."""

    def __init__(self, orchestrator, upload_id):
        super().__init__()
        self.orchestrator = orchestrator
        self.upload_id = upload_id

    async def send_json(self, message):
        await super().send_json(message)
        if message["type"] == "progress":
            self.orchestrator.cancel(self.upload_id)


class GatedConnection(FakePushConnection):
    """Holds the upload at its first progress event until released."""

    def __init__(self):
        super().__init__()
        self.reached = asyncio.Event()
        self.release = asyncio.Event()

    async def send_json(self, message):
        await super().send_json(message)
        if message["type"] == "progress" and not self.reached.is_set():
            self.reached.set()
            await self.release.wait()


class TestRemoteNames:
    """Test remote naming of uploaded files."""

    def test_main_file_name_replaces_whitespace(self):
        assert remote_file_name("Launch  Video\tfinal.mp4", 1700000000000) == "m1700000000000_Launch_Video_final.mp4"

    def test_thumbnail_name_keeps_extension(self, make_upload):
        assert remote_thumbnail_name(make_upload("cover.png", 10), 42) == "t42_thumbnail.png"
        assert remote_thumbnail_name(make_upload("cover", 10), 42) == "t42_thumbnail.bin"


class TestUploadOrchestrator:
    """Test the upload pipeline from buffered file to terminal event."""

    @pytest.mark.asyncio
    async def test_large_file_with_thumbnail_completes(self, test_db, orchestrator, channel, graph, make_upload):
        connection = FakePushConnection()
        channel.register("u-1", connection)
        main_file = make_upload("Launch Video.mp4", 10 * MIB, "video/mp4")
        thumbnail = make_upload("cover.png", 2 * MIB, "image/png")

        await orchestrator.process_upload(
            "u-1",
            main_file,
            thumbnail=thumbnail,
            owner_id="user-1",
            file_types=["videos"],
            categories=["cat-1"],
            description="Product launch",
        )

        assert len(graph.chunk_puts) == 3
        assert graph.simple_puts == ["t1700000000000_thumbnail.png"]
        assert [m["progress"] for m in connection.of_type("progress")] == [40, 80, 100]

        complete = connection.of_type("complete")
        assert len(complete) == 1
        data = complete[0]["data"]
        assert data["fileId"] == "item-1"
        assert data["thumbnailId"] == "item-2"
        assert data["record"]["publicDownloadUrl"].startswith("https://download.test/item-1")
        assert data["record"]["publicThumbnailDownloadUrl"].startswith("https://download.test/item-2")
        assert data["record"]["name"] == "Launch Video.mp4"
        assert data["record"]["owner"] == "user-1"

        records = FileRecordRepository.find(remote_object_id="item-1")
        assert len(records) == 1
        assert records[0].remote_thumbnail_id == "item-2"
        assert records[0].description == "Product launch"

        assert not Path(main_file.path).exists()
        assert not Path(thumbnail.path).exists()
        assert orchestrator.get_session("u-1") is None
        assert len(channel) == 0

    @pytest.mark.asyncio
    async def test_main_file_uses_timestamped_remote_name(self, test_db, orchestrator, graph, make_upload):
        await orchestrator.process_upload("u-1", make_upload("brief notes.pdf", 1024), owner_id="user-1")

        assert graph.simple_puts == ["m1700000000000_brief_notes.pdf"]

    @pytest.mark.asyncio
    async def test_chunk_failure_reports_remote_message(self, test_db, orchestrator, channel, graph, make_upload):
        connection = FakePushConnection()
        channel.register("u-1", connection)
        graph.fail_chunk_number = 2
        main_file = make_upload("video.mp4", 10 * MIB)
        thumbnail = make_upload("cover.png", 1024)

        await orchestrator.process_upload("u-1", main_file, thumbnail=thumbnail, owner_id="user-1")

        assert connection.of_type("error") == [
            {"type": "error", "uploadId": "u-1", "error": "Chunk rejected by server"}
        ]
        assert connection.of_type("complete") == []
        assert FileRecordRepository.find() == []
        assert graph.simple_puts == []
        assert not Path(main_file.path).exists()
        assert not Path(thumbnail.path).exists()

    @pytest.mark.asyncio
    async def test_token_failure_reports_error(self, test_db, orchestrator, channel, graph, make_upload):
        connection = FakePushConnection()
        channel.register("u-1", connection)
        graph.fail_token = True

        await orchestrator.process_upload("u-1", make_upload("video.mp4", 1024), owner_id="user-1")

        errors = connection.of_type("error")
        assert len(errors) == 1
        assert "Invalid client secret" in errors[0]["error"]
        assert graph.simple_puts == []

    @pytest.mark.asyncio
    async def test_unknown_file_type_rejected(self, test_db, orchestrator, channel, graph, make_upload):
        connection = FakePushConnection()
        channel.register("u-1", connection)

        await orchestrator.process_upload("u-1", make_upload("a.mp4", 1024), file_types=["spreadsheets"])

        assert connection.of_type("error")[0]["error"] == "Unknown file types: spreadsheets"
        assert graph.requests == []

    @pytest.mark.asyncio
    async def test_unexpected_error_reports_generic_message(self, test_db, token_cache, store, engine, url_cache,
                                                            channel, clock, make_upload):
        orchestrator = UploadOrchestrator(
            token_cache, store, engine, url_cache, channel,
            repository=ExplodingRepository,
            clock=clock,
        )
        connection = FakePushConnection()
        channel.register("u-1", connection)

        await orchestrator.process_upload("u-1", make_upload("a.mp4", 1024), owner_id="user-1")

        assert connection.of_type("error")[0]["error"] == "Failed to upload file"

    @pytest.mark.asyncio
    async def test_record_persisted_without_connected_client(self, test_db, orchestrator, channel, make_upload):
        await orchestrator.process_upload("u-1", make_upload("video.mp4", 5 * MIB), owner_id="user-1")

        assert len(FileRecordRepository.find(owner_id="user-1")) == 1
        assert len(channel) == 0

    @pytest.mark.asyncio
    async def test_submit_runs_in_background(self, test_db, orchestrator, channel, make_upload):
        connection = FakePushConnection()
        channel.register("u-1", connection)

        task = orchestrator.submit("u-1", make_upload("video.mp4", 1024), owner_id="user-1")
        await orchestrator.wait_for_uploads()

        assert task.done()
        assert len(connection.of_type("complete")) == 1

    @pytest.mark.asyncio
    async def test_progress_sent_while_main_file_uploading(self, test_db, orchestrator, channel, make_upload):
        states = []

        class RecordingConnection(FakePushConnection):
            async def send_json(self, message):
                await super().send_json(message)
                session = orchestrator.get_session("u-1")
                if session is not None:
                    states.append(session.state)

        channel.register("u-1", RecordingConnection())

        await orchestrator.process_upload("u-1", make_upload("video.mp4", 5 * MIB), owner_id="user-1")

        assert states == [UploadState.MAIN_FILE_UPLOADING, UploadState.MAIN_FILE_UPLOADING]

    @pytest.mark.asyncio
    async def test_cancel_stops_transfer_when_enabled(self, test_db, token_cache, store, engine, url_cache,
                                                      channel, graph, clock, make_upload):
        orchestrator = UploadOrchestrator(
            token_cache, store, engine, url_cache, channel,
            clock=clock,
            cancel_on_disconnect=True,
        )
        connection = CancellingConnection(orchestrator, "u-1")
        channel.register("u-1", connection)

        await orchestrator.process_upload("u-1", make_upload("video.mp4", 10 * MIB), owner_id="user-1")

        assert len(graph.chunk_puts) == 1
        assert connection.of_type("error")[0]["error"] == "Upload of m1700000000000_video.mp4 was cancelled"
        assert FileRecordRepository.find() == []

    def test_cancel_unknown_upload_returns_false(self, orchestrator):
        assert orchestrator.cancel("missing") is False

    @pytest.mark.asyncio
    async def test_duplicate_upload_id_rejected_while_running(self, test_db, orchestrator, channel, graph,
                                                              make_upload):
        connection = GatedConnection()
        channel.register("dup", connection)
        first = make_upload("notes.pdf", 1024)
        orchestrator.submit("dup", first, owner_id="user-1")
        await connection.reached.wait()
        running = orchestrator.get_session("dup")

        second = make_upload("video.mp4", 10 * MIB)
        with pytest.raises(UploadConflictError):
            orchestrator.submit("dup", second, owner_id="user-1")
        with pytest.raises(UploadConflictError):
            await orchestrator.process_upload("dup", second, owner_id="user-1")

        assert orchestrator.get_session("dup") is running
        assert running.total_bytes == 1024
        assert Path(second.path).exists()

        connection.release.set()
        await orchestrator.wait_for_uploads()

        assert orchestrator.get_session("dup") is None
        assert len(connection.of_type("complete")) == 1
        assert graph.simple_puts == ["m1700000000000_notes.pdf"]
        assert graph.chunk_puts == []

    @pytest.mark.asyncio
    async def test_upload_id_reusable_after_completion(self, test_db, orchestrator, graph, make_upload):
        await orchestrator.process_upload("u-1", make_upload("a.pdf", 1024), owner_id="user-1")
        await orchestrator.process_upload("u-1", make_upload("b.pdf", 1024), owner_id="user-1")

        assert graph.simple_puts == ["m1700000000000_a.pdf", "m1700000000000_b.pdf"]
        assert len(FileRecordRepository.find(owner_id="user-1")) == 2
