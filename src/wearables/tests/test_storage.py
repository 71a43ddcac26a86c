"""Tests for note placement and the storage backends."""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest
from botocore.exceptions import ClientError

from src.config import Settings
from src.errors import StorageError
from src.services.dropbox import DropboxClient, DropboxStorage
from src.services.r2 import R2Storage, object_key
from src.services.storage import LocalDiskStorage
from src.wearables.sync.file_manager import FileManager, note_directory, note_path
from src.wearables.tests.conftest import MemoryStorage

CONFLICT_BODY = json.dumps(
    {"error_summary": "path/conflict/folder/..", "error": {".tag": "path", "path": {".tag": "conflict"}}}
)


def make_dropbox(http_client, access_token: str = "dbx-at") -> DropboxClient:
    return DropboxClient("app-key", "app-secret", access_token, "dbx-rt", http_client=http_client)


class TestNotePaths:
    def test_note_path(self) -> None:
        assert note_path(date(2026, 2, 23), "/WHOOP") == "/WHOOP/Daily/2026/02-February/2026-02-23.md"

    def test_trailing_slash_on_base(self) -> None:
        assert note_directory(date(2026, 12, 1), "./WHOOP/") == "./WHOOP/Daily/2026/12-December"


class TestFileManager:
    @pytest.mark.asyncio
    async def test_save_note_creates_folder_then_writes(self, memory_storage: MemoryStorage) -> None:
        files = FileManager(memory_storage, "/WHOOP")
        note = files.build_note(date(2026, 2, 23), "# hello\n")

        path = await files.save_note(note)

        assert path == "/WHOOP/Daily/2026/02-February/2026-02-23.md"
        assert "/WHOOP/Daily/2026/02-February" in memory_storage.directories
        assert memory_storage.files[path] == "# hello\n"

    @pytest.mark.asyncio
    async def test_local_writes_are_idempotent(self, tmp_path: Path) -> None:
        files = FileManager(LocalDiskStorage(), str(tmp_path / "WHOOP"))
        note = files.build_note(date(2026, 2, 23), "same content\n")

        await files.save_note(note)
        await files.save_note(note)

        written = tmp_path / "WHOOP" / "Daily" / "2026" / "02-February" / "2026-02-23.md"
        assert written.read_text() == "same content\n"
        assert len(list(written.parent.iterdir())) == 1

    @pytest.mark.asyncio
    async def test_save_readme(self, tmp_path: Path) -> None:
        files = FileManager(LocalDiskStorage(), str(tmp_path / "WHOOP"))
        await files.save_readme("# readme\n")
        assert (tmp_path / "WHOOP" / "README.md").read_text() == "# readme\n"

    @pytest.mark.asyncio
    async def test_local_write_failure_raises(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("")
        with pytest.raises(StorageError):
            await LocalDiskStorage().ensure_directory(str(blocker / "sub"))


class TestDropbox:
    @pytest.mark.asyncio
    async def test_existing_folder_is_success(self, make_http_client) -> None:
        client = make_http_client(lambda *a, **kw: httpx.Response(409, text=CONFLICT_BODY))
        storage = DropboxStorage(make_dropbox(client))

        await storage.ensure_directory("/WHOOP/Daily/2026")

        paths = [c.kwargs["json"]["path"] for c in client.request.call_args_list]
        assert paths == ["/WHOOP", "/WHOOP/Daily", "/WHOOP/Daily/2026"]

    @pytest.mark.asyncio
    async def test_other_folder_error_raises(self, make_http_client) -> None:
        client = make_http_client(
            lambda *a, **kw: httpx.Response(409, text='{"error_summary": "path/insufficient_space/"}')
        )
        with pytest.raises(StorageError, match="/WHOOP"):
            await DropboxStorage(make_dropbox(client)).ensure_directory("/WHOOP")

    @pytest.mark.asyncio
    async def test_upload_overwrites(self, make_http_client) -> None:
        client = make_http_client(lambda *a, **kw: httpx.Response(200, json={"name": "2026-02-23.md"}))
        storage = DropboxStorage(make_dropbox(client))

        await storage.write_file("/WHOOP/a.md", "héllo")

        call = client.request.call_args
        assert call.args[1] == "https://content.dropboxapi.com/2/files/upload"
        arg = json.loads(call.kwargs["headers"]["Dropbox-API-Arg"])
        assert arg["path"] == "/WHOOP/a.md"
        assert arg["mode"] == "overwrite"
        assert call.kwargs["content"] == "héllo".encode("utf-8")

    @pytest.mark.asyncio
    async def test_missing_access_token_refreshes_first(self, make_http_client) -> None:
        client = make_http_client(lambda *a, **kw: httpx.Response(200, json={}))
        dropbox = make_dropbox(client, access_token="")

        await dropbox.upload_file("/WHOOP/a.md", "x")

        assert client.post.await_count == 1
        assert client.request.call_args.kwargs["headers"]["Authorization"] == "Bearer new-access"
        assert dropbox.session.access_token == "new-access"

    @pytest.mark.asyncio
    async def test_connect_failure_raises_storage_error(self, make_http_client) -> None:
        client = make_http_client(lambda *a, **kw: httpx.Response(500, text="down"))
        with pytest.raises(StorageError, match="Failed to connect to Dropbox"):
            await DropboxStorage(make_dropbox(client)).connect()


class TestR2:
    def test_object_key(self) -> None:
        assert object_key("/WHOOP/Daily/x.md") == "WHOOP/Daily/x.md"
        assert object_key("./WHOOP/x.md") == "WHOOP/x.md"
        assert object_key("WHOOP/x.md") == "WHOOP/x.md"

    @pytest.mark.asyncio
    async def test_write_puts_markdown_object(self) -> None:
        s3 = MagicMock()
        storage = R2Storage(settings=Settings(_env_file=None, r2_bucket_name="notes"), client=s3)

        await storage.ensure_directory("WHOOP/Daily")
        await storage.write_file("WHOOP/Daily/2026-02-23.md", "# note\n")

        kwargs = s3.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "notes"
        assert kwargs["Key"] == "WHOOP/Daily/2026-02-23.md"
        assert kwargs["Body"] == b"# note\n"
        assert kwargs["ContentType"].startswith("text/markdown")
        assert len(kwargs["Metadata"]["file_hash"]) == 64

    @pytest.mark.asyncio
    async def test_client_error_raises_storage_error(self) -> None:
        s3 = MagicMock()
        s3.put_object.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"
        )
        storage = R2Storage(settings=Settings(_env_file=None), client=s3)
        with pytest.raises(StorageError, match="R2"):
            await storage.write_file("WHOOP/x.md", "x")
