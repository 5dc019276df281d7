"""
Integration tests for ftp-cachestore using pyftpdlib as a real FTP server.

These tests run the full stack (FTPStorage + FTPClient + DirectoryCache)
against an FTP server running in-process, catching protocol issues that
unit tests with mocks cannot detect.

Test categories:
- Listing: MLSD and LIST parsing, image metadata, cache hits
- Mutations: mkdir, upload, rename, delete, copy, move
- Error Handling: missing paths, existing folders
"""

import threading
import time
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from pyftpdlib.authorizers import DummyAuthorizer
from pyftpdlib.handlers import FTPHandler
from pyftpdlib.servers import FTPServer

from ftp_cachestore.config import (
    AppConfig,
    CacheConfig,
    ConnectionConfig,
    FTPConfig,
    LogConfig,
    StorageConfig,
)
from ftp_cachestore.errors import StorageError
from ftp_cachestore.ftp_client import FTPClient
from ftp_cachestore.storage import FTPStorage, UploadedFile

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def ftp_root(tmp_path: Path, image_factory) -> Path:
    """
    Create the directory structure served by the FTP server.

    Structure:
        /
        +-- www/
            +-- notes.txt               (contains "hello")
            +-- logo.png                (200x100 PNG)
            +-- folder with spaces/
            |   +-- file.txt            (contains "Nested")
            +-- empty_folder/
    """
    root_dir = tmp_path / "ftp_root"
    www = root_dir / "www"
    (www / "folder with spaces").mkdir(parents=True)
    (www / "empty_folder").mkdir()
    (www / "notes.txt").write_bytes(b"hello")
    (www / "logo.png").write_bytes(image_factory((200, 100), "PNG"))
    (www / "folder with spaces" / "file.txt").write_text("Nested", encoding="utf-8")
    return root_dir


@pytest.fixture
def ftp_server(ftp_root: Path) -> Generator[dict[str, Any], None, None]:
    """
    Start a real FTP server in a background thread on a random port.

    Yields:
        Dict with host, port and root of the served tree.
    """
    authorizer = DummyAuthorizer()
    # M enables SITE CHMOD
    authorizer.add_anonymous(str(ftp_root), perm="elradfmwMT")

    class Handler(FTPHandler):
        pass

    Handler.authorizer = authorizer
    Handler.passive_ports = range(60000, 60100)

    server = FTPServer(("127.0.0.1", 0), Handler)
    port = server.socket.getsockname()[1]

    server_thread = threading.Thread(target=server.serve_forever, kwargs={"handle_exit": False})
    server_thread.daemon = True
    server_thread.start()
    time.sleep(0.1)

    yield {"host": "127.0.0.1", "port": port, "root": ftp_root}

    server.close_all()
    server_thread.join(timeout=5)


@pytest.fixture
def server_config(ftp_server: dict[str, Any], cache_dir: Path) -> AppConfig:
    return AppConfig(
        ftp=FTPConfig(host=ftp_server["host"], port=ftp_server["port"]),
        cache=CacheConfig(directory=str(cache_dir), ttl_seconds=3600),
        storage=StorageConfig(base_path="/www", base_url="https://cdn.example.com/www"),
        connection=ConnectionConfig(timeout_seconds=10),
        logging=LogConfig(level="DEBUG", console=False),
    )


@pytest.fixture
def live_storage(server_config: AppConfig) -> Generator[FTPStorage, None, None]:
    with FTPStorage(server_config) as storage:
        yield storage


@pytest.fixture
def www(ftp_root: Path) -> Path:
    return ftp_root / "www"


# =============================================================================
# Listing
# =============================================================================


class TestListing:
    """list_files / list_folders against a live server."""

    def test_list_files(self, live_storage: FTPStorage):
        entries = live_storage.list_files("/")

        assert list(entries) == ["empty_folder", "folder with spaces", "logo.png", "notes.txt"]
        assert entries["notes.txt"].size == 5
        assert entries["folder with spaces"].is_dir
        assert (entries["logo.png"].width, entries["logo.png"].height) == (200, 100)
        assert entries["logo.png"].thumbnail
        assert entries["notes.txt"].directory_url == "https://cdn.example.com/www/"

    def test_cache_hit_needs_no_connection(self, live_storage: FTPStorage):
        first = live_storage.list_files("/folder with spaces")
        live_storage.close()

        second = live_storage.list_files("/folder with spaces")

        assert second == first
        assert live_storage._client is None

    def test_list_fallback_matches_mlsd(self, server_config: AppConfig):
        """Servers without MLSD are listed with LIST and parsed to the same result."""
        mlsd_client = FTPClient(server_config.ftp, server_config.connection)
        list_client = FTPClient(server_config.ftp, server_config.connection)
        mlsd_client.connect()
        list_client.connect()
        list_client._supports_mlsd = False
        list_client._supports_mlst = False
        try:
            by_mlsd = {(f.name, f.size, f.is_dir) for f in mlsd_client.list_dir("/www")}
            by_list = {(f.name, f.size, f.is_dir) for f in list_client.list_dir("/www")}
            assert by_list == by_mlsd
            assert list_client.is_file("/www/notes.txt")
            assert list_client.is_dir("/www/empty_folder")
        finally:
            mlsd_client.disconnect()
            list_client.disconnect()

    def test_list_folders(self, live_storage: FTPStorage):
        folders = live_storage.list_folders()

        assert [(f.name, f.path) for f in folders] == [
            ("empty_folder", "/empty_folder"),
            ("folder with spaces", "/folder with spaces"),
        ]

    def test_missing_path(self, live_storage: FTPStorage):
        with pytest.raises(StorageError, match="not found path"):
            live_storage.list_files("/nope")


# =============================================================================
# Mutations
# =============================================================================


class TestMutations:
    """Mutations reach the server and patch the cache."""

    def test_make_dir(self, live_storage: FTPStorage, www: Path):
        live_storage.list_files("/")

        live_storage.make_dir("/", "created")

        assert (www / "created").is_dir()
        assert live_storage.cache.load("/")["created"].is_dir

    def test_make_existing_dir_fails(self, live_storage: FTPStorage):
        with pytest.raises(StorageError, match="cannot create folder"):
            live_storage.make_dir("/", "empty_folder")

    def test_upload(self, live_storage: FTPStorage, www: Path, tmp_path: Path, image_factory):
        local = tmp_path / "photo.jpg"
        local.write_bytes(image_factory((64, 32), "JPEG"))
        live_storage.list_files("/empty_folder")

        uploaded = live_storage.upload("/empty_folder", [UploadedFile("photo.jpg", local)])

        assert uploaded == ["photo.jpg"]
        assert (www / "empty_folder" / "photo.jpg").read_bytes() == local.read_bytes()
        cached = live_storage.cache.load("/empty_folder")["photo.jpg"]
        assert (cached.width, cached.height) == (64, 32)

    def test_upload_without_overwrite(self, live_storage: FTPStorage, www: Path, tmp_path: Path):
        live_storage.options.overwrite_files = False
        local = tmp_path / "notes.txt"
        local.write_bytes(b"other")

        with pytest.raises(StorageError, match="files were not overwritten: notes.txt"):
            live_storage.upload("/", [UploadedFile("notes.txt", local)])

        assert (www / "notes.txt").read_bytes() == b"hello"

    def test_rename(self, live_storage: FTPStorage, www: Path):
        live_storage.list_files("/")

        assert live_storage.rename("/", "notes.txt", "readme.txt") is False

        assert (www / "readme.txt").exists()
        cached = live_storage.cache.load("/")
        assert "notes.txt" not in cached
        assert cached["readme.txt"].size == 5

    def test_delete_folder_recursively(self, live_storage: FTPStorage, www: Path):
        live_storage.list_files("/")

        assert live_storage.delete("/", ["folder with spaces"]) is True

        assert not (www / "folder with spaces").exists()
        assert "folder with spaces" not in live_storage.cache.load("/")

    def test_copy(self, live_storage: FTPStorage, www: Path):
        live_storage.copy("/", ["folder with spaces", "notes.txt"], "/empty_folder")

        assert (www / "empty_folder" / "folder with spaces" / "file.txt").read_text() == "Nested"
        assert (www / "empty_folder" / "notes.txt").read_bytes() == b"hello"
        assert (www / "notes.txt").exists()

    def test_move_matches_fresh_listing(self, live_storage: FTPStorage, www: Path):
        live_storage.list_files("/")
        live_storage.list_files("/empty_folder")

        live_storage.move("/", ["logo.png"], "/empty_folder")

        assert "logo.png" not in live_storage.cache.load("/")
        cached = live_storage.cache.load("/empty_folder")["logo.png"]
        fresh = live_storage.list_files("/empty_folder", skip_cache=True)["logo.png"]
        assert cached == fresh
        assert (www / "empty_folder" / "logo.png").exists()
