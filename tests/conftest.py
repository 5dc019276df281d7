"""
Shared pytest fixtures for ftp-cachestore tests.
"""

import ftplib
import shutil
from collections.abc import Generator
from datetime import datetime
from io import BytesIO
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from PIL import Image

from ftp_cachestore.cache import DirectoryCache
from ftp_cachestore.config import (
    AppConfig,
    CacheConfig,
    ConnectionConfig,
    FTPConfig,
    LogConfig,
    StorageConfig,
)
from ftp_cachestore.ftp_client import RemoteDir, RemoteFile, join_path
from ftp_cachestore.storage import FTPStorage


def make_image(size: tuple[int, int] = (200, 100), image_format: str = "PNG") -> bytes:
    """Encode a solid-color image in memory."""
    mode = "RGB" if image_format == "JPEG" else "RGBA"
    image = Image.new(mode, size, (200, 30, 30) if mode == "RGB" else (200, 30, 30, 255))
    output = BytesIO()
    image.save(output, format=image_format)
    return output.getvalue()


class LocalRemoteClient:
    """
    RemoteClient backed by a local directory, standing in for a server.

    failures maps an operation name to remote paths on which that
    operation raises PermissionError, to simulate server-side refusals.
    """

    def __init__(self, root: Path):
        self.root = root
        self.connected = False
        self.connect_count = 0
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[str, set[str]] = {}
        self.modes: dict[str, int] = {}

    def _local(self, path: str) -> Path:
        return self.root / path.strip("/")

    def _check(self, operation: str, path: str) -> None:
        self.calls.append((operation, path))
        if not self.connected:
            raise ConnectionError(f"{operation} failed: not connected")
        if path in self.failures.get(operation, set()):
            raise PermissionError(f"{operation} denied: {path}")

    def connect(self) -> None:
        self.connect_count += 1
        self.connected = True

    def disconnect(self) -> None:
        self.connected = False

    def _stats(self, local: Path, path: str) -> RemoteFile:
        st = local.stat()
        is_dir = local.is_dir()
        return RemoteFile(
            name=local.name,
            size=0 if is_dir else st.st_size,
            mtime=datetime.fromtimestamp(int(st.st_mtime)),
            is_dir=is_dir,
            path=path,
        )

    def list_dir(self, path: str) -> list[RemoteFile]:
        self._check("list_dir", path)
        local = self._local(path)
        if not local.is_dir():
            raise FileNotFoundError(f"No such directory: {path}")
        return [self._stats(child, join_path(path, child.name)) for child in sorted(local.iterdir())]

    def tree(self, path: str) -> list[RemoteDir]:
        self._check("tree", path)
        return [
            RemoteDir(name=entry.name, path=entry.path, subdirectories=self.tree(entry.path))
            for entry in self.list_dir(path)
            if entry.is_dir
        ]

    def get_file_info(self, path: str) -> RemoteFile:
        self._check("get_file_info", path)
        local = self._local(path)
        if not local.exists():
            raise FileNotFoundError(path)
        return self._stats(local, path)

    def read_file(self, path: str) -> bytes:
        self._check("read_file", path)
        return self._local(path).read_bytes()

    def put_file(self, path: str, local_path) -> None:
        self._check("put_file", path)
        shutil.copyfile(local_path, self._local(path))

    def chmod(self, path: str, mode: int) -> None:
        self._check("chmod", path)
        if not self._local(path).exists():
            raise FileNotFoundError(path)
        self.modes[path] = mode

    def create_dir(self, path: str) -> None:
        self._check("create_dir", path)
        self._local(path).mkdir()

    def delete_file(self, path: str) -> None:
        self._check("delete_file", path)
        self._local(path).unlink()

    def delete_dir(self, path: str) -> None:
        self._check("delete_dir", path)
        shutil.rmtree(self._local(path))

    def rename(self, old_path: str, new_path: str) -> None:
        self._check("rename", old_path)
        self._local(old_path).rename(self._local(new_path))

    def copy_file(self, src: str, dst: str) -> None:
        self._check("copy_file", src)
        shutil.copyfile(self._local(src), self._local(dst))

    def copy_dir(self, src: str, dst: str) -> None:
        self._check("copy_dir", src)
        shutil.copytree(self._local(src), self._local(dst))

    def is_file(self, path: str) -> bool:
        self._check("is_file", path)
        return self._local(path).is_file()

    def is_dir(self, path: str) -> bool:
        self._check("is_dir", path)
        return self._local(path).is_dir()


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "cache"
    directory.mkdir()
    return directory


@pytest.fixture
def directory_cache(cache_dir: Path) -> DirectoryCache:
    return DirectoryCache(cache_dir, ttl_seconds=3600)


@pytest.fixture
def remote_root(tmp_path: Path) -> Path:
    """
    Server-side tree under base path /www:

        /www/
        +-- notes.txt      ("hello")
        +-- logo.png       (200x100 PNG)
        +-- photos/
        |   +-- a.jpg      (80x40 JPEG)
        |   +-- 2020/
        +-- archive/
    """
    root = tmp_path / "remote"
    www = root / "www"
    (www / "photos" / "2020").mkdir(parents=True)
    (www / "archive").mkdir()
    (www / "notes.txt").write_bytes(b"hello")
    (www / "logo.png").write_bytes(make_image((200, 100), "PNG"))
    (www / "photos" / "a.jpg").write_bytes(make_image((80, 40), "JPEG"))
    return root


@pytest.fixture
def remote(remote_root: Path) -> LocalRemoteClient:
    return LocalRemoteClient(remote_root)


@pytest.fixture
def ftp_config() -> FTPConfig:
    """Creates a standard FTPConfig for testing."""
    return FTPConfig(
        host="test.ftp.local",
        port=2121,
        username="testuser",
        password="testpass",
        passive_mode=True,
        encoding="utf-8",
    )


@pytest.fixture
def conn_config() -> ConnectionConfig:
    return ConnectionConfig(timeout_seconds=30)


@pytest.fixture
def app_config(ftp_config: FTPConfig, conn_config: ConnectionConfig, cache_dir: Path) -> AppConfig:
    """Creates a complete AppConfig for testing."""
    return AppConfig(
        ftp=ftp_config,
        cache=CacheConfig(directory=str(cache_dir), ttl_seconds=3600),
        storage=StorageConfig(base_path="/www", base_url="https://files.example.com"),
        connection=conn_config,
        logging=LogConfig(level="DEBUG", file="", console=False),
    )


@pytest.fixture
def storage(app_config: AppConfig, remote: LocalRemoteClient) -> Generator[FTPStorage, None, None]:
    """FTPStorage wired to the local fake server."""
    with FTPStorage(app_config, client_factory=lambda config: remote) as storage:
        yield storage


@pytest.fixture
def mock_ftp() -> Generator[MagicMock, None, None]:
    """
    Creates a mocked ftplib.FTP instance.

    Returns:
        Mocked FTP object with common methods stubbed.
    """
    mock = MagicMock(spec=ftplib.FTP)
    mock.encoding = "utf-8"
    mock.sendcmd.return_value = "200 OK"
    mock.login.return_value = "230 Login successful"
    mock.cwd.return_value = "250 OK"
    mock.quit.return_value = "221 Goodbye"
    yield mock


@pytest.fixture
def image_factory():
    """Returns make_image, for tests that need encoded image bytes."""
    return make_image


@pytest.fixture
def remote_factory(remote_root: Path):
    """Builds independent clients onto the same server tree."""
    return lambda: LocalRemoteClient(remote_root)
