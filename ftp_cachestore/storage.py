"""
Storage facade that keeps the directory cache in step with the remote server.

Reads go to the cache first and fall back to a remote listing on a miss.
Mutations are applied remotely first; only after the server confirms
them is the cache patched, one entry at a time, so a directory never has
to be re-listed after a change made through this class.

Batch operations (delete, copy, move over several names) stop at the
first remote failure. Items processed before the failure stay applied,
on the server and in the cache; nothing is rolled back.
"""

import logging
import posixpath
import re
import unicodedata
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from .cache import DirectoryCache, normalize_path
from .config import AppConfig, normalize_base_path
from .entry import Entry, EntryKind, Folder
from .errors import ConfigurationError, StorageError
from .ftp_client import FTPClient, RemoteDir, join_path
from .listing import EntryConverter
from .remote_client import RemoteClient
from .sftp_client import SFTPClient

logger = logging.getLogger(__name__)


@dataclass
class UploadedFile:
    """A file received from a client, staged locally before upload."""

    name: str
    tmp_path: str | Path
    error: int = 0  # non-zero when the transfer to this host failed


def create_client(config: AppConfig) -> RemoteClient:
    """Build the transport client selected by config.protocol."""
    if config.protocol == "sftp":
        return SFTPClient(config.ssh, config.connection)
    return FTPClient(config.ftp, config.connection)


def _ascii_slug(text: str) -> str:
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9._-]+", "-", text.lower()).strip("-.")


def normalize_file_name(name: str) -> str:
    """
    Make a file name safe for any server: ASCII, lowercase, no spaces.

    "Žluťoučký kůň.JPG" becomes "zlutoucky-kun.jpg".
    """
    stem, ext = posixpath.splitext(name)
    stem = _ascii_slug(stem) or "file"
    ext = _ascii_slug(ext)
    return f"{stem}.{ext}" if ext else stem


class FTPStorage:
    """
    File manager storage backed by a remote server and a DirectoryCache.

    The remote connection is created lazily on the first operation that
    needs it and kept for the lifetime of the instance. It is never
    re-established automatically; close() releases it.
    """

    def __init__(
        self,
        config: AppConfig,
        client_factory: Callable[[AppConfig], RemoteClient] = create_client,
    ):
        if not config.cache.directory:
            raise ConfigurationError("invalid configuration: cache directory is not set")
        self.config = config
        self.options = config.storage
        self.base_path = normalize_base_path(config.storage.base_path)
        self.cache = DirectoryCache(config.cache.directory, config.cache.ttl_seconds)
        self._client_factory = client_factory
        self._client: RemoteClient | None = None
        self._converter: EntryConverter | None = None

    def __enter__(self) -> "FTPStorage":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def host(self) -> str:
        remote = self.config.ssh if self.config.protocol == "sftp" else self.config.ftp
        return remote.host if remote else ""

    def _connect(self) -> RemoteClient:
        if self._client is not None:
            return self._client
        if not self.host:
            raise ConfigurationError("invalid configuration: missing host")

        client = self._client_factory(self.config)
        try:
            client.connect()
        except OSError as e:
            raise StorageError(f'cannot connect to "{self.host}"', "connect", self.host) from e
        self._client = client
        self._converter = EntryConverter(client)
        return client

    def close(self) -> None:
        """Disconnect from the server. A later operation connects again."""
        if self._client is None:
            return
        try:
            self._client.disconnect()
        finally:
            self._client = None
            self._converter = None

    def abs_path(self, path: str) -> str:
        """Map a logical path to the absolute remote path under base_path."""
        return normalize_base_path(f"{self.base_path}/{path}")

    def _logical_path(self, abs_path: str) -> str:
        if self.base_path != "/" and abs_path.startswith(self.base_path):
            abs_path = abs_path[len(self.base_path):]
        return normalize_path(abs_path)

    def _directory_url(self, path: str) -> str:
        return self.options.base_url.rstrip("/") + normalize_path(path)

    def list_folders(self) -> list[Folder]:
        """
        Return the directory tree below base_path.

        Trees are not cached. Listing them is also the point where expired
        cache files are swept.
        """
        client = self._connect()
        try:
            self.cache.sweep_expired()
        except OSError as e:
            logger.warning("Cache sweep failed: %s", e)

        try:
            tree = client.tree(self.base_path)
        except OSError as e:
            raise StorageError(
                f'cannot list folders of "{self.base_path}"', "tree", self.base_path
            ) from e
        return self._folders(tree)

    def _folders(self, nodes: list[RemoteDir]) -> list[Folder]:
        return [
            Folder(
                name=node.name,
                path=self._logical_path(node.path),
                children=self._folders(node.subdirectories),
            )
            for node in nodes
        ]

    def list_files(self, path: str, skip_cache: bool = False) -> dict[str, Entry]:
        """
        List a directory, from the cache when a fresh snapshot exists.

        Args:
            path: Logical directory path.
            skip_cache: Always list remotely and refresh the snapshot.

        Returns:
            Entries keyed by name in ascending order.

        Raises:
            StorageError: If the remote directory cannot be listed.
        """
        entries = None if skip_cache else self.cache.load(path)
        if entries is not None:
            logger.debug("Cache hit for %s", normalize_path(path))
        else:
            logger.debug("Cache miss for %s", normalize_path(path))
            client = self._connect()
            abs_path = self.abs_path(path)
            try:
                remote_files = client.list_dir(abs_path)
                entries = self._converter.convert_all(abs_path, remote_files)
            except OSError as e:
                raise StorageError(f'not found path "{path}"', "list", path) from e
            self.cache.save(path, entries)

        url = self._directory_url(path)
        for entry in entries.values():
            entry.directory_url = url
        return entries

    def _fetch_entry(self, abs_dir: str, name: str) -> Entry | None:
        """Read one entry's authoritative metadata from the server."""
        for remote_file in self._client.list_dir(abs_dir):
            if remote_file.name == name:
                return self._converter.convert(abs_dir, remote_file)
        return None

    def _refresh_entry(self, path: str, name: str) -> None:
        """Re-read one entry from the server and store it in path's snapshot."""
        try:
            entry = self._fetch_entry(self.abs_path(path), name)
        except OSError as e:
            raise StorageError(f'cannot read "{name}"', "list", name) from e
        if entry is not None:
            self.cache.update(path, entry)

    def make_dir(self, path: str, name: str) -> None:
        """Create folder name inside path."""
        client = self._connect()
        target = join_path(self.abs_path(path), name)
        try:
            client.create_dir(target)
            client.chmod(target, self.options.dir_mode)
        except OSError as e:
            raise StorageError(f'cannot create folder "{name}"', "mkdir", name) from e

        self.cache.update(path, Entry(name=name, kind=EntryKind.DIRECTORY))
        logger.info("Created folder %s", target)

    def upload(self, path: str, files: Iterable[UploadedFile]) -> list[str]:
        """
        Upload files into path.

        When overwriting is disabled, files that already exist are skipped
        and the rest are still uploaded; the skipped names are reported in
        a single StorageError raised after all files were processed.

        Returns:
            Names of the uploaded files.

        Raises:
            StorageError: On a failed transfer, a remote error, or skipped files.
        """
        client = self._connect()
        abs_path = self.abs_path(path)
        uploaded: list[str] = []
        not_overwritten: list[str] = []

        for file in files:
            if file.error:
                raise StorageError(f'upload "{file.name}" failed', "upload", file.name)

            name = posixpath.basename(file.name.replace("\\", "/"))
            if self.options.normalize_names:
                name = normalize_file_name(name)
            target = join_path(abs_path, name)

            try:
                if not self.options.overwrite_files and client.is_file(target):
                    logger.info("Not overwriting existing file %s", target)
                    not_overwritten.append(name)
                    continue
                client.put_file(target, file.tmp_path)
                client.chmod(target, self.options.file_mode)
            except OSError as e:
                raise StorageError(f'cannot upload "{name}"', "upload", name) from e

            self._refresh_entry(path, name)
            uploaded.append(name)
            logger.info("Uploaded %s", target)

        if not_overwritten:
            raise StorageError(
                "files were not overwritten: " + ", ".join(not_overwritten),
                "upload",
                ",".join(not_overwritten),
            )
        return uploaded

    def delete(self, path: str, names: Iterable[str]) -> bool:
        """
        Delete files and folders (recursively) from path.

        Returns:
            True if any deleted item was a folder.
        """
        names = list(names)
        if not names:
            return False

        client = self._connect()
        abs_path = self.abs_path(path)
        deleted_folder = False

        for name in names:
            target = join_path(abs_path, name)
            try:
                is_folder = client.is_dir(target)
                if is_folder:
                    client.delete_dir(target)
                else:
                    client.delete_file(target)
            except OSError as e:
                raise StorageError(f'cannot delete "{name}"', "delete", name) from e

            deleted_folder = deleted_folder or is_folder
            self.cache.delete(path, name)
            logger.info("Deleted %s", target)

        return deleted_folder

    def rename(self, path: str, old_name: str, new_name: str) -> bool:
        """
        Rename an item inside path.

        Returns:
            True if the renamed item is a folder.
        """
        client = self._connect()
        abs_path = self.abs_path(path)
        try:
            client.rename(join_path(abs_path, old_name), join_path(abs_path, new_name))
            renamed_folder = client.is_dir(join_path(abs_path, new_name))
        except OSError as e:
            raise StorageError(
                f'cannot rename "{old_name}" to "{new_name}"', "rename", old_name
            ) from e

        self.cache.delete(path, old_name)
        self._refresh_entry(path, new_name)
        logger.info("Renamed %s to %s in %s", old_name, new_name, abs_path)
        return renamed_folder

    def copy(self, path: str, names: Iterable[str], target_path: str) -> bool:
        """
        Copy items from path into target_path. Only the target's cache changes.

        Returns:
            True if any copied item was a folder.
        """
        client = self._connect()
        source_dir = self.abs_path(path)
        target_dir = self.abs_path(target_path)
        copied_folder = False

        for name in names:
            source = join_path(source_dir, name)
            target = join_path(target_dir, name)
            try:
                is_folder = client.is_dir(source)
                if is_folder:
                    client.copy_dir(source, target)
                else:
                    client.copy_file(source, target)
            except OSError as e:
                raise StorageError(f'cannot copy "{name}"', "copy", name) from e

            if is_folder:
                self.cache.update(target_path, Entry(name=name, kind=EntryKind.DIRECTORY))
                copied_folder = True
            else:
                self._refresh_entry(target_path, name)
            logger.info("Copied %s to %s", source, target)

        return copied_folder

    def move(self, path: str, names: Iterable[str], target_path: str) -> bool:
        """
        Move items from path into target_path, patching both caches.

        Returns:
            True if any moved item was a folder.
        """
        client = self._connect()
        source_dir = self.abs_path(path)
        target_dir = self.abs_path(target_path)
        moved_folder = False

        for name in names:
            source = join_path(source_dir, name)
            target = join_path(target_dir, name)
            try:
                is_folder = client.is_dir(source)
                client.rename(source, target)
            except OSError as e:
                raise StorageError(f'cannot move "{name}"', "move", name) from e

            self.cache.delete(path, name)
            if is_folder:
                self.cache.update(target_path, Entry(name=name, kind=EntryKind.DIRECTORY))
                moved_folder = True
            else:
                self._refresh_entry(target_path, name)
            logger.info("Moved %s to %s", source, target)

        return moved_folder
