"""
SFTP client implementation using paramiko.

Provides the same interface as FTPClient but over SSH/SFTP, so the
storage facade can use either transport transparently.
"""

import errno
import logging
import os
import posixpath
import stat
import threading
from datetime import datetime
from io import BytesIO
from pathlib import Path

import paramiko

from .config import ConnectionConfig, SSHConfig
from .ftp_client import RemoteDir, RemoteFile, join_path

logger = logging.getLogger(__name__)


class TrustOnFirstUsePolicy(paramiko.MissingHostKeyPolicy):
    """
    Trust-on-first-use host key policy (same model as OpenSSH).

    - Unknown host: accept and save key to ~/.ssh/known_hosts
    - Known host, same key: accept
    - Known host, CHANGED key: reject
    """

    def __init__(self, known_hosts_path: Path | None = None):
        self._known_hosts_path = known_hosts_path or Path.home() / ".ssh" / "known_hosts"

    def missing_host_key(self, client, hostname, key):
        host_keys = client.get_host_keys()
        existing = host_keys.lookup(hostname)
        if existing is not None:
            existing_key = existing.get(key.get_name())
            if existing_key is not None and existing_key != key:
                raise paramiko.SSHException(
                    f"Host key for {hostname} has CHANGED. If the server key was "
                    f"legitimately changed, remove the old entry from "
                    f"{self._known_hosts_path} and try again."
                )

        logger.info("Adding host key for %s to known_hosts", hostname)
        host_keys.add(hostname, key.get_name(), key)
        try:
            self._known_hosts_path.parent.mkdir(parents=True, exist_ok=True)
            host_keys.save(str(self._known_hosts_path))
        except OSError as e:
            logger.warning("Could not save known_hosts: %s", e)


class SFTPClient:
    """
    Wrapper around paramiko's SSH/SFTP with the same interface as FTPClient.

    Like FTPClient, it never reconnects on its own: a lost transport
    surfaces as ConnectionError.
    """

    def __init__(self, ssh_config: SSHConfig, conn_config: ConnectionConfig):
        self.ssh_config = ssh_config
        self.conn_config = conn_config
        self._ssh: paramiko.SSHClient | None = None
        self._sftp: paramiko.SFTPClient | None = None
        self._lock = threading.Lock()
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        """Open SSH connection and SFTP session. No-op if already connected."""
        with self._lock:
            if self._connected:
                return
            self._connect_internal()

    def _connect_internal(self) -> None:
        """Internal connect without lock - caller must hold lock."""
        try:
            self._ssh = paramiko.SSHClient()
            self._ssh.load_system_host_keys()
            self._ssh.set_missing_host_key_policy(TrustOnFirstUsePolicy())

            connect_kwargs: dict = {
                "hostname": self.ssh_config.host,
                "port": self.ssh_config.port,
                "timeout": self.conn_config.timeout_seconds,
                "allow_agent": self.ssh_config.use_agent,
            }
            if self.ssh_config.username:
                connect_kwargs["username"] = self.ssh_config.username

            # Auth priority: key file -> password -> agent/default keys
            if self.ssh_config.key_file:
                connect_kwargs["key_filename"] = os.path.expanduser(self.ssh_config.key_file)
                if self.ssh_config.key_passphrase:
                    connect_kwargs["passphrase"] = self.ssh_config.key_passphrase
                connect_kwargs["look_for_keys"] = True
            elif self.ssh_config.password:
                connect_kwargs["password"] = self.ssh_config.password
                connect_kwargs["look_for_keys"] = False
            else:
                connect_kwargs["look_for_keys"] = True

            logger.debug("Connecting to SSH %s:%d", self.ssh_config.host, self.ssh_config.port)
            self._ssh.connect(**connect_kwargs)
            self._sftp = self._ssh.open_sftp()
            self._connected = True
            logger.info("Connected to SSH server %s:%d", self.ssh_config.host, self.ssh_config.port)

        except paramiko.AuthenticationException as e:
            self._cleanup_connections()
            logger.error("SSH authentication failed: %s", e)
            raise PermissionError(f"SSH authentication failed: {e}") from e
        except TimeoutError as e:
            self._cleanup_connections()
            logger.error("SSH connection timeout: %s", e)
            raise TimeoutError(f"SSH connection timeout: {e}") from e
        except (OSError, paramiko.SSHException) as e:
            self._cleanup_connections()
            logger.error("SSH connection failed: %s", e)
            raise ConnectionError(f"SSH connection failed: {e}") from e

    def _cleanup_connections(self) -> None:
        """Close SFTP and SSH, logging close failures."""
        for handle in (self._sftp, self._ssh):
            if handle is None:
                continue
            try:
                handle.close()
            except (OSError, paramiko.SSHException) as e:
                logger.debug("Ignoring error while closing SSH handle: %s", e)
        self._sftp = None
        self._ssh = None
        self._connected = False

    def disconnect(self) -> None:
        with self._lock:
            self._cleanup_connections()
            logger.debug("SSH connection closed")

    def _normalize_path(self, path: str) -> str:
        """Ensure path has leading slash and uses forward slashes."""
        path = path.replace("\\", "/")
        if not path.startswith("/"):
            path = "/" + path
        return path

    def _translate_io_error(self, error: OSError, path: str) -> OSError:
        """Translate SFTP IOError to standard Python exceptions."""
        code = getattr(error, "errno", None)
        if code == errno.ENOENT:
            return FileNotFoundError(f"No such file or directory: {path}")
        if code == errno.EACCES:
            return PermissionError(f"Permission denied: {path}")
        if code == errno.EEXIST:
            return FileExistsError(f"File exists: {path}")
        return OSError(f"{path}: {error}")

    def _run(self, operation: str, path: str, func, *args):
        with self._lock:
            if not self._connected or self._sftp is None or self._ssh is None:
                raise ConnectionError(f"{operation} failed: not connected")
            transport = self._ssh.get_transport()
            if transport is None or not transport.is_active():
                self._connected = False
                raise ConnectionError(f"{operation} failed: connection lost")
            try:
                return func(*args)
            except (ConnectionError, EOFError, paramiko.SSHException) as e:
                self._connected = False
                raise ConnectionError(f"{operation} failed: {e}") from e
            except TimeoutError as e:
                raise TimeoutError(f"{operation} timed out") from e
            except OSError as e:
                raise self._translate_io_error(e, path) from e

    def _stat_to_remote_file(self, attr, path: str) -> RemoteFile:
        is_dir = stat.S_ISDIR(attr.st_mode) if attr.st_mode else False
        return RemoteFile(
            name=posixpath.basename(path) or "/",
            size=attr.st_size if attr.st_size and not is_dir else 0,
            mtime=datetime.fromtimestamp(attr.st_mtime) if attr.st_mtime else datetime.now(),
            is_dir=is_dir,
            path=path,
        )

    def list_dir(self, path: str) -> list[RemoteFile]:
        path = self._normalize_path(path)
        logger.debug("Listing directory: %s", path)
        return self._run(f"list_dir({path})", path, self._list_dir_internal, path)

    def _list_dir_internal(self, path: str) -> list[RemoteFile]:
        results = []
        for attr in self._sftp.listdir_attr(path):
            if attr.filename in (".", ".."):
                continue
            results.append(self._stat_to_remote_file(attr, join_path(path, attr.filename)))
        logger.debug("Listed %d entries in %s", len(results), path)
        return results

    def tree(self, path: str) -> list[RemoteDir]:
        path = self._normalize_path(path)
        logger.debug("Listing directory tree: %s", path)
        return self._run(f"tree({path})", path, self._tree_internal, path)

    def _tree_internal(self, path: str) -> list[RemoteDir]:
        dirs = sorted(
            (entry for entry in self._list_dir_internal(path) if entry.is_dir),
            key=lambda entry: entry.name,
        )
        return [
            RemoteDir(name=entry.name, path=entry.path, subdirectories=self._tree_internal(entry.path))
            for entry in dirs
        ]

    def get_file_info(self, path: str) -> RemoteFile:
        path = self._normalize_path(path)
        logger.debug("Getting file info: %s", path)
        return self._run(
            f"get_file_info({path})",
            path,
            lambda: self._stat_to_remote_file(self._sftp.stat(path), path),
        )

    def is_file(self, path: str) -> bool:
        try:
            return not self.get_file_info(path).is_dir
        except FileNotFoundError:
            return False

    def is_dir(self, path: str) -> bool:
        try:
            return self.get_file_info(path).is_dir
        except FileNotFoundError:
            return False

    def read_file(self, path: str) -> bytes:
        path = self._normalize_path(path)
        logger.debug("Reading file: %s", path)
        return self._run(f"read_file({path})", path, self._read_internal, path)

    def _read_internal(self, path: str) -> bytes:
        buffer = BytesIO()
        self._sftp.getfo(path, buffer)
        return buffer.getvalue()

    def put_file(self, path: str, local_path: str | Path) -> None:
        path = self._normalize_path(path)
        logger.debug("Uploading %s -> %s", local_path, path)
        self._run(f"put_file({path})", path, lambda: self._sftp.put(str(local_path), path))

    def chmod(self, path: str, mode: int) -> None:
        path = self._normalize_path(path)
        logger.debug("Changing mode of %s to %o", path, mode)
        self._run(f"chmod({path})", path, lambda: self._sftp.chmod(path, mode))

    def create_dir(self, path: str) -> None:
        path = self._normalize_path(path)
        logger.debug("Creating directory: %s", path)
        self._run(f"create_dir({path})", path, lambda: self._sftp.mkdir(path))

    def delete_file(self, path: str) -> None:
        path = self._normalize_path(path)
        logger.debug("Deleting file: %s", path)
        self._run(f"delete_file({path})", path, lambda: self._sftp.remove(path))

    def delete_dir(self, path: str) -> None:
        path = self._normalize_path(path)
        logger.debug("Deleting directory tree: %s", path)
        self._run(f"delete_dir({path})", path, self._delete_tree, path)

    def _delete_tree(self, path: str) -> None:
        for entry in self._list_dir_internal(path):
            if entry.is_dir:
                self._delete_tree(entry.path)
            else:
                self._sftp.remove(entry.path)
        self._sftp.rmdir(path)

    def rename(self, old_path: str, new_path: str) -> None:
        old_path = self._normalize_path(old_path)
        new_path = self._normalize_path(new_path)
        logger.debug("Renaming: %s -> %s", old_path, new_path)
        self._run(
            f"rename({old_path}, {new_path})",
            old_path,
            lambda: self._sftp.rename(old_path, new_path),
        )

    def copy_file(self, src: str, dst: str) -> None:
        src = self._normalize_path(src)
        dst = self._normalize_path(dst)
        logger.debug("Copying file: %s -> %s", src, dst)
        self._run(f"copy_file({src}, {dst})", src, self._copy_file_internal, src, dst)

    def _copy_file_internal(self, src: str, dst: str) -> None:
        self._sftp.putfo(BytesIO(self._read_internal(src)), dst)

    def copy_dir(self, src: str, dst: str) -> None:
        src = self._normalize_path(src)
        dst = self._normalize_path(dst)
        logger.debug("Copying directory: %s -> %s", src, dst)
        self._run(f"copy_dir({src}, {dst})", src, self._copy_tree, src, dst)

    def _copy_tree(self, src: str, dst: str) -> None:
        self._sftp.mkdir(dst)
        for entry in self._list_dir_internal(src):
            target = join_path(dst, entry.name)
            if entry.is_dir:
                self._copy_tree(entry.path, target)
            else:
                self._copy_file_internal(entry.path, target)
