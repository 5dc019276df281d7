"""
Remote client protocol definition.

Defines the interface that both FTPClient and SFTPClient implement, so
the storage facade can work with either transport. All paths are
absolute remote paths. Failures are raised as OSError subclasses
(FileNotFoundError, PermissionError, TimeoutError, ConnectionError).
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from .ftp_client import RemoteDir, RemoteFile


@runtime_checkable
class RemoteClient(Protocol):
    """Protocol defining the remote directory service used by FTPStorage."""

    def connect(self) -> None:
        """Establish the connection. No-op if already connected."""
        ...

    def disconnect(self) -> None:
        """Close the connection."""
        ...

    def list_dir(self, path: str) -> list[RemoteFile]:
        """List contents of a directory.

        Raises:
            FileNotFoundError: If path does not exist.
        """
        ...

    def tree(self, path: str) -> list[RemoteDir]:
        """Recursively list subdirectories of path."""
        ...

    def get_file_info(self, path: str) -> RemoteFile:
        """Get metadata for a single file or directory."""
        ...

    def read_file(self, path: str) -> bytes:
        """Download a whole file (may be empty)."""
        ...

    def put_file(self, path: str, local_path: str | Path) -> None:
        """Upload a local file."""
        ...

    def chmod(self, path: str, mode: int) -> None:
        """Set permission bits."""
        ...

    def create_dir(self, path: str) -> None:
        """Create a directory."""
        ...

    def delete_file(self, path: str) -> None:
        """Delete a file."""
        ...

    def delete_dir(self, path: str) -> None:
        """Delete a directory and its contents."""
        ...

    def rename(self, old_path: str, new_path: str) -> None:
        """Rename or move a file/directory."""
        ...

    def copy_file(self, src: str, dst: str) -> None:
        """Copy a file."""
        ...

    def copy_dir(self, src: str, dst: str) -> None:
        """Recursively copy a directory."""
        ...

    def is_file(self, path: str) -> bool:
        """True if path exists and is a regular file."""
        ...

    def is_dir(self, path: str) -> bool:
        """True if path exists and is a directory."""
        ...
