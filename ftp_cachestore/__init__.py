__version__ = "0.1.0"

# Public API exports
from .cache import DirectoryCache
from .config import (
    AppConfig,
    CacheConfig,
    ConnectionConfig,
    FTPConfig,
    LogConfig,
    SSHConfig,
    StorageConfig,
    load_config,
)
from .entry import Entry, EntryKind, Folder
from .errors import ConfigurationError, StorageError
from .ftp_client import FTPClient, RemoteDir, RemoteFile
from .listing import EntryConverter
from .remote_client import RemoteClient
from .sftp_client import SFTPClient
from .storage import FTPStorage, UploadedFile, create_client, normalize_file_name

__all__ = [
    "__version__",
    # Configuration
    "AppConfig",
    "FTPConfig",
    "SSHConfig",
    "StorageConfig",
    "CacheConfig",
    "ConnectionConfig",
    "LogConfig",
    "load_config",
    # Errors
    "StorageError",
    "ConfigurationError",
    # Clients
    "RemoteClient",
    "FTPClient",
    "SFTPClient",
    "RemoteFile",
    "RemoteDir",
    "create_client",
    # Cache
    "Entry",
    "EntryKind",
    "Folder",
    "DirectoryCache",
    "EntryConverter",
    # Storage
    "FTPStorage",
    "UploadedFile",
    "normalize_file_name",
]
