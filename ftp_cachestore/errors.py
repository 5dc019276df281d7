"""
Domain errors raised by the storage facade.

Remote transport failures are never leaked to callers as raw protocol
exceptions; they are wrapped in StorageError with the original exception
chained as __cause__.
"""


class StorageError(Exception):
    """Error meaningful to callers of FTPStorage."""

    def __init__(self, message: str, operation: str | None = None, name: str | None = None):
        super().__init__(message)
        self.operation = operation
        self.name = name


class ConfigurationError(StorageError):
    """Invalid or incomplete configuration, raised before any remote access."""
