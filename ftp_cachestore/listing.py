"""
Conversion of raw remote listing records into cache entries.

Image files get their content fetched once so width, height and a small
thumbnail can be stored with the entry. This only happens on a cache
miss; cached entries never trigger another fetch.
"""

import logging
import posixpath
from collections.abc import Callable

from . import imaging
from .entry import Entry, EntryKind
from .ftp_client import RemoteFile, join_path
from .remote_client import RemoteClient

logger = logging.getLogger(__name__)

MODIFIED_FORMAT = "%Y-%m-%dT%H:%M:%S"


def file_extension(name: str) -> str:
    return posixpath.splitext(name)[1].lstrip(".").lower()


def is_web_image(name: str) -> bool:
    return file_extension(name) in imaging.IMAGE_EXTENSIONS


class EntryConverter:
    """Builds Entry objects from RemoteFile records, with image introspection."""

    def __init__(
        self,
        client: RemoteClient,
        dimensions: Callable[[bytes], tuple[int, int] | None] = imaging.dimensions,
        thumbnail: Callable[[bytes, str, int], bytes | None] = imaging.thumbnail,
        thumbnail_size: int = imaging.THUMBNAIL_SIZE,
    ):
        self.client = client
        self._dimensions = dimensions
        self._thumbnail = thumbnail
        self.thumbnail_size = thumbnail_size

    def convert(self, directory: str, remote_file: RemoteFile) -> Entry:
        """
        Build an Entry for one listing record.

        Args:
            directory: Absolute remote directory containing the record.
            remote_file: The raw listing record.

        Raises:
            ConnectionError: If the connection drops while fetching an image.
        """
        entry = Entry(
            name=remote_file.name,
            kind=EntryKind.DIRECTORY if remote_file.is_dir else EntryKind.FILE,
            size=remote_file.size,
            modified=remote_file.mtime.strftime(MODIFIED_FORMAT) if remote_file.mtime else "",
        )
        if entry.is_dir or not is_web_image(entry.name):
            return entry

        try:
            content = self.client.read_file(join_path(directory, entry.name))
        except ConnectionError:
            raise
        except OSError as e:
            logger.warning("Cannot fetch image %s: %s", entry.name, e)
            return entry
        if not content:
            return entry

        size = self._dimensions(content)
        if size is not None:
            entry.width, entry.height = size
        entry.thumbnail = self._thumbnail(content, file_extension(entry.name), self.thumbnail_size)
        logger.debug(
            "Image %s: %sx%s, thumbnail %s",
            entry.name,
            entry.width,
            entry.height,
            "ok" if entry.thumbnail else "failed",
        )
        return entry

    def convert_all(self, directory: str, remote_files: list[RemoteFile]) -> dict[str, Entry]:
        """Convert a full listing, keyed by name in ascending order."""
        entries = [self.convert(directory, remote_file) for remote_file in remote_files]
        return {entry.name: entry for entry in sorted(entries, key=lambda e: e.name)}
