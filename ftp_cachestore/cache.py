import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from collections.abc import Iterable, Mapping
from pathlib import Path
from urllib.parse import quote, unquote

from .entry import Entry
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
ROOT_KEY = "_"
CACHE_SUFFIX = ".json"
TEMP_SUFFIX = ".tmp"
TEMP_PREFIX = "snapshot-"
# Leaves room for the suffix within a 255-byte file name
MAX_QUOTED_KEY_LENGTH = 200


def normalize_path(path: str) -> str:
    """Normalize a logical path to "/a/b" form, with "/" for the root."""
    path = path.replace("\\", "/").strip("/")
    parts = [part for part in path.split("/") if part]
    return "/" + "/".join(parts)


def cache_key(path: str) -> str:
    """
    Map a logical path to a cache file stem.

    Non-root paths are percent-encoded with no safe characters, so "/a/b"
    and "/a_b" get distinct keys and the mapping can be reversed. Encoded
    keys longer than MAX_QUOTED_KEY_LENGTH are replaced by the SHA-256
    hex digest of the normalized path, keeping file names within the
    255-byte limit of common filesystems. Quoted keys always start with
    "%2F", so the two forms never overlap.
    """
    normalized = normalize_path(path)
    if normalized == "/":
        return ROOT_KEY
    key = quote(normalized, safe="")
    if len(key) > MAX_QUOTED_KEY_LENGTH:
        return hashlib.sha256(normalized.encode("utf-8")).hexdigest()
    return key


def path_from_key(key: str) -> str | None:
    """Inverse of cache_key, or None for digest keys."""
    if key == ROOT_KEY:
        return "/"
    if not key.startswith("%2F"):
        return None
    return unquote(key)


class DirectoryCache:
    """
    Persistent cache of directory listings, one JSON file per logical path.

    Freshness is the cache file's own mtime: a snapshot is served while
    it is younger than ttl_seconds, measured from the last write, not the
    last read. Corrupt files are treated as misses. Writes go to a temp
    file and are published with os.replace, so readers never see a
    partially written snapshot.
    """

    def __init__(self, directory: str | Path, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.directory = Path(directory)
        if not self.directory.is_dir():
            raise ConfigurationError(f'not found directory "{directory}"')
        self.ttl_seconds = ttl_seconds
        # Serializes read-modify-write in update/delete
        self._lock = threading.Lock()

    def cache_file(self, path: str) -> Path:
        return self.directory / f"{cache_key(path)}{CACHE_SUFFIX}"

    def _is_expired(self, mtime: float) -> bool:
        return mtime <= time.time() - self.ttl_seconds

    def save(self, path: str, entries: Mapping[str, Entry] | Iterable[Entry]) -> None:
        """
        Persist a full directory snapshot, replacing any previous one.

        Args:
            path: Logical directory path.
            entries: Entries keyed by name, or an iterable of Entries.

        Raises:
            OSError: If the snapshot cannot be written.
            TypeError, ValueError: If an entry cannot be serialized.
        """
        if isinstance(entries, Mapping):
            entries = entries.values()
        records = {entry.name: entry.to_record() for entry in entries}
        payload = json.dumps(
            {name: records[name] for name in sorted(records)},
            ensure_ascii=False,
            separators=(",", ":"),
        )

        target = self.cache_file(path)
        fd, tmp_name = tempfile.mkstemp(
            prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX, dir=self.directory
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, target)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        logger.debug("Cached %d entries for %s", len(records), normalize_path(path))

    def load(self, path: str) -> dict[str, Entry] | None:
        """
        Retrieve a fresh directory snapshot.

        Args:
            path: Logical directory path.

        Returns:
            Entries keyed by name in ascending order, or None if the
            snapshot is missing, expired or unreadable.
        """
        cache_file = self.cache_file(path)
        try:
            if self._is_expired(cache_file.stat().st_mtime):
                return None
            records = json.loads(cache_file.read_text(encoding="utf-8"))
            entries = [Entry.from_record(record) for record in records.values()]
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Ignoring unreadable cache file %s: %s", cache_file, e)
            return None
        return {entry.name: entry for entry in sorted(entries, key=lambda e: e.name)}

    def update(self, path: str, entry: Entry) -> None:
        """
        Insert or replace a single entry in a directory snapshot.

        An absent or expired snapshot is started empty: the entry written
        is known to be fresh, and no other entries are claimed.
        """
        with self._lock:
            entries = self.load(path) or {}
            entries[entry.name] = entry
            self.save(path, entries)

    def delete(self, path: str, name: str) -> None:
        """Remove a single entry from a directory snapshot, if one is cached."""
        with self._lock:
            entries = self.load(path)
            if entries is None:
                return
            entries.pop(name, None)
            self.save(path, entries)

    def sweep_expired(self) -> int:
        """
        Remove expired snapshots and stale temp files.

        Returns:
            Number of files removed.
        """
        removed = 0
        for cache_file in self.directory.iterdir():
            if cache_file.suffix not in (CACHE_SUFFIX, TEMP_SUFFIX):
                continue
            try:
                if not cache_file.is_file() or not self._is_expired(cache_file.stat().st_mtime):
                    continue
                cache_file.unlink()
                removed += 1
            except FileNotFoundError:
                # Removed by a concurrent sweep
                continue
        if removed:
            logger.info("Removed %d expired cache files from %s", removed, self.directory)
        return removed

    def clear(self) -> int:
        """Remove every cached snapshot regardless of age."""
        removed = 0
        for cache_file in self.directory.glob(f"*{CACHE_SUFFIX}"):
            try:
                cache_file.unlink()
                removed += 1
            except FileNotFoundError:
                continue
        return removed
