"""
Metadata model for remote files and folders.

An Entry is what the cache persists for each name in a directory. A
Folder is a node of the directory-only tree returned by list_folders.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EntryKind(str, Enum):
    FILE = "file"
    DIRECTORY = "dir"


@dataclass
class Entry:
    """Cached metadata for one remote file or directory."""

    name: str
    kind: EntryKind = EntryKind.FILE
    size: int = 0
    modified: str = ""
    width: int | None = None
    height: int | None = None
    thumbnail: bytes | None = None
    # Listing context set by the facade, not persisted
    directory_url: str = field(default="", compare=False)

    @property
    def is_dir(self) -> bool:
        return self.kind is EntryKind.DIRECTORY

    def to_record(self) -> dict[str, Any]:
        """Serialize to the JSON-compatible record stored in a cache file."""
        thumbnail = None
        if self.thumbnail is not None:
            thumbnail = base64.b64encode(self.thumbnail).decode("ascii")
        return {
            "name": self.name,
            "type": self.kind.value,
            "size": self.size,
            "modified": self.modified,
            "width": self.width,
            "height": self.height,
            "thumbnail": thumbnail,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Entry:
        """
        Rebuild an Entry from a stored record.

        Raises:
            KeyError: If name or type is missing.
            ValueError: If type is unknown or the thumbnail is not valid base64.
        """
        thumbnail = record.get("thumbnail")
        if thumbnail is not None:
            thumbnail = base64.b64decode(thumbnail, validate=True)
        return cls(
            name=record["name"],
            kind=EntryKind(record["type"]),
            size=int(record.get("size") or 0),
            modified=record.get("modified") or "",
            width=record.get("width"),
            height=record.get("height"),
            thumbnail=thumbnail,
        )


@dataclass
class Folder:
    """Directory tree node with a logical (base-path relative) path."""

    name: str
    path: str
    children: list[Folder] = field(default_factory=list)
