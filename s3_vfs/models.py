from __future__ import annotations
"""Data models shared by the listing, transfer and sizing code."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

FILE_ATTRIBUTE_DIRECTORY = 0x10
FILE_ATTRIBUTE_NORMAL = 0x80


class BackendMode(str, Enum):
    """Which backend an adapter instance talks to."""

    S3 = "s3"
    S3_TABLE = "s3table"


@dataclass(frozen=True)
class DirectoryEntry:
    """A single item of a directory listing."""

    name: str
    is_directory: bool = False
    size_bytes: int = 0
    creation_time: Optional[datetime] = None
    last_access_time: Optional[datetime] = None
    last_write_time: Optional[datetime] = None
    change_time: Optional[datetime] = None

    @property
    def attributes(self) -> int:
        return FILE_ATTRIBUTE_DIRECTORY if self.is_directory else FILE_ATTRIBUTE_NORMAL


@dataclass(frozen=True)
class S3Location:
    """Bucket plus key or prefix addressed by a canonical path."""

    bucket: str = ""
    key_or_prefix: str = ""
    is_root: bool = False


@dataclass(frozen=True)
class ObjectSummary:
    """Result of probing for one exact object key."""

    key: str
    size_bytes: int = 0
    last_modified: Optional[datetime] = None


@dataclass
class DirectorySizeResult:
    """Aggregated totals of a directory size walk.

    ``cancelled`` is set when the walk stopped early; the totals then hold
    what was scanned up to that point.
    """

    total_bytes: int = 0
    file_count: int = 0
    directory_count: int = 0
    scanned_entries: int = 0
    cancelled: bool = False


@dataclass(frozen=True)
class FileBasicInformation:
    attributes: int
    creation_time: Optional[datetime] = None
    last_access_time: Optional[datetime] = None
    last_write_time: Optional[datetime] = None


@dataclass(frozen=True)
class DriveInfo:
    display_name: str
    file_system: str
    volume_label: Optional[str] = None
    total_bytes: int = 0
    free_bytes: int = 0
    used_bytes: int = 0


@dataclass(frozen=True)
class PluginMetaData:
    id: str
    short_id: str
    name: str
    description: str
    author: str = "pys3vfs"
    version: str = "0.1"


@dataclass
class PropertySection:
    title: str
    fields: list[tuple[str, str]] = field(default_factory=list)

    def add(self, key: str, value: object) -> None:
        if isinstance(value, bool):
            value = "true" if value else "false"
        self.fields.append((key, "" if value is None else str(value)))
