from __future__ import annotations
"""Packed, offset-chained directory listing buffer.

Each record is a fixed header followed by a UTF-16LE name and a null
terminator, padded to an 8-byte boundary. The header starts with the byte
offset of the next record; the last record stores 0. An empty listing is an
empty buffer, never a zero-length record.
"""
from datetime import datetime, timedelta, timezone
import logging
import struct
from typing import Iterable, Iterator, Optional

from .errors import DataCorruptError, InvalidArgumentError
from .models import FILE_ATTRIBUTE_DIRECTORY, FILE_ATTRIBUTE_NORMAL, DirectoryEntry

LOGGER = logging.getLogger(__name__)

# next offset, file index, creation, last access, last write, change,
# end of file, allocation size, attributes, name size in bytes, ea size
RECORD_HEADER = struct.Struct("<IIqqqqqqIII")
RECORD_ALIGNMENT = 8
NAME_ENCODING = "utf-16-le"
NAME_TERMINATOR = b"\x00\x00"

FILETIME_EPOCH = datetime(1601, 1, 1, tzinfo=timezone.utc)
TICKS_PER_SECOND = 10_000_000


def to_filetime(value: Optional[datetime]) -> int:
    """Convert ``value`` to 100ns ticks since 1601-01-01 UTC (0 for ``None``)."""

    if value is None:
        return 0
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - FILETIME_EPOCH
    ticks = (delta.days * 86_400 + delta.seconds) * TICKS_PER_SECOND + delta.microseconds * 10
    return max(ticks, 0)


def from_filetime(ticks: int) -> Optional[datetime]:
    if ticks <= 0:
        return None
    seconds, remainder = divmod(ticks, TICKS_PER_SECOND)
    return FILETIME_EPOCH + timedelta(seconds=seconds, microseconds=remainder // 10)


def sort_key(entry: DirectoryEntry) -> tuple[bool, str, int]:
    return (not entry.is_directory, entry.name.casefold(), entry.size_bytes)


def _align(size: int) -> int:
    return (size + RECORD_ALIGNMENT - 1) & ~(RECORD_ALIGNMENT - 1)


def record_size(name: str) -> int:
    return _align(RECORD_HEADER.size + len(name.encode(NAME_ENCODING)) + len(NAME_TERMINATOR))


class DirectoryEntryBuffer:
    """Immutable listing result.

    ``count``, ``buffer_size`` and ``allocated_size`` are fixed at
    construction; :meth:`get` walks the record chain from the start.
    """

    def __init__(self, raw: bytes, count: int):
        self._raw = bytes(raw)
        self._count = count

    @classmethod
    def build_from_entries(cls, entries: Iterable[DirectoryEntry]) -> "DirectoryEntryBuffer":
        ordered = sorted(entries, key=sort_key)
        if not ordered:
            return cls(b"", 0)

        sizes = [record_size(entry.name) for entry in ordered]
        buffer = bytearray(sum(sizes))
        offset = 0
        for index, (entry, size) in enumerate(zip(ordered, sizes)):
            name = entry.name.encode(NAME_ENCODING)
            is_last = index == len(ordered) - 1
            RECORD_HEADER.pack_into(
                buffer,
                offset,
                0 if is_last else size,
                0,
                to_filetime(entry.creation_time),
                to_filetime(entry.last_access_time),
                to_filetime(entry.last_write_time),
                to_filetime(entry.change_time),
                0 if entry.is_directory else entry.size_bytes,
                0 if entry.is_directory else _align(entry.size_bytes),
                entry.attributes,
                len(name),
                0,
            )
            start = offset + RECORD_HEADER.size
            buffer[start:start + len(name)] = name
            offset += size
        LOGGER.debug("Packed %d directory entries into %d bytes", len(ordered), len(buffer))
        return cls(bytes(buffer), len(ordered))

    @classmethod
    def from_raw(cls, raw: bytes) -> "DirectoryEntryBuffer":
        """Wrap an existing packed buffer, validating its record chain."""

        count = sum(1 for _ in _walk(bytes(raw)))
        return cls(raw, count)

    @property
    def count(self) -> int:
        return self._count

    @property
    def buffer_size(self) -> int:
        return len(self._raw)

    @property
    def allocated_size(self) -> int:
        return len(self._raw)

    @property
    def raw_buffer(self) -> bytes:
        return self._raw

    def get(self, index: int) -> DirectoryEntry:
        if index < 0 or index >= self._count:
            raise InvalidArgumentError(f"Entry index {index} is out of range (count {self._count})")
        for position, offset in enumerate(_walk(self._raw)):
            if position == index:
                return _decode(self._raw, offset)
        raise DataCorruptError("Directory buffer chain ended early")

    def __len__(self) -> int:
        return self._count

    def __iter__(self) -> Iterator[DirectoryEntry]:
        for offset in _walk(self._raw):
            yield _decode(self._raw, offset)


def _walk(raw: bytes) -> Iterator[int]:
    """Yield the start offset of every record in ``raw``."""

    offset = 0
    while offset < len(raw):
        if offset + RECORD_HEADER.size > len(raw):
            raise DataCorruptError(f"Truncated directory record at offset {offset}")
        yield offset
        (next_offset,) = struct.unpack_from("<I", raw, offset)
        if next_offset == 0:
            return
        if next_offset < RECORD_HEADER.size:
            raise DataCorruptError(f"Invalid next offset {next_offset} at offset {offset}")
        offset += next_offset
    if raw:
        raise DataCorruptError("Directory buffer chain runs past the end of the buffer")


def _decode(raw: bytes, offset: int) -> DirectoryEntry:
    (
        _next,
        _index,
        creation,
        last_access,
        last_write,
        change,
        end_of_file,
        _allocation,
        attributes,
        name_size,
        _ea_size,
    ) = RECORD_HEADER.unpack_from(raw, offset)
    start = offset + RECORD_HEADER.size
    if name_size % 2 or start + name_size > len(raw):
        raise DataCorruptError(f"Invalid name length {name_size} at offset {offset}")
    try:
        name = raw[start:start + name_size].decode(NAME_ENCODING)
    except UnicodeDecodeError as exc:
        raise DataCorruptError(f"Undecodable entry name at offset {offset}") from exc
    is_directory = bool(attributes & FILE_ATTRIBUTE_DIRECTORY)
    if not is_directory and not attributes & FILE_ATTRIBUTE_NORMAL:
        LOGGER.debug("Entry '%s' has unexpected attributes 0x%x", name, attributes)
    return DirectoryEntry(
        name=name,
        is_directory=is_directory,
        size_bytes=end_of_file,
        creation_time=from_filetime(creation),
        last_access_time=from_filetime(last_access),
        last_write_time=from_filetime(last_write),
        change_time=from_filetime(change),
    )
