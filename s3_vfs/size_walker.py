from __future__ import annotations
"""Recursive or shallow size aggregation over an object prefix."""
import logging
import time
from typing import Callable, Optional

from .context import ResolvedContext
from .errors import NotSupportedError
from .listing import DELIMITER, ObjectStorageListing
from .models import DirectorySizeResult
from .paths import as_prefix, has_trailing_separator, join_key, normalize_path, split_segments

LOGGER = logging.getLogger(__name__)

PROGRESS_INTERVAL_ENTRIES = 250
PROGRESS_INTERVAL_SECONDS = 0.25
MAX_TOTAL_BYTES = 2**64 - 1

SizeProgressCallback = Callable[[DirectorySizeResult, Optional[str]], None]


class DirectorySizeWalker:
    """Pages through a prefix listing, accumulating sizes and counts.

    Progress is reported (and cancellation polled) every
    ``interval_entries`` scanned entries or ``interval_seconds`` of wall
    time, whichever comes first.
    """

    def __init__(
        self,
        listing: ObjectStorageListing,
        *,
        interval_entries: int = PROGRESS_INTERVAL_ENTRIES,
        interval_seconds: float = PROGRESS_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._listing = listing
        self._interval_entries = max(1, interval_entries)
        self._interval_seconds = interval_seconds
        self._clock = clock

    def compute(
        self,
        context: ResolvedContext,
        canonical_path: str,
        *,
        recursive: bool = True,
        progress_callback: Optional[SizeProgressCallback] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> DirectorySizeResult:
        normalized = normalize_path(canonical_path)
        segments = split_segments(normalized)
        if not segments:
            raise NotSupportedError("Sizing every bucket is not supported")

        bucket = segments[0]
        key = join_key(segments)
        bucket_context = self._listing.bucket_context(context, bucket)
        client = self._listing.client(bucket_context)
        result = DirectorySizeResult()

        if key and not has_trailing_separator(normalized):
            summary = self._listing.find_object(bucket_context, bucket, key, client=client)
            if summary is not None:
                result.total_bytes = summary.size_bytes
                result.file_count = 1
                result.scanned_entries = 1
                if progress_callback is not None:
                    progress_callback(result, normalized)
                if should_cancel is not None and should_cancel():
                    result.cancelled = True
                return result

        prefix = as_prefix(key)
        last_report = self._clock()

        def checkpoint() -> bool:
            """Report progress when due; return ``False`` once cancelled."""

            nonlocal last_report
            now = self._clock()
            due = result.scanned_entries % self._interval_entries == 0
            if not due and now - last_report < self._interval_seconds:
                return True
            last_report = now
            if progress_callback is not None:
                progress_callback(result, normalized)
            if should_cancel is not None and should_cancel():
                result.cancelled = True
                return False
            return True

        for page in self._listing.iter_pages(
            bucket_context,
            bucket,
            prefix,
            delimiter=None if recursive else DELIMITER,
            client=client,
        ):
            if not recursive:
                for _common in page.get("CommonPrefixes", []):
                    result.directory_count += 1
                    result.scanned_entries += 1
                    if not checkpoint():
                        return self._cancelled(result, normalized)

            for obj in page.get("Contents", []):
                if prefix and obj.get("Key") == prefix:
                    continue
                result.file_count += 1
                result.scanned_entries += 1
                result.total_bytes = min(result.total_bytes + int(obj.get("Size") or 0), MAX_TOTAL_BYTES)
                if not checkpoint():
                    return self._cancelled(result, normalized)

        if progress_callback is not None:
            progress_callback(result, None)
        LOGGER.debug(
            "Sized '%s': %d bytes in %d files, %d directories",
            normalized,
            result.total_bytes,
            result.file_count,
            result.directory_count,
        )
        return result

    @staticmethod
    def _cancelled(result: DirectorySizeResult, path: str) -> DirectorySizeResult:
        LOGGER.info("Size walk of '%s' cancelled after %d entries", path, result.scanned_entries)
        return result
