from __future__ import annotations
"""Process-lifetime caches for bucket regions and catalog bucket identifiers.

Entries are never invalidated. A bucket that changes region (or a catalog
bucket that is recreated under a new identifier) needs a new adapter
instance to be seen.
"""
import logging
import threading
from typing import Callable, Iterable, Optional

from .errors import ItemNotFoundError
from .settings import DEFAULT_REGION

LOGGER = logging.getLogger(__name__)

LEGACY_REGION_ALIASES = {
    "EU": "eu-west-1",
    "US": DEFAULT_REGION,
}


def normalize_bucket_region(location: Optional[str]) -> str:
    """Map a bucket location constraint onto a region name."""

    if not location or location == "NOT_SET":
        return DEFAULT_REGION
    return LEGACY_REGION_ALIASES.get(location, location)


class ReadThroughCache:
    """Mutex-guarded ``name -> value`` map.

    The lock is only held for the lookup or update itself; callers fetch
    missing values without holding it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: dict[str, str] = {}

    def lookup(self, name: str) -> Optional[str]:
        with self._lock:
            return self._values.get(name)

    def store(self, name: str, value: str) -> None:
        if not name or not value:
            return
        with self._lock:
            self._values[name] = value

    def replace_all(self, items: Iterable[tuple[str, str]]) -> None:
        fresh = {name: value for name, value in items if name and value}
        with self._lock:
            self._values = fresh

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)


class BucketRegionCache(ReadThroughCache):
    """Memoizes the region of each object-storage bucket."""

    def ensure_region(self, bucket: str, fetch_location: Callable[[str], Optional[str]]) -> str:
        cached = self.lookup(bucket)
        if cached is not None:
            return cached
        region = normalize_bucket_region(fetch_location(bucket))
        LOGGER.debug("Resolved region '%s' for bucket '%s'", region, bucket)
        self.store(bucket, region)
        return region


class CatalogBucketIdentityCache(ReadThroughCache):
    """Memoizes the identifier (ARN) of each catalog bucket by name."""

    def ensure_identity(self, bucket: str, refresh: Callable[[], object]) -> str:
        """Return the identifier for ``bucket``.

        On a miss, ``refresh`` re-lists every catalog bucket (which repopulates
        this cache) and the lookup is retried once.
        """

        cached = self.lookup(bucket)
        if cached is not None:
            return cached
        refresh()
        cached = self.lookup(bucket)
        if cached is None:
            raise ItemNotFoundError(f"Catalog bucket '{bucket}' does not exist")
        return cached
