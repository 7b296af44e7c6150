from __future__ import annotations
"""Directory listing emulation over the flat object-storage and catalog APIs."""
from datetime import datetime
import json
import logging
from typing import Callable, Iterator, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .cache import BucketRegionCache, CatalogBucketIdentityCache
from .context import (
    ClientFactory,
    ResolvedContext,
    create_s3_client,
    create_table_client,
    log_backend_failure,
)
from .errors import FileSystemError, InvalidArgumentError, translate_error
from .models import DirectoryEntry, ObjectSummary, S3Location
from .paths import as_prefix, join_key, normalize_path, split_segments
from .settings import MAX_PAGE_SIZE

LOGGER = logging.getLogger(__name__)

DELIMITER = "/"
TABLE_SUFFIX = ".table.json"


def call_backend(
    prefix: str,
    operation: str,
    context: ResolvedContext,
    details: str,
    func: Callable[..., dict],
    **kwargs,
) -> dict:
    """Invoke one backend API call, translating and logging any failure."""

    try:
        return func(**kwargs)
    except (ClientError, BotoCoreError) as exc:
        log_backend_failure(prefix, operation, context, exc, details)
        raise translate_error(exc) from exc


def build_client(create, context: ResolvedContext, client_factory: ClientFactory):
    try:
        return create(context, client_factory)
    except BotoCoreError as exc:
        log_backend_failure("S3", "CreateClient", context, exc, f"region='{context.region}'")
        raise translate_error(exc) from exc


def parse_location(canonical_path: str) -> S3Location:
    """Split a canonical path into bucket and directory prefix."""

    segments = split_segments(normalize_path(canonical_path))
    if not segments:
        return S3Location(is_root=True)
    return S3Location(bucket=segments[0], key_or_prefix=as_prefix(join_key(segments)))


def strip_table_suffix(leaf: str) -> str:
    if leaf.lower().endswith(TABLE_SUFFIX):
        return leaf[: -len(TABLE_SUFFIX)]
    return leaf


class ObjectStorageListing:
    """Lists buckets and pseudo-directories of an S3-compatible backend."""

    def __init__(self, client_factory: ClientFactory, region_cache: BucketRegionCache):
        self._client_factory = client_factory
        self._region_cache = region_cache

    def client(self, context: ResolvedContext):
        return build_client(create_s3_client, context, self._client_factory)

    def bucket_context(self, context: ResolvedContext, bucket: str) -> ResolvedContext:
        """Return ``context`` adjusted to the region ``bucket`` lives in.

        Custom endpoints and explicitly chosen regions are used as-is.
        """

        if not bucket:
            raise InvalidArgumentError("Bucket name is required")
        if context.endpoint_override or context.explicit_region:
            return context
        region = self.ensure_region(context, bucket)
        return context.with_region(region)

    def ensure_region(self, context: ResolvedContext, bucket: str, *, client=None) -> str:
        def fetch_location(name: str) -> Optional[str]:
            response = call_backend(
                "S3",
                "GetBucketLocation",
                context,
                f"bucket='{name}'",
                (client or self.client(context)).get_bucket_location,
                Bucket=name,
            )
            return response.get("LocationConstraint")

        return self._region_cache.ensure_region(bucket, fetch_location)

    def list_buckets(self, context: ResolvedContext, *, client=None) -> list[DirectoryEntry]:
        client = client or self.client(context)
        response = call_backend("S3", "ListBuckets", context, "buckets", client.list_buckets)
        entries = []
        for bucket in response.get("Buckets", []):
            name = bucket.get("Name")
            if not name:
                continue
            created = bucket.get("CreationDate")
            entries.append(
                DirectoryEntry(
                    name=name,
                    is_directory=True,
                    creation_time=created,
                    last_write_time=created,
                    change_time=created,
                )
            )
        return entries

    def list_buckets_for_connection(self, context: ResolvedContext) -> list[DirectoryEntry]:
        """List buckets, keeping only those in the explicitly chosen region.

        Region filtering is skipped for custom endpoints, which may not
        implement bucket location queries.
        """

        client = self.client(context)
        entries = self.list_buckets(context, client=client)
        if not context.explicit_region or context.endpoint_override:
            return entries

        wanted = context.explicit_region.casefold()
        filtered = []
        for entry in entries:
            try:
                region = self.ensure_region(context, entry.name, client=client)
            except FileSystemError:
                LOGGER.debug("Skipping bucket '%s': region lookup failed", entry.name)
                continue
            if region.casefold() == wanted:
                filtered.append(entry)
        return filtered

    def iter_pages(
        self,
        context: ResolvedContext,
        bucket: str,
        prefix: str,
        *,
        delimiter: str | None = DELIMITER,
        page_size: int | None = None,
        client=None,
    ) -> Iterator[dict]:
        """Yield raw ``ListObjectsV2`` pages until the listing is exhausted."""

        client = client or self.client(context)
        params: dict[str, object] = {
            "Bucket": bucket,
            "MaxKeys": min(page_size or context.max_keys, MAX_PAGE_SIZE),
        }
        if prefix:
            params["Prefix"] = prefix
        if delimiter:
            params["Delimiter"] = delimiter
        details = f"bucket='{bucket}' prefix='{prefix}'"

        while True:
            response = call_backend(
                "S3", "ListObjectsV2", context, details, client.list_objects_v2, **params
            )
            yield response
            token = response.get("NextContinuationToken")
            if not response.get("IsTruncated") or not token:
                break
            params["ContinuationToken"] = token

    def list_objects(self, context: ResolvedContext, location: S3Location) -> list[DirectoryEntry]:
        prefix = location.key_or_prefix
        entries: list[DirectoryEntry] = []
        for page in self.iter_pages(context, location.bucket, prefix):
            for common in page.get("CommonPrefixes", []):
                name = common.get("Prefix", "")
                if prefix and name.startswith(prefix):
                    name = name[len(prefix):]
                name = name.rstrip("/")
                if name:
                    entries.append(DirectoryEntry(name=name, is_directory=True))

            for obj in page.get("Contents", []):
                key = obj.get("Key", "")
                # Folder marker for the listed prefix itself.
                if prefix and key == prefix:
                    continue
                name = key[len(prefix):] if prefix and key.startswith(prefix) else key
                # A delimited listing never returns deeper keys.
                name = name.split("/", 1)[0]
                if not name:
                    continue
                modified = obj.get("LastModified")
                entries.append(
                    DirectoryEntry(
                        name=name,
                        size_bytes=int(obj.get("Size") or 0),
                        last_write_time=modified,
                        change_time=modified,
                    )
                )
        return entries

    def find_object(
        self, context: ResolvedContext, bucket: str, key: str, *, client=None
    ) -> Optional[ObjectSummary]:
        """Probe for an object whose key equals ``key`` exactly."""

        if not bucket or not key:
            raise InvalidArgumentError("Bucket and key are required")
        response = call_backend(
            "S3",
            "ListObjectsV2",
            context,
            f"bucket='{bucket}' key='{key}'",
            (client or self.client(context)).list_objects_v2,
            Bucket=bucket,
            Prefix=key,
            MaxKeys=1,
        )
        for obj in response.get("Contents", []):
            if obj.get("Key") == key:
                return ObjectSummary(
                    key=key,
                    size_bytes=int(obj.get("Size") or 0),
                    last_modified=obj.get("LastModified"),
                )
        return None

    def prefix_has_children(self, context: ResolvedContext, bucket: str, key: str, *, client=None) -> bool:
        """Return whether any object lives under ``key/``."""

        prefix = as_prefix(key)
        response = call_backend(
            "S3",
            "ListObjectsV2",
            context,
            f"bucket='{bucket}' prefix='{prefix}'",
            (client or self.client(context)).list_objects_v2,
            Bucket=bucket,
            Prefix=prefix,
            MaxKeys=1,
        )
        return bool(response.get("Contents"))

    def delete_object(self, context: ResolvedContext, bucket: str, key: str, *, client=None) -> None:
        call_backend(
            "S3",
            "DeleteObject",
            context,
            f"bucket='{bucket}' key='{key}'",
            (client or self.client(context)).delete_object,
            Bucket=bucket,
            Key=key,
        )


class CatalogListing:
    """Lists table buckets, namespaces and tables (three fixed levels)."""

    def __init__(self, client_factory: ClientFactory, identity_cache: CatalogBucketIdentityCache):
        self._client_factory = client_factory
        self._identity_cache = identity_cache

    def client(self, context: ResolvedContext):
        return build_client(create_table_client, context, self._client_factory)

    def list_directory(self, context: ResolvedContext, canonical_path: str) -> list[DirectoryEntry]:
        segments = split_segments(normalize_path(canonical_path))
        if not segments:
            return self.list_table_buckets(context)
        if len(segments) == 1:
            return self.list_namespaces(context, segments[0])
        if len(segments) == 2:
            return self.list_tables(context, segments[0], segments[1])
        raise InvalidArgumentError(f"'{canonical_path}' is not a catalog directory")

    def _paginate(
        self,
        context: ResolvedContext,
        operation: str,
        details: str,
        func: Callable[..., dict],
        items_key: str,
        **params,
    ) -> Iterator[dict]:
        while True:
            response = call_backend("S3Tables", operation, context, details, func, **params)
            yield from response.get(items_key, [])
            token = response.get("continuationToken")
            if not token:
                break
            params["continuationToken"] = token

    def list_table_buckets(self, context: ResolvedContext) -> list[DirectoryEntry]:
        """List catalog buckets and repopulate the identifier cache."""

        client = self.client(context)
        entries = []
        identities = []
        for bucket in self._paginate(
            context,
            "ListTableBuckets",
            "tableBuckets",
            client.list_table_buckets,
            "tableBuckets",
            maxBuckets=min(context.max_table_results, MAX_PAGE_SIZE),
        ):
            name = bucket.get("name")
            if not name:
                continue
            created = bucket.get("createdAt")
            entries.append(
                DirectoryEntry(
                    name=name,
                    is_directory=True,
                    creation_time=created,
                    last_write_time=created,
                    change_time=created,
                )
            )
            if bucket.get("arn"):
                identities.append((name, bucket["arn"]))
        self._identity_cache.replace_all(identities)
        LOGGER.debug("Cached %d catalog bucket identifiers", len(identities))
        return entries

    def bucket_identity(self, context: ResolvedContext, bucket: str) -> str:
        if not bucket:
            raise InvalidArgumentError("Catalog bucket name is required")
        return self._identity_cache.ensure_identity(bucket, lambda: self.list_table_buckets(context))

    def list_namespaces(self, context: ResolvedContext, bucket: str) -> list[DirectoryEntry]:
        arn = self.bucket_identity(context, bucket)
        client = self.client(context)
        entries = []
        for namespace in self._paginate(
            context,
            "ListNamespaces",
            f"bucket='{bucket}'",
            client.list_namespaces,
            "namespaces",
            tableBucketARN=arn,
            maxNamespaces=min(context.max_table_results, MAX_PAGE_SIZE),
        ):
            name = ".".join(namespace.get("namespace") or [])
            if not name:
                continue
            created = namespace.get("createdAt")
            entries.append(
                DirectoryEntry(
                    name=name,
                    is_directory=True,
                    creation_time=created,
                    last_write_time=created,
                    change_time=created,
                )
            )
        return entries

    def list_tables(self, context: ResolvedContext, bucket: str, namespace: str) -> list[DirectoryEntry]:
        arn = self.bucket_identity(context, bucket)
        client = self.client(context)
        params: dict[str, object] = {
            "tableBucketARN": arn,
            "maxTables": min(context.max_table_results, MAX_PAGE_SIZE),
        }
        if namespace:
            params["namespace"] = namespace
        entries = []
        for table in self._paginate(
            context,
            "ListTables",
            f"bucket='{bucket}' namespace='{namespace}'",
            client.list_tables,
            "tables",
            **params,
        ):
            name = table.get("name")
            if not name:
                continue
            modified = table.get("modifiedAt")
            entries.append(
                DirectoryEntry(
                    name=f"{name}{TABLE_SUFFIX}",
                    creation_time=table.get("createdAt"),
                    last_write_time=modified,
                    change_time=modified,
                )
            )
        return entries

    def describe_table(self, context: ResolvedContext, bucket: str, namespace: str, table: str) -> dict:
        arn = self.bucket_identity(context, bucket)
        response = call_backend(
            "S3Tables",
            "GetTable",
            context,
            f"bucket='{bucket}' namespace='{namespace}' table='{table}'",
            self.client(context).get_table,
            tableBucketARN=arn,
            namespace=namespace,
            name=table,
        )
        created = response.get("createdAt")
        return {
            "name": response.get("name", ""),
            "tableArn": response.get("tableARN", ""),
            "namespace": list(response.get("namespace") or []),
            "metadataLocation": response.get("metadataLocation", ""),
            "warehouseLocation": response.get("warehouseLocation", ""),
            "versionToken": response.get("versionToken", ""),
            "managedByService": response.get("managedByService", ""),
            "createdAt": created.isoformat() if isinstance(created, datetime) else str(created or ""),
        }

    def table_document(self, context: ResolvedContext, bucket: str, namespace: str, table: str) -> str:
        return json.dumps(self.describe_table(context, bucket, namespace, table), indent=2)
