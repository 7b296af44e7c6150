from __future__ import annotations
"""Filesystem facade over S3 buckets or the S3 Tables catalog."""
import json
import logging
import threading
import time
from typing import Callable, Iterable, Optional

import boto3

from .cache import BucketRegionCache, CatalogBucketIdentityCache
from .context import ClientFactory, ResolvedContext, resolve_context
from .directory_buffer import DirectoryEntryBuffer
from .errors import (
    AccessDeniedError,
    AlreadyExistsError,
    FileSystemError,
    InvalidArgumentError,
    ItemNotFoundError,
    NotSupportedError,
)
from .listing import CatalogListing, ObjectStorageListing, parse_location, strip_table_suffix
from .models import (
    FILE_ATTRIBUTE_DIRECTORY,
    FILE_ATTRIBUTE_NORMAL,
    BackendMode,
    DirectorySizeResult,
    DriveInfo,
    FileBasicInformation,
    PluginMetaData,
    PropertySection,
)
from .paths import has_trailing_separator, is_root, join_key, normalize_path, split_segments
from .profiles import PLUGIN_ID_S3, PLUGIN_ID_S3_TABLE, ConnectionProvider
from .settings import AdapterSettings, configuration_schema, parse_settings
from .size_walker import DirectorySizeWalker, SizeProgressCallback
from .transfer import (
    CancelPredicate,
    ProgressCallback,
    ScratchFileReader,
    ScratchFileWriter,
    download_object,
    stage_bytes,
    upload_object,
)

LOGGER = logging.getLogger(__name__)

PLUGIN_METADATA = {
    BackendMode.S3: PluginMetaData(
        id=PLUGIN_ID_S3,
        short_id="s3",
        name="S3",
        description="Amazon S3 virtual file system.",
    ),
    BackendMode.S3_TABLE: PluginMetaData(
        id=PLUGIN_ID_S3_TABLE,
        short_id="s3table",
        name="S3 Table",
        description="Amazon S3 Tables virtual file system.",
    ),
}


class S3FileSystem:
    """Exposes one backend mode through a filesystem-style operation set.

    Every operation resolves its own :class:`ResolvedContext` from the path.
    Only the bucket region and catalog identity caches outlive a call.
    """

    def __init__(
        self,
        mode: BackendMode = BackendMode.S3,
        *,
        settings: AdapterSettings | None = None,
        connections: ConnectionProvider | None = None,
        client_factory: ClientFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._mode = BackendMode(mode)
        self._connections = connections
        self._client_factory = client_factory or boto3.client
        self._state_lock = threading.Lock()
        self._settings = settings or AdapterSettings()
        self._configuration_json = "{}"
        self._region_cache = BucketRegionCache()
        self._identity_cache = CatalogBucketIdentityCache()
        self._objects = ObjectStorageListing(self._client_factory, self._region_cache)
        self._catalog = CatalogListing(self._client_factory, self._identity_cache)
        self._size_walker = DirectorySizeWalker(self._objects, clock=clock)

    # Host-facing metadata and configuration

    @property
    def mode(self) -> BackendMode:
        return self._mode

    @property
    def metadata(self) -> PluginMetaData:
        return PLUGIN_METADATA[self._mode]

    @property
    def settings(self) -> AdapterSettings:
        with self._state_lock:
            return self._settings

    def configuration_schema(self) -> str:
        return configuration_schema(self._mode)

    def set_configuration(self, configuration_json: str | None) -> None:
        text = configuration_json or "{}"
        settings = parse_settings(text)
        with self._state_lock:
            self._configuration_json = text
            self._settings = settings

    def get_configuration(self) -> str:
        with self._state_lock:
            return self._configuration_json

    def something_to_save(self) -> bool:
        with self._state_lock:
            text = self._configuration_json.strip()
        return bool(text) and text != "{}"

    def capabilities(self) -> str:
        document = {
            "version": 1,
            "operations": {
                "copy": False,
                "move": False,
                "delete": self._mode is BackendMode.S3,
                "rename": False,
                "properties": True,
                "read": True,
                "write": True,
            },
            "concurrency": {
                "copyMoveMax": 1,
                "deleteMax": 1,
                "deleteRecycleBinMax": 1,
            },
            "crossFileSystem": {
                "export": {"copy": ["*"], "move": []},
                "import": {"copy": ["*"], "move": ["*"]},
            },
        }
        return json.dumps(document, indent=2)

    # Directory operations

    def read_directory(self, path: str) -> DirectoryEntryBuffer:
        """List ``path`` and pack the entries into a :class:`DirectoryEntryBuffer`."""

        context, canonical = self._resolve(path)
        if self._mode is BackendMode.S3_TABLE:
            entries = self._catalog.list_directory(context, canonical)
        else:
            location = parse_location(canonical)
            if location.is_root:
                entries = self._objects.list_buckets_for_connection(context)
            else:
                bucket_context = self._objects.bucket_context(context, location.bucket)
                entries = self._objects.list_objects(bucket_context, location)
        LOGGER.debug("Listed %d entries for '%s'", len(entries), canonical)
        return DirectoryEntryBuffer.build_from_entries(entries)

    def get_attributes(self, path: str) -> int:
        context, canonical = self._resolve(path)
        segments = split_segments(canonical)

        if self._mode is BackendMode.S3_TABLE:
            if len(segments) <= 2:
                return FILE_ATTRIBUTE_DIRECTORY
            if len(segments) == 3:
                return FILE_ATTRIBUTE_NORMAL
            raise ItemNotFoundError(f"'{canonical}' does not exist")

        if is_root(canonical) or has_trailing_separator(canonical) or len(segments) <= 1:
            return FILE_ATTRIBUTE_DIRECTORY

        bucket, key = segments[0], join_key(segments)
        bucket_context = self._objects.bucket_context(context, bucket)
        client = self._objects.client(bucket_context)
        if self._objects.find_object(bucket_context, bucket, key, client=client) is not None:
            return FILE_ATTRIBUTE_NORMAL
        if self._objects.prefix_has_children(bucket_context, bucket, key, client=client):
            return FILE_ATTRIBUTE_DIRECTORY
        raise ItemNotFoundError(f"'{canonical}' does not exist")

    def is_directory(self, path: str) -> bool:
        return bool(self.get_attributes(path) & FILE_ATTRIBUTE_DIRECTORY)

    def create_directory(self, path: str) -> None:
        """Succeed for a path that does not exist yet.

        Object storage has no empty directories: nothing is written, and the
        directory appears once an object is stored beneath it.
        """

        if self._mode is not BackendMode.S3:
            raise NotSupportedError("Catalog directories cannot be created")
        try:
            self.get_attributes(path)
        except ItemNotFoundError:
            return
        raise AlreadyExistsError(f"'{normalize_path(path)}' already exists")

    def delete_item(self, path: str) -> None:
        if self._mode is not BackendMode.S3:
            raise NotSupportedError("Deleting catalog items is not supported")
        context, canonical = self._resolve(path)
        if is_root(canonical) or has_trailing_separator(canonical):
            raise AccessDeniedError("Deleting a prefix is not supported")
        segments = split_segments(canonical)
        if len(segments) < 2:
            raise AccessDeniedError("Deleting a bucket is not supported")
        bucket, key = segments[0], join_key(segments)
        bucket_context = self._objects.bucket_context(context, bucket)
        self._objects.delete_object(bucket_context, bucket, key)
        LOGGER.info("Deleted s3://%s/%s", bucket, key)

    def get_directory_size(
        self,
        path: str,
        *,
        recursive: bool = True,
        progress_callback: Optional[SizeProgressCallback] = None,
        should_cancel: Optional[CancelPredicate] = None,
    ) -> DirectorySizeResult:
        if self._mode is not BackendMode.S3:
            raise NotSupportedError("Sizing catalog directories is not supported")
        context, canonical = self._resolve(path)
        return self._size_walker.compute(
            context,
            canonical,
            recursive=recursive,
            progress_callback=progress_callback,
            should_cancel=should_cancel,
        )

    # File content

    def open_reader(
        self,
        path: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelPredicate] = None,
    ) -> ScratchFileReader:
        """Stage the content at ``path`` locally and return a seekable reader."""

        context, canonical = self._resolve(path)
        if is_root(canonical) or has_trailing_separator(canonical):
            raise AccessDeniedError(f"'{canonical}' is a directory")
        segments = split_segments(canonical)

        if self._mode is BackendMode.S3_TABLE:
            if len(segments) != 3:
                raise AccessDeniedError(f"'{canonical}' is not a table document")
            document = self._catalog.table_document(
                context, segments[0], segments[1], strip_table_suffix(segments[2])
            )
            return stage_bytes(document.encode("utf-8"))

        if len(segments) < 2:
            raise AccessDeniedError(f"'{canonical}' is a bucket")
        bucket, key = segments[0], join_key(segments)
        bucket_context = self._objects.bucket_context(context, bucket)
        return download_object(
            self._objects.client(bucket_context),
            bucket_context,
            bucket,
            key,
            progress_callback=progress_callback,
            cancel_requested=cancel_requested,
        )

    def open_writer(
        self,
        path: str,
        *,
        overwrite: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelPredicate] = None,
    ) -> ScratchFileWriter:
        """Return a writer staging content locally until ``commit()``.

        No backend call happens before commit. Existence checks run at
        commit time unless ``overwrite`` is set.
        """

        if self._mode is not BackendMode.S3:
            raise NotSupportedError("Writing to the catalog is not supported")
        _context, canonical = self._resolve(path, acquire_secrets=False)
        self._object_target(canonical)

        def commit(source, size: int) -> None:
            context, canonical_now = self._resolve(path)
            bucket, key = self._object_target(canonical_now)
            bucket_context = self._objects.bucket_context(context, bucket)
            client = self._objects.client(bucket_context)
            if not overwrite:
                if self._objects.find_object(bucket_context, bucket, key, client=client) is not None:
                    raise AlreadyExistsError(f"'{canonical_now}' already exists")
                if self._objects.prefix_has_children(bucket_context, bucket, key, client=client):
                    raise AlreadyExistsError(f"'{canonical_now}' is a directory")
            upload_object(
                client,
                bucket_context,
                bucket,
                key,
                source,
                size,
                progress_callback=progress_callback,
                cancel_requested=cancel_requested,
            )
            LOGGER.info("Uploaded %d bytes to s3://%s/%s", size, bucket, key)

        return ScratchFileWriter(commit)

    def get_file_basic_information(self, path: str) -> FileBasicInformation:
        if self._mode is not BackendMode.S3:
            raise NotSupportedError("Catalog items carry no file times")
        context, canonical = self._resolve(path)
        if is_root(canonical) or has_trailing_separator(canonical):
            raise NotSupportedError(f"'{canonical}' is a directory")
        segments = split_segments(canonical)
        if len(segments) < 2:
            raise NotSupportedError(f"'{canonical}' is a bucket")
        bucket, key = segments[0], join_key(segments)
        bucket_context = self._objects.bucket_context(context, bucket)
        summary = self._objects.find_object(bucket_context, bucket, key)
        if summary is None:
            raise ItemNotFoundError(f"'{canonical}' does not exist")
        if summary.last_modified is None:
            raise NotSupportedError(f"'{canonical}' has no modification time")
        return FileBasicInformation(
            attributes=FILE_ATTRIBUTE_NORMAL,
            creation_time=summary.last_modified,
            last_access_time=summary.last_modified,
            last_write_time=summary.last_modified,
        )

    def set_file_basic_information(self, path: str, information: FileBasicInformation) -> None:
        raise NotSupportedError("Object timestamps cannot be changed")

    # Unsupported transfers

    def copy_item(self, source_path: str, destination_path: str, *, overwrite: bool = False) -> None:
        raise NotSupportedError("Copy is not supported")

    def move_item(self, source_path: str, destination_path: str, *, overwrite: bool = False) -> None:
        raise NotSupportedError("Move is not supported")

    def rename_item(self, source_path: str, destination_path: str) -> None:
        raise NotSupportedError("Rename is not supported")

    def copy_items(self, source_paths: Iterable[str], destination_folder: str) -> None:
        raise NotSupportedError("Copy is not supported")

    def move_items(self, source_paths: Iterable[str], destination_folder: str) -> None:
        raise NotSupportedError("Move is not supported")

    def delete_items(self, paths: Iterable[str]) -> None:
        for path in paths:
            self.delete_item(path)

    # Informational

    def get_drive_info(self, path: str | None = None) -> DriveInfo:
        scheme = self.metadata.short_id
        try:
            _context, canonical = resolve_context(
                self._mode, self.settings, path or "/", self._connections, acquire_secrets=False
            )
        except FileSystemError as exc:
            LOGGER.debug("Drive info falls back to the raw path: %s", exc)
            canonical = normalize_path(path)

        if is_root(canonical):
            display_name = f"{scheme}:/"
        else:
            authority, slash, tail = canonical.lstrip("/").partition("/")
            display_name = f"{scheme}://{authority}{slash}{tail}"
        return DriveInfo(display_name=display_name, file_system=scheme)

    def get_item_properties(self, path: str) -> str:
        context, canonical = self._resolve(path)
        segments = split_segments(canonical)

        general = PropertySection("general")
        general.add("name", "/" if is_root(canonical) else (segments[-1] if segments else ""))
        general.add("path", canonical)
        general.add("mode", self._mode.value)
        sections = [general, self._connection_section(context)]

        if self._mode is BackendMode.S3:
            sections.append(self._object_section(context, canonical, segments, general))
        else:
            sections.append(self._table_section(context, segments, general))

        document = {
            "version": 1,
            "title": "properties",
            "sections": [
                {
                    "title": section.title,
                    "fields": [{"key": key, "value": value} for key, value in section.fields],
                }
                for section in sections
            ],
        }
        return json.dumps(document, indent=2)

    # Internals

    def _resolve(self, path: str, acquire_secrets: bool = True) -> tuple[ResolvedContext, str]:
        if not path:
            raise InvalidArgumentError("A path is required")
        return resolve_context(self._mode, self.settings, path, self._connections, acquire_secrets)

    @staticmethod
    def _object_target(canonical: str) -> tuple[str, str]:
        if is_root(canonical) or has_trailing_separator(canonical):
            raise AccessDeniedError(f"'{canonical}' is a directory")
        segments = split_segments(canonical)
        if len(segments) < 2:
            raise AccessDeniedError(f"'{canonical}' is a bucket")
        return segments[0], join_key(segments)

    @staticmethod
    def _connection_section(context: ResolvedContext) -> PropertySection:
        section = PropertySection("connection")
        section.add("connectionName", context.connection_name)
        section.add("region", context.region)
        section.add("endpointOverride", context.endpoint_override)
        section.add("useHttps", context.use_https)
        section.add("verifyTls", context.verify_tls)
        section.add("useVirtualAddressing", context.use_virtual_addressing)
        section.add("maxKeys", context.max_keys)
        section.add("maxTableResults", context.max_table_results)
        section.add("hasExplicitRegion", context.explicit_region is not None)
        section.add("hasAccessKeyId", context.access_key_id is not None)
        section.add("hasSecretAccessKey", context.secret_access_key is not None)
        return section

    def _object_section(
        self,
        context: ResolvedContext,
        canonical: str,
        segments: list[str],
        general: PropertySection,
    ) -> PropertySection:
        section = PropertySection("s3")
        section.add("bucket", segments[0] if segments else "")
        if len(segments) <= 1:
            general.add("type", "directory")
            return section

        bucket, key = segments[0], join_key(segments)
        bucket_context = self._objects.bucket_context(context, bucket)
        summary = None
        if not has_trailing_separator(canonical):
            summary = self._objects.find_object(bucket_context, bucket, key)
        if summary is None:
            general.add("type", "directory")
            section.add("prefix", key + "/")
            return section

        general.add("type", "file")
        general.add("sizeBytes", summary.size_bytes)
        if summary.last_modified is not None:
            general.add("lastWriteTime", summary.last_modified.isoformat())
        section.add("key", key)
        return section

    def _table_section(
        self,
        context: ResolvedContext,
        segments: list[str],
        general: PropertySection,
    ) -> PropertySection:
        section = PropertySection("s3table")
        general.add("type", "file" if len(segments) == 3 else "directory")
        if segments:
            section.add("bucket", segments[0])
        if len(segments) >= 2:
            section.add("namespace", segments[1])
        if len(segments) == 3:
            table = self._catalog.describe_table(
                context, segments[0], segments[1], strip_table_suffix(segments[2])
            )
            section.add("tableName", table["name"])
            section.add("tableArn", table["tableArn"])
            section.add("metadataLocation", table["metadataLocation"])
            section.add("warehouseLocation", table["warehouseLocation"])
            section.add("versionToken", table["versionToken"])
            section.add("managedByService", table["managedByService"])
            section.add("createdAt", table["createdAt"])
        return section
