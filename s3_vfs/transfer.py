from __future__ import annotations
"""Scratch-file staging for object reads and writes."""
import io
import logging
import tempfile
from typing import BinaryIO, Callable, Iterable, Optional

from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError

from .context import ResolvedContext, log_backend_failure
from .errors import (
    DataCorruptError,
    FileSystemError,
    InvalidArgumentError,
    OperationCancelledError,
    translate_error,
)
from .listing import call_backend

LOGGER = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

ProgressCallback = Callable[[int], None]
CancelPredicate = Callable[[], bool]
CommitFn = Callable[[BinaryIO, int], None]


def open_scratch_file() -> BinaryIO:
    """Create an anonymous temporary file, removed as soon as it is closed."""

    try:
        return tempfile.TemporaryFile(mode="w+b", prefix="pys3vfs-")
    except OSError as exc:
        raise translate_error(exc) from exc


class ScratchFileReader:
    """Sized, seekable reader over a staged scratch file."""

    def __init__(self, scratch: BinaryIO, size: int):
        self._file: Optional[BinaryIO] = scratch
        self._size = size

    @property
    def size(self) -> int:
        return self._size

    @property
    def closed(self) -> bool:
        return self._file is None

    def read(self, size: int = -1) -> bytes:
        return self._require_open().read(size)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self._require_open().seek(offset, whence)

    def tell(self) -> int:
        return self._require_open().tell()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def _require_open(self) -> BinaryIO:
        if self._file is None:
            raise InvalidArgumentError("Reader is closed")
        return self._file

    def __enter__(self) -> "ScratchFileReader":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ScratchFileWriter:
    """Buffers written bytes locally until :meth:`commit` uploads them.

    Closing or discarding an uncommitted writer only removes the scratch
    file. A successful commit is final; calling it again does nothing.
    """

    def __init__(self, on_commit: CommitFn, scratch: BinaryIO | None = None):
        self._on_commit = on_commit
        self._file: Optional[BinaryIO] = scratch if scratch is not None else open_scratch_file()
        self._committed = False

    @property
    def committed(self) -> bool:
        return self._committed

    @property
    def position(self) -> int:
        return self._require_open().tell()

    def write(self, data: bytes) -> int:
        scratch = self._require_open()
        try:
            written = scratch.write(data)
        except OSError as exc:
            raise translate_error(exc) from exc
        if written != len(data):
            raise DataCorruptError(f"Short write to scratch file ({written} of {len(data)} bytes)")
        return written

    def commit(self) -> None:
        if self._committed:
            return
        scratch = self._require_open()
        try:
            scratch.flush()
            size = scratch.seek(0, io.SEEK_END)
            scratch.seek(0)
        except OSError as exc:
            raise translate_error(exc) from exc
        self._on_commit(scratch, size)
        self._committed = True
        self.close()

    def discard(self) -> None:
        self.close()

    def close(self) -> None:
        if self._file is not None:
            if not self._committed:
                LOGGER.debug("Discarding uncommitted scratch file")
            self._file.close()
            self._file = None

    def _require_open(self) -> BinaryIO:
        if self._file is None:
            raise InvalidArgumentError("Writer is closed")
        return self._file

    def __enter__(self) -> "ScratchFileWriter":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _check_cancel(cancel_requested: Optional[CancelPredicate]) -> None:
    if cancel_requested and cancel_requested():
        raise OperationCancelledError("Transfer cancelled by user")


def stage_chunks(
    chunks: Iterable[bytes],
    progress_callback: Optional[ProgressCallback] = None,
    cancel_requested: Optional[CancelPredicate] = None,
) -> ScratchFileReader:
    """Copy ``chunks`` into a new scratch file and return a rewound reader."""

    scratch = open_scratch_file()
    transferred = 0
    try:
        for chunk in chunks:
            _check_cancel(cancel_requested)
            if not chunk:
                continue
            written = scratch.write(chunk)
            if written != len(chunk):
                raise DataCorruptError(f"Short write to scratch file ({written} of {len(chunk)} bytes)")
            transferred += written
            if progress_callback:
                progress_callback(transferred)
        scratch.flush()
        scratch.seek(0)
    except OSError as exc:
        scratch.close()
        raise translate_error(exc) from exc
    except BaseException:
        scratch.close()
        raise
    return ScratchFileReader(scratch, transferred)


def stage_bytes(data: bytes) -> ScratchFileReader:
    return stage_chunks([data])


def _read_body(body, context: ResolvedContext, details: str) -> Iterable[bytes]:
    try:
        while True:
            try:
                chunk = body.read(CHUNK_SIZE)
            except (ClientError, BotoCoreError) as exc:
                log_backend_failure("S3", "GetObject", context, exc, details)
                raise translate_error(exc) from exc
            if not chunk:
                return
            yield chunk
    finally:
        close = getattr(body, "close", None)
        if close is not None:
            close()


def download_object(
    client,
    context: ResolvedContext,
    bucket: str,
    key: str,
    *,
    progress_callback: Optional[ProgressCallback] = None,
    cancel_requested: Optional[CancelPredicate] = None,
) -> ScratchFileReader:
    """Stream an object's body into a scratch file in bounded chunks."""

    details = f"bucket='{bucket}' key='{key}'"
    _check_cancel(cancel_requested)
    response = call_backend("S3", "GetObject", context, details, client.get_object, Bucket=bucket, Key=key)
    body = response.get("Body")
    if body is None:
        raise DataCorruptError(f"GetObject returned no body for {details}")
    reader = stage_chunks(_read_body(body, context, details), progress_callback, cancel_requested)
    LOGGER.debug("Downloaded %d bytes for %s", reader.size, details)
    return reader


def build_transfer_callback(
    progress_callback: Optional[ProgressCallback],
    cancel_requested: Optional[CancelPredicate],
):
    if not progress_callback and not cancel_requested:
        return None

    transferred = 0

    def _callback(bytes_amount: int) -> None:
        nonlocal transferred
        _check_cancel(cancel_requested)
        transferred += bytes_amount
        if progress_callback:
            progress_callback(transferred)
        _check_cancel(cancel_requested)

    return _callback


def upload_object(
    client,
    context: ResolvedContext,
    bucket: str,
    key: str,
    source: BinaryIO,
    size: int,
    *,
    progress_callback: Optional[ProgressCallback] = None,
    cancel_requested: Optional[CancelPredicate] = None,
) -> None:
    """Upload ``size`` bytes from ``source`` as the body of ``bucket/key``."""

    details = f"bucket='{bucket}' key='{key}' size={size}"
    _check_cancel(cancel_requested)
    try:
        client.upload_fileobj(
            Fileobj=source,
            Bucket=bucket,
            Key=key,
            Callback=build_transfer_callback(progress_callback, cancel_requested),
            Config=TransferConfig(use_threads=False),
        )
    except FileSystemError:
        raise
    except (ClientError, BotoCoreError) as exc:
        log_backend_failure("S3", "PutObject", context, exc, details)
        raise translate_error(exc) from exc
    LOGGER.debug("Uploaded %s", details)
