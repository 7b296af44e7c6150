from __future__ import annotations
"""Filesystem error taxonomy and translation of backend failures."""
from enum import Enum
import logging
from typing import Optional

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    ConnectionClosedError,
    CredentialRetrievalError,
    EndpointConnectionError,
    EndpointResolutionError,
    HTTPClientError,
    NoCredentialsError,
    NoRegionError,
    PartialCredentialsError,
    ProxyConnectionError,
    ReadTimeoutError,
    SSLError,
    UnknownEndpointError,
)

LOGGER = logging.getLogger(__name__)


class FileSystemErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"
    AUTHENTICATION_FAILED = "authentication_failed"
    TIMEOUT = "timeout"
    NETWORK_UNREACHABLE = "network_unreachable"
    CANCELLED = "cancelled"
    ALREADY_EXISTS = "already_exists"
    INVALID_ARGUMENT = "invalid_argument"
    NOT_SUPPORTED = "not_supported"
    DATA_CORRUPT = "data_corrupt"
    UNKNOWN = "unknown"


class FileSystemError(Exception):
    """Base class for every error raised by the virtual file system."""

    kind = FileSystemErrorKind.UNKNOWN

    def __init__(self, message: str = "", *, code: str | None = None, status: int | None = None):
        self.message = message or self.kind.value.replace("_", " ")
        self.code = code
        self.status = status
        super().__init__(self.message)


class ItemNotFoundError(FileSystemError):
    kind = FileSystemErrorKind.NOT_FOUND


class AccessDeniedError(FileSystemError):
    kind = FileSystemErrorKind.ACCESS_DENIED


class AuthenticationFailedError(FileSystemError):
    kind = FileSystemErrorKind.AUTHENTICATION_FAILED


class OperationTimeoutError(FileSystemError):
    kind = FileSystemErrorKind.TIMEOUT


class NetworkUnreachableError(FileSystemError):
    """Raised when the endpoint cannot be reached or resolved."""

    kind = FileSystemErrorKind.NETWORK_UNREACHABLE


class OperationCancelledError(FileSystemError):
    """Raised when the caller (or a secret prompt) cancels an operation."""

    kind = FileSystemErrorKind.CANCELLED


class AlreadyExistsError(FileSystemError):
    kind = FileSystemErrorKind.ALREADY_EXISTS


class InvalidArgumentError(FileSystemError):
    kind = FileSystemErrorKind.INVALID_ARGUMENT


class NotSupportedError(FileSystemError):
    kind = FileSystemErrorKind.NOT_SUPPORTED


class DataCorruptError(FileSystemError):
    """Raised for malformed profiles, configuration or directory buffers."""

    kind = FileSystemErrorKind.DATA_CORRUPT


class UnknownFileSystemError(FileSystemError):
    kind = FileSystemErrorKind.UNKNOWN


ERROR_CLASSES: dict[FileSystemErrorKind, type[FileSystemError]] = {
    cls.kind: cls
    for cls in (
        ItemNotFoundError,
        AccessDeniedError,
        AuthenticationFailedError,
        OperationTimeoutError,
        NetworkUnreachableError,
        OperationCancelledError,
        AlreadyExistsError,
        InvalidArgumentError,
        NotSupportedError,
        DataCorruptError,
        UnknownFileSystemError,
    )
}

_STATUS_KINDS = {
    404: FileSystemErrorKind.NOT_FOUND,
    403: FileSystemErrorKind.ACCESS_DENIED,
    401: FileSystemErrorKind.AUTHENTICATION_FAILED,
    408: FileSystemErrorKind.TIMEOUT,
}

_CODE_KINDS = {
    "NoSuchKey": FileSystemErrorKind.NOT_FOUND,
    "NoSuchBucket": FileSystemErrorKind.NOT_FOUND,
    "NotFound": FileSystemErrorKind.NOT_FOUND,
    "NotFoundException": FileSystemErrorKind.NOT_FOUND,
    "AccessDenied": FileSystemErrorKind.ACCESS_DENIED,
    "AccessDeniedException": FileSystemErrorKind.ACCESS_DENIED,
    "AllAccessDisabled": FileSystemErrorKind.ACCESS_DENIED,
    "InvalidAccessKeyId": FileSystemErrorKind.AUTHENTICATION_FAILED,
    "SignatureDoesNotMatch": FileSystemErrorKind.AUTHENTICATION_FAILED,
    "InvalidSignatureException": FileSystemErrorKind.AUTHENTICATION_FAILED,
    "UnrecognizedClientException": FileSystemErrorKind.AUTHENTICATION_FAILED,
    "InvalidClientTokenId": FileSystemErrorKind.AUTHENTICATION_FAILED,
    "ExpiredToken": FileSystemErrorKind.AUTHENTICATION_FAILED,
    "ExpiredTokenException": FileSystemErrorKind.AUTHENTICATION_FAILED,
    "RequestTimeout": FileSystemErrorKind.TIMEOUT,
    "RequestTimeoutException": FileSystemErrorKind.TIMEOUT,
    "RequestCanceled": FileSystemErrorKind.CANCELLED,
}

# Order matters: timeouts subclass the connection errors.
_BOTOCORE_KINDS: tuple[tuple[type[BotoCoreError], FileSystemErrorKind], ...] = (
    (ConnectTimeoutError, FileSystemErrorKind.TIMEOUT),
    (ReadTimeoutError, FileSystemErrorKind.TIMEOUT),
    (EndpointResolutionError, FileSystemErrorKind.NETWORK_UNREACHABLE),
    (UnknownEndpointError, FileSystemErrorKind.NETWORK_UNREACHABLE),
    (EndpointConnectionError, FileSystemErrorKind.NETWORK_UNREACHABLE),
    (ProxyConnectionError, FileSystemErrorKind.NETWORK_UNREACHABLE),
    (ConnectionClosedError, FileSystemErrorKind.NETWORK_UNREACHABLE),
    (SSLError, FileSystemErrorKind.NETWORK_UNREACHABLE),
    (HTTPClientError, FileSystemErrorKind.NETWORK_UNREACHABLE),
    (NoCredentialsError, FileSystemErrorKind.AUTHENTICATION_FAILED),
    (PartialCredentialsError, FileSystemErrorKind.AUTHENTICATION_FAILED),
    (CredentialRetrievalError, FileSystemErrorKind.AUTHENTICATION_FAILED),
    (NoRegionError, FileSystemErrorKind.INVALID_ARGUMENT),
)


def client_error_details(exc: ClientError) -> tuple[str, Optional[int], str, str]:
    """Return ``(code, http_status, message, request_id)`` for a client error."""

    response = getattr(exc, "response", None) or {}
    error = response.get("Error") or {}
    metadata = response.get("ResponseMetadata") or {}
    status = metadata.get("HTTPStatusCode")
    try:
        status = int(status) if status is not None else None
    except (TypeError, ValueError):
        status = None
    return (
        str(error.get("Code") or ""),
        status,
        str(error.get("Message") or ""),
        str(metadata.get("RequestId") or ""),
    )


def classify(exc: BaseException) -> FileSystemErrorKind:
    """Map any backend or local failure to a :class:`FileSystemErrorKind`."""

    if isinstance(exc, FileSystemError):
        return exc.kind
    if isinstance(exc, ClientError):
        code, status, _, _ = client_error_details(exc)
        if status in _STATUS_KINDS:
            return _STATUS_KINDS[status]
        if code.isdigit() and int(code) in _STATUS_KINDS:
            return _STATUS_KINDS[int(code)]
        return _CODE_KINDS.get(code, FileSystemErrorKind.UNKNOWN)
    if isinstance(exc, BotoCoreError):
        for error_type, kind in _BOTOCORE_KINDS:
            if isinstance(exc, error_type):
                return kind
        return FileSystemErrorKind.UNKNOWN
    if isinstance(exc, (FileNotFoundError, NotADirectoryError)):
        return FileSystemErrorKind.NOT_FOUND
    if isinstance(exc, PermissionError):
        return FileSystemErrorKind.ACCESS_DENIED
    if isinstance(exc, FileExistsError):
        return FileSystemErrorKind.ALREADY_EXISTS
    if isinstance(exc, TimeoutError):
        return FileSystemErrorKind.TIMEOUT
    return FileSystemErrorKind.UNKNOWN


def translate_error(exc: BaseException) -> FileSystemError:
    """Wrap ``exc`` in the :class:`FileSystemError` subclass for its kind."""

    if isinstance(exc, FileSystemError):
        return exc
    kind = classify(exc)
    code: str | None = None
    status: int | None = None
    message = str(exc)
    if isinstance(exc, ClientError):
        code, status, detail, _ = client_error_details(exc)
        message = detail or message
    elif isinstance(exc, BotoCoreError):
        code = type(exc).__name__
    return error_for_kind(kind, message, code=code or None, status=status)


def error_for_kind(
    kind: FileSystemErrorKind,
    message: str = "",
    *,
    code: str | None = None,
    status: int | None = None,
) -> FileSystemError:
    return ERROR_CLASSES[kind](message, code=code, status=status)
