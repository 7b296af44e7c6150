from __future__ import annotations
"""Per-call connection context resolution and boto3 client construction."""
from dataclasses import dataclass, field, replace
import json
import logging
from typing import Callable, Optional

from botocore.client import Config

from .errors import (
    AuthenticationFailedError,
    DataCorruptError,
    InvalidArgumentError,
    NotSupportedError,
    OperationCancelledError,
    classify,
    client_error_details,
)
from .models import BackendMode
from .paths import CONNECTION_AUTHORITY, CONNECTION_PREFIX, normalize_path, split_authority
from .profiles import (
    PLUGIN_ID_S3,
    PLUGIN_ID_S3_TABLE,
    SECRET_PASSWORD,
    ConnectionProvider,
    SecretNotFoundError,
)
from .settings import DEFAULT_REGION, AdapterSettings, clamp_page_size

LOGGER = logging.getLogger(__name__)

ClientFactory = Callable[..., object]

CONNECT_TIMEOUT_SECONDS = 10


@dataclass(frozen=True)
class ResolvedContext:
    """Everything needed to talk to the backend for one operation call."""

    region: str = DEFAULT_REGION
    connection_name: str = ""
    explicit_region: Optional[str] = None
    endpoint_override: str = ""
    use_https: bool = True
    verify_tls: bool = True
    use_virtual_addressing: bool = True
    max_keys: int = 1000
    max_table_results: int = 1000
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = field(default=None, repr=False)

    @property
    def has_credentials(self) -> bool:
        return bool(self.access_key_id) and bool(self.secret_access_key)

    def endpoint_url(self) -> Optional[str]:
        """Return the endpoint override as a full URL, or ``None``."""

        endpoint = self.endpoint_override.strip()
        if not endpoint:
            return None
        scheme = "https" if self.use_https else "http"
        for candidate in ("http://", "https://"):
            if endpoint.lower().startswith(candidate):
                scheme = candidate[:-3]
                endpoint = endpoint[len(candidate):]
                break
        endpoint = endpoint.rstrip("/")
        if not endpoint:
            return None
        return f"{scheme}://{endpoint}"

    def uses_https(self) -> bool:
        url = self.endpoint_url()
        if url is None:
            return self.use_https
        return url.startswith("https://")

    def with_region(self, region: str) -> "ResolvedContext":
        return replace(self, region=region)


def defaults_context(defaults: AdapterSettings) -> ResolvedContext:
    return ResolvedContext(
        region=defaults.default_region or DEFAULT_REGION,
        endpoint_override=defaults.default_endpoint_override,
        use_https=defaults.use_https,
        verify_tls=defaults.verify_tls,
        use_virtual_addressing=defaults.use_virtual_addressing,
        max_keys=clamp_page_size(defaults.max_keys),
        max_table_results=clamp_page_size(defaults.max_table_results),
    )


def find_connection_reference(normalized: str) -> tuple[Optional[str], str, str]:
    """Detect an embedded connection reference in a normalized path.

    Returns ``(connection_name, remainder, authority)``; ``connection_name``
    is ``None`` when the path carries no reference. Recognized forms are
    ``/@conn:<name>/...``, ``//@conn:<name>/...`` and ``//@conn/<name>/...``.
    """

    authority, path_part = split_authority(normalized)
    rest = path_part.lstrip("/")
    if rest.startswith(CONNECTION_PREFIX) and not authority:
        name, slash, tail = rest[len(CONNECTION_PREFIX):].partition("/")
        return name, ("/" + tail) if slash else "/", authority
    if authority.startswith(CONNECTION_PREFIX):
        return authority[len(CONNECTION_PREFIX):], path_part, authority
    if authority.lower() == CONNECTION_AUTHORITY:
        name, slash, tail = rest.partition("/")
        return name, ("/" + tail) if slash else "/", authority
    return None, path_part, authority


def resolve_context(
    mode: BackendMode,
    defaults: AdapterSettings,
    path: str,
    provider: ConnectionProvider | None,
    acquire_secrets: bool = True,
) -> tuple[ResolvedContext, str]:
    """Resolve the backend context for ``path``.

    Returns the context and the remaining canonical path (always starting
    with ``/``). Paths without a connection reference use ``defaults`` and
    the ambient boto3 credential chain; ``//bucket/key`` authority paths are
    folded back into ``/bucket/key``.
    """

    normalized = normalize_path(path)
    connection_name, remainder, authority = find_connection_reference(normalized)

    if connection_name is None:
        if authority:
            canonical = normalize_path(f"/{authority}{remainder}")
        else:
            canonical = normalize_path(remainder)
        return defaults_context(defaults), canonical

    if not connection_name:
        raise InvalidArgumentError("Connection reference without a connection name")

    context = _resolve_profile(mode, defaults, connection_name, provider, acquire_secrets)
    return context, normalize_path(remainder)


def _resolve_profile(
    mode: BackendMode,
    defaults: AdapterSettings,
    connection_name: str,
    provider: ConnectionProvider | None,
    acquire_secrets: bool,
) -> ResolvedContext:
    if provider is None:
        raise NotSupportedError("No connection profile store is configured")

    try:
        raw = provider.get_profile_json(connection_name)
    except LookupError as exc:
        raise DataCorruptError(f"Connection '{connection_name}' is not available: {exc}") from exc
    if not raw:
        raise DataCorruptError(f"Connection '{connection_name}' has an empty profile")
    try:
        document = json.loads(raw.lstrip("\ufeff"))
    except json.JSONDecodeError as exc:
        raise DataCorruptError(f"Connection '{connection_name}' profile is not valid JSON") from exc
    if not isinstance(document, dict):
        raise DataCorruptError(f"Connection '{connection_name}' profile must be an object")

    plugin_id = document.get("pluginId")
    if not isinstance(plugin_id, str):
        raise DataCorruptError(f"Connection '{connection_name}' profile has no pluginId")
    expected = PLUGIN_ID_S3 if mode is BackendMode.S3 else PLUGIN_ID_S3_TABLE
    if plugin_id.casefold() != expected.casefold():
        raise InvalidArgumentError(
            f"Connection '{connection_name}' belongs to '{plugin_id}', expected '{expected}'"
        )

    base = defaults_context(defaults)
    region = document.get("host")
    explicit_region = region if isinstance(region, str) and region else None
    user_name = document.get("userName")
    access_key_id = user_name if isinstance(user_name, str) and user_name else None

    overrides: dict[str, object] = {}
    extra = document.get("extra")
    if isinstance(extra, dict):
        endpoint = extra.get("endpointOverride")
        if isinstance(endpoint, str):
            overrides["endpoint_override"] = endpoint
        for json_key, attribute in (
            ("useHttps", "use_https"),
            ("verifyTls", "verify_tls"),
            ("useVirtualAddressing", "use_virtual_addressing"),
        ):
            value = extra.get(json_key)
            if isinstance(value, bool):
                overrides[attribute] = value

    secret: Optional[str] = None
    if access_key_id and acquire_secrets:
        secret = _acquire_secret(provider, connection_name)

    return replace(
        base,
        connection_name=connection_name,
        region=explicit_region or base.region,
        explicit_region=explicit_region,
        access_key_id=access_key_id,
        secret_access_key=secret,
        **overrides,
    )


def _acquire_secret(provider: ConnectionProvider, connection_name: str) -> str:
    try:
        secret = provider.get_secret(connection_name, SECRET_PASSWORD)
    except SecretNotFoundError:
        secret = provider.prompt_for_secret(connection_name, SECRET_PASSWORD)
        if secret is None:
            raise OperationCancelledError(
                f"Secret prompt for connection '{connection_name}' was cancelled"
            ) from None
    if not secret:
        raise AuthenticationFailedError(f"Connection '{connection_name}' has an empty secret")
    return secret


def client_config(context: ResolvedContext, *, for_s3: bool = True) -> Config:
    options: dict[str, object] = {
        "signature_version": "s3v4",
        "connect_timeout": CONNECT_TIMEOUT_SECONDS,
        "retries": {"total_max_attempts": 1},
    }
    if for_s3:
        options["s3"] = {"addressing_style": "virtual" if context.use_virtual_addressing else "path"}
    return Config(**options)


def client_kwargs(context: ResolvedContext, *, for_s3: bool = True) -> dict[str, object]:
    kwargs: dict[str, object] = {
        "region_name": context.region,
        "use_ssl": context.uses_https(),
        "verify": context.verify_tls,
        "config": client_config(context, for_s3=for_s3),
    }
    endpoint_url = context.endpoint_url()
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url
    if context.has_credentials:
        kwargs["aws_access_key_id"] = context.access_key_id
        kwargs["aws_secret_access_key"] = context.secret_access_key
    return kwargs


def create_s3_client(context: ResolvedContext, client_factory: ClientFactory):
    return client_factory("s3", **client_kwargs(context))


def create_table_client(context: ResolvedContext, client_factory: ClientFactory):
    return client_factory("s3tables", **client_kwargs(context, for_s3=False))


def log_backend_failure(
    prefix: str,
    operation: str,
    context: ResolvedContext,
    exc: BaseException,
    details: str,
) -> None:
    """Log one backend failure with enough context to diagnose it."""

    code, status, message, request_id = "", None, str(exc), ""
    if hasattr(exc, "response"):
        code, status, message, request_id = client_error_details(exc)  # type: ignore[arg-type]
    LOGGER.error(
        "%s: %s failed %s conn='%s' region='%s' endpoint='%s' https=%d verifyTls=%d "
        "virtualAddressing=%d kind=%s code='%s' http=%s requestId='%s' message='%s'",
        prefix,
        operation,
        details,
        context.connection_name,
        context.region,
        context.endpoint_url() or "",
        1 if context.uses_https() else 0,
        1 if context.verify_tls else 0,
        1 if context.use_virtual_addressing else 0,
        classify(exc).value,
        code or type(exc).__name__,
        status,
        request_id,
        message,
    )
