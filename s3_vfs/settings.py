from __future__ import annotations
"""Adapter settings parsed from host configuration JSON."""

from dataclasses import dataclass
import json
import logging
from pathlib import Path

from .models import BackendMode

DEFAULT_REGION = "us-east-1"
MAX_PAGE_SIZE = 1000

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdapterSettings:
    """Plugin-wide defaults used when a path carries no connection reference."""

    default_region: str = DEFAULT_REGION
    default_endpoint_override: str = ""
    use_https: bool = True
    verify_tls: bool = True
    use_virtual_addressing: bool = True
    max_keys: int = MAX_PAGE_SIZE
    max_table_results: int = MAX_PAGE_SIZE


def clamp_page_size(value: object, fallback: int = MAX_PAGE_SIZE) -> int:
    if isinstance(value, bool):
        return fallback
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return fallback
    if number < 1:
        return fallback
    return min(number, MAX_PAGE_SIZE)


def parse_settings(configuration_json: str | None) -> AdapterSettings:
    """Parse the host configuration document.

    Missing, malformed or wrongly-typed values keep their defaults.
    """

    if not configuration_json:
        return AdapterSettings()
    try:
        data = json.loads(configuration_json)
    except json.JSONDecodeError:
        LOGGER.warning("Ignoring malformed configuration JSON")
        return AdapterSettings()
    if not isinstance(data, dict):
        return AdapterSettings()

    defaults = AdapterSettings()
    region = data.get("defaultRegion")
    endpoint = data.get("defaultEndpointOverride")
    return AdapterSettings(
        default_region=(region or DEFAULT_REGION) if isinstance(region, str) else defaults.default_region,
        default_endpoint_override=endpoint if isinstance(endpoint, str) else defaults.default_endpoint_override,
        use_https=_bool_or(data.get("useHttps"), defaults.use_https),
        verify_tls=_bool_or(data.get("verifyTls"), defaults.verify_tls),
        use_virtual_addressing=_bool_or(data.get("useVirtualAddressing"), defaults.use_virtual_addressing),
        max_keys=clamp_page_size(data.get("maxKeys"), defaults.max_keys),
        max_table_results=clamp_page_size(data.get("maxTableResults"), defaults.max_table_results),
    )


def settings_to_json(settings: AdapterSettings) -> str:
    payload = {
        "defaultRegion": settings.default_region or DEFAULT_REGION,
        "defaultEndpointOverride": settings.default_endpoint_override,
        "useHttps": bool(settings.use_https),
        "verifyTls": bool(settings.verify_tls),
        "useVirtualAddressing": bool(settings.use_virtual_addressing),
        "maxKeys": clamp_page_size(settings.max_keys),
        "maxTableResults": clamp_page_size(settings.max_table_results),
    }
    return json.dumps(payload, indent=2)


def _bool_or(value: object, fallback: bool) -> bool:
    return value if isinstance(value, bool) else fallback


class SettingsStorage:
    """JSON-backed persistence for :class:`AdapterSettings`."""

    def __init__(self, storage_path: str | Path | None = None):
        if storage_path is None:
            storage_path = Path.home() / ".pys3vfs_settings.json"
        self._path = Path(storage_path)

    def load(self) -> AdapterSettings:
        if not self._path.exists():
            return AdapterSettings()
        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError:
            return AdapterSettings()
        return parse_settings(text)

    def save(self, settings: AdapterSettings) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(settings_to_json(settings), encoding="utf-8")
        except OSError:
            # Persist best-effort; ignore filesystem issues.
            LOGGER.warning("Unable to persist settings to %s", self._path)
            return


def _field(key: str, label: str, field_type: str, default: object, **extra: object) -> dict[str, object]:
    field: dict[str, object] = {"key": key, "label": label, "type": field_type, "default": default}
    field.update(extra)
    return field


def configuration_schema(mode: BackendMode) -> str:
    """Return the host-facing schema document for ``mode``'s settings."""

    if mode is BackendMode.S3:
        title = "S3"
        fields = [
            _field(
                "defaultRegion",
                "Default region",
                "text",
                DEFAULT_REGION,
                description="AWS region used when no connection profile is selected.",
            ),
            _field(
                "defaultEndpointOverride",
                "Default endpoint override",
                "text",
                "",
                description=(
                    "Optional endpoint override (for S3-compatible storage). "
                    "Examples: https://s3.us-east-1.amazonaws.com, http://localhost:9000"
                ),
            ),
            _field("useHttps", "Use HTTPS", "bool", True),
            _field("verifyTls", "Verify TLS certificate", "bool", True),
            _field(
                "useVirtualAddressing",
                "Use virtual-hosted style addressing",
                "bool",
                True,
                description="When off, path-style addressing is used (often required for S3-compatible endpoints).",
            ),
            _field("maxKeys", "Max keys per listing", "value", MAX_PAGE_SIZE, min=1, max=MAX_PAGE_SIZE),
        ]
    else:
        title = "S3 Table"
        fields = [
            _field("defaultRegion", "Default region", "text", DEFAULT_REGION),
            _field("defaultEndpointOverride", "Default endpoint override", "text", ""),
            _field("useHttps", "Use HTTPS", "bool", True),
            _field("verifyTls", "Verify TLS certificate", "bool", True),
            _field("maxTableResults", "Max results per listing", "value", MAX_PAGE_SIZE, min=1, max=MAX_PAGE_SIZE),
        ]
    return json.dumps({"version": 1, "title": title, "fields": fields}, indent=2)
