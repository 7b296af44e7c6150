from __future__ import annotations
"""Helpers for canonicalizing virtual file system paths."""

AUTHORITY_PREFIX = "//"
CONNECTION_PREFIX = "@conn:"
CONNECTION_AUTHORITY = "@conn"


def normalize_path(raw_path: str | None) -> str:
    """Return the canonical ``/``-separated form of ``raw_path``.

    Backslashes become slashes, runs of separators collapse to one and a
    leading slash is guaranteed. A leading ``//`` authority marker is kept
    as-is. Degenerate input yields ``/``.
    """

    if not raw_path:
        return "/"

    path = raw_path.replace("\\", "/")
    has_authority = path.startswith(AUTHORITY_PREFIX)
    if not path.startswith("/"):
        path = "/" + path

    collapsed: list[str] = []
    previous_slash = False
    index = 0
    if has_authority:
        collapsed.append(AUTHORITY_PREFIX)
        previous_slash = True
        index = 2
        while index < len(path) and path[index] == "/":
            index += 1

    for char in path[index:]:
        is_slash = char == "/"
        if is_slash and previous_slash:
            continue
        collapsed.append(char)
        previous_slash = is_slash

    return "".join(collapsed) or "/"


def has_authority(path: str) -> bool:
    return path.startswith(AUTHORITY_PREFIX)


def split_authority(normalized: str) -> tuple[str, str]:
    """Split ``//authority/rest`` into ``("authority", "/rest")``.

    Paths without an authority return an empty authority and the path itself.
    """

    if not has_authority(normalized):
        return "", normalized
    after = normalized[2:]
    authority, slash, rest = after.partition("/")
    return authority, ("/" + rest) if slash else "/"


def split_segments(path: str) -> list[str]:
    return [segment for segment in path.split("/") if segment]


def is_root(path: str) -> bool:
    return path in ("", "/")


def has_trailing_separator(path: str) -> bool:
    return path.endswith("/")


def join_key(segments: list[str]) -> str:
    """Join the segments after the bucket into an object key."""

    return "/".join(segments[1:])


def as_prefix(key: str) -> str:
    """Return ``key`` as a listing prefix ending in ``/`` (empty stays empty)."""

    if key and not key.endswith("/"):
        return key + "/"
    return key
