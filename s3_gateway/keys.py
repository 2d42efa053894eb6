from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import unquote_to_bytes

if TYPE_CHECKING:
    from litestar.types import Scope


def request_path(scope: Scope) -> str:
    """Return the decoded path the client asked for.

    Routing rewrites ``scope["path"]`` (trailing slashes, repeated separators),
    so the path is rebuilt from the untouched ``raw_path`` minus its query
    string. Servers that omit ``raw_path`` fall back to ``path``.
    """
    raw_path = scope.get("raw_path")
    if raw_path is None:
        path = scope.get("path", "/")
        return path if path.startswith("/") else f"/{path}"
    raw = raw_path.split(b"?", 1)[0]
    return unquote_to_bytes(raw).decode("utf-8", errors="replace")


def resolve_object_key(path: str) -> str | None:
    """Derive an S3 object key from a request path.

    Exactly one leading ``/`` is stripped. The rest of the path is used as-is:
    keys live in a flat namespace inside the configured bucket, so segments
    such as ``..`` are part of the key name rather than directory traversal.

    Returns:
        The object key, or ``None`` when the path resolves to an empty key.
    """
    key = path[1:] if path.startswith("/") else path
    if not key:
        return None
    return key
