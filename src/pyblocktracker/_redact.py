"""Helpers for safe debug logging.

Hosted RPC endpoints usually carry an API key in the URL, either as a
path segment (``/v3/<key>``), as userinfo, or as a query parameter.  This
module masks those before a URL reaches a log line or an exception.
"""

from __future__ import annotations

import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_SENSITIVE_QUERY_KEYS: frozenset[str] = frozenset(
    {
        "apikey",
        "api_key",
        "key",
        "token",
        "access_token",
        "auth",
        "secret",
    }
)

# Path segments that look like credentials: long runs of hex/base64-ish text.
_KEY_SEGMENT = re.compile(r"^[A-Za-z0-9_\-]{24,}$")

_REDACTED = "<redacted>"


def redact_url(url: str) -> str:
    """Return *url* with credentials replaced by ``<redacted>``."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return _REDACTED

    netloc = parts.netloc
    if "@" in netloc:
        netloc = f"{_REDACTED}@{netloc.rsplit('@', 1)[1]}"

    segments = [_REDACTED if _KEY_SEGMENT.match(segment) else segment for segment in parts.path.split("/")]
    path = "/".join(segments)

    query = parts.query
    if query:
        pairs = [
            (key, _REDACTED if key.lower() in _SENSITIVE_QUERY_KEYS else value)
            for key, value in parse_qsl(query, keep_blank_values=True)
        ]
        query = urlencode(pairs, safe="<>")

    return urlunsplit((parts.scheme, netloc, path, query, parts.fragment))
