"""
Utility functions for prefix extraction and target URL handling.
"""

from urllib.parse import SplitResult, urlsplit

ALLOWED_SCHEMES = {"http", "https"}


class InvalidTargetError(ValueError):
    """Raised when a configured backend target is not an absolute http(s) URL."""


def split_request_path(path: str | None) -> tuple[str, str] | None:
    """
    Split an inbound request path into (prefix, rest).

    Examples:
    - "/a/ping" -> ("a", "ping")
    - "/a/x/y" -> ("a", "x/y")
    - "/a/" -> ("a", "")

    Args:
        path: Raw request path (without query string)

    Returns:
        (prefix, rest) tuple or None if the path is not of the form /<prefix>/...
    """
    if not path or not path.startswith("/"):
        return None
    parts = path.split("/", 2)
    if len(parts) < 3:
        return None
    prefix, rest = parts[1], parts[2]
    if not prefix:
        return None
    return (prefix, rest)


def parse_target_url(value) -> SplitResult:
    """
    Parse a configured backend target.

    Supports absolute URLs with an http or https scheme and a host, optionally
    carrying a port, a base path and a query:
    - "http://localhost:9000"
    - "https://example.com/api?key=1"

    Raises:
        InvalidTargetError: if the value is not such a URL
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidTargetError(f"target must be a non-empty string, got {value!r}")
    try:
        parsed = urlsplit(value.strip())
        # Accessing .port validates the port component
        parsed.port
    except ValueError as exc:
        raise InvalidTargetError(f"invalid target URL {value!r}: {exc}") from exc
    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise InvalidTargetError(f"invalid target URL {value!r}: scheme must be http or https")
    if not parsed.hostname:
        raise InvalidTargetError(f"invalid target URL {value!r}: missing host")
    return parsed


def join_path(base: str, rest: str) -> str:
    """
    Join the target's base path and the forwarded remainder with a single slash.

    join_path("", "ping") -> "/ping"
    join_path("/base/", "/x") -> "/base/x"
    """
    base_slash = base.endswith("/")
    rest_slash = rest.startswith("/")
    if base_slash and rest_slash:
        return base + rest[1:]
    if not base_slash and not rest_slash:
        return base + "/" + rest
    return base + rest


def join_query(target_query: str, request_query: str) -> str:
    """Combine the target's own query with the inbound query."""
    if target_query and request_query:
        return f"{target_query}&{request_query}"
    return target_query or request_query


def build_upstream_url(target: SplitResult, rest: str, query: str = "", scheme: str | None = None) -> str:
    """
    Build the outbound URL for a request forwarded to ``target``.

    Args:
        target: Parsed target URL
        rest: Request path remainder after the prefix segment
        query: Inbound query string (without '?')
        scheme: Override scheme (used for WebSocket tunnelling)
    """
    url = f"{scheme or target.scheme}://{target.netloc}{join_path(target.path, rest)}"
    combined = join_query(target.query, query)
    if combined:
        url = f"{url}?{combined}"
    return url
