"""
URL helpers for source citations.

Citations are grouped by the hostname of the cited URL with a leading
"www." removed, so "https://www.a.com/x" and "https://a.com/y" count
toward the same domain.
"""

from urllib.parse import urlsplit


def source_domain(url: str) -> str | None:
    """
    Derive the citation domain for a source URL.

    Args:
        url: Absolute URL cited by a generated answer

    Returns:
        Lowercased hostname without a leading "www.", or None when the URL
        has no scheme or hostname (such citations are skipped)

    Examples:
        >>> source_domain("https://www.Example.com/path?q=1")
        'example.com'
        >>> source_domain("not a url") is None
        True
    """
    if not url or url.isspace():
        return None

    try:
        parts = urlsplit(url.strip())
        hostname = parts.hostname
    except ValueError:
        return None

    if not parts.scheme or not hostname:
        return None

    hostname = hostname.lower()
    if hostname.startswith("www."):
        hostname = hostname[4:]

    return hostname or None
