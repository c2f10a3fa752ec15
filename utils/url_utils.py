"""
URL helpers shared by the feed parser and content fetcher.
"""
from typing import Optional
from urllib.parse import urlparse


def is_http_url(value: Optional[str]) -> bool:
    """True for absolute http(s) URLs."""
    if not value:
        return False
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def strip_scheme(url: str) -> str:
    """Drop a leading ``http://`` or ``https://``."""
    for prefix in ("https://", "http://"):
        if url.startswith(prefix):
            return url[len(prefix):]
    return url
