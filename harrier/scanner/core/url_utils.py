"""
URL helpers shared by the parser, crawler and trainer.
"""

from typing import Dict
from urllib.parse import urlparse, urljoin, urldefrag, parse_qsl, urlencode


def normalize_url(url: str) -> str:
    """
    Normalize URL for deduplication.

    - lowercases scheme and host
    - removes the fragment
    - strips a trailing slash (except for the root path)
    - sorts query parameters
    """
    if not url:
        return ''

    # Remove fragment
    url, _ = urldefrag(url)
    parsed = urlparse(url)

    # Normalize path
    path = parsed.path
    if not path:
        path = '/'
    elif path != '/' and path.endswith('/'):
        path = path.rstrip('/')

    # Sort query parameters for consistency
    query = ''
    if parsed.query:
        query = urlencode(sorted(parse_qsl(parsed.query, keep_blank_values=True)))

    normalized = f"{parsed.scheme.lower()}://{parsed.netloc.lower()}{path}"
    if query:
        normalized += f"?{query}"

    return normalized


def to_absolute(url: str, reference: str) -> str:
    """Resolve ``url`` (possibly relative) against ``reference``."""
    return normalize_url(urljoin(reference, url.strip()))


def strip_query(url: str) -> str:
    """URL without query string or fragment."""
    parsed = urlparse(url)
    return parsed._replace(query='', fragment='').geturl()


def parse_query(url: str) -> Dict[str, str]:
    """Query parameters of ``url`` as a flat dict (last value wins)."""
    return dict(parse_qsl(urlparse(url).query, keep_blank_values=True))
