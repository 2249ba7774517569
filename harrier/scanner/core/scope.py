"""
Scope restrictions for Harrier

- ScopeFilter: decides which URLs, responses and elements belong to the scan
- LinkCountGovernor: scan-wide cap on the number of pages handled
"""

import re
from typing import List, Optional
from urllib.parse import urlparse
import logging

from harrier.scanner.core.elements import AuditableElement
from harrier.scanner.core.requester import Response

logger = logging.getLogger(__name__)


class ScopeFilter:
    """
    Scope rules for a scan rooted at ``base_url``.

    Scope types:
    - domain: same host
    - subdomain: same host or any subdomain of it
    - path: same host and under the base path
    """

    # URL patterns to skip
    SKIP_EXTENSIONS = {
        '.css', '.js', '.jpg', '.jpeg', '.png', '.gif', '.svg', '.ico',
        '.woff', '.woff2', '.ttf', '.eot', '.pdf', '.doc', '.docx',
        '.xls', '.xlsx', '.ppt', '.pptx', '.zip', '.rar', '.tar', '.gz',
        '.mp3', '.mp4', '.avi', '.mov', '.wmv', '.flv', '.webm',
        '.xml', '.json', '.rss', '.atom'
    }

    SKIP_PATTERNS = [
        r'logout', r'signout', r'sign-out', r'log-out',
        r'delete', r'remove', r'unsubscribe',
        r'\?.*logout', r'\?.*delete'
    ]

    def __init__(
            self,
            base_url: str,
            scope: str = 'domain',  # 'domain', 'subdomain', 'path'
            excluded_paths: Optional[List[str]] = None,
            included_paths: Optional[List[str]] = None,
            exclude_content: Optional[List[str]] = None
    ):
        """
        Args:
            base_url: Root URL of the scan
            scope: Scope restriction type
            excluded_paths: Paths to exclude
            included_paths: Paths to include (if set, only these are in scope)
            exclude_content: Regexes; responses whose body matches are skipped
        """
        self.base_url = base_url
        self.scope = scope
        self.excluded_paths = excluded_paths or []
        self.included_paths = included_paths or []
        self.exclude_content = [re.compile(p, re.IGNORECASE) for p in (exclude_content or [])]

        parsed = urlparse(base_url)
        self.base_domain = parsed.netloc
        self.base_path = parsed.path.rsplit('/', 1)[0] if '/' in parsed.path else ''

    def is_in_scope(self, url: str) -> bool:
        """Check if URL should be crawled/audited based on scope and rules."""
        parsed = urlparse(url)

        # Must be HTTP(S)
        if parsed.scheme not in ('http', 'https'):
            return False

        if self.scope == 'domain':
            if parsed.netloc != self.base_domain:
                return False

        elif self.scope == 'subdomain':
            if not (parsed.netloc == self.base_domain or
                    parsed.netloc.endswith('.' + self.base_domain)):
                return False

        elif self.scope == 'path':
            if parsed.netloc != self.base_domain:
                return False
            if not parsed.path.startswith(self.base_path):
                return False

        # Check excluded paths
        for excluded in self.excluded_paths:
            if excluded in parsed.path:
                return False

        # Check included paths (if set)
        if self.included_paths:
            if not any(included in parsed.path for included in self.included_paths):
                return False

        # Check file extension
        path_lower = parsed.path.lower()
        for ext in self.SKIP_EXTENSIONS:
            if path_lower.endswith(ext):
                return False

        # Check skip patterns
        for pattern in self.SKIP_PATTERNS:
            if re.search(pattern, url, re.IGNORECASE):
                return False

        return True

    def should_skip(self, response: Response) -> bool:
        """Whether a response is out of scope or has excluded content."""
        if not self.is_in_scope(response.url):
            return True

        for pattern in self.exclude_content:
            if pattern.search(response.body):
                logger.debug(f"Skipping {response.url}: body matches {pattern.pattern}")
                return True

        return False

    def element_in_scope(self, element: AuditableElement) -> bool:
        """Elements found by training carry a scope override."""
        return element.scope_override or self.is_in_scope(element.action)


class LinkCountGovernor:
    """Caps the number of pages the scan handles (``None`` = unlimited)."""

    def __init__(self, limit: Optional[int] = None):
        self.limit = limit
        self.count = 0

    def register(self, count: int = 1):
        self.count += count

    def limit_reached(self) -> bool:
        return self.limit is not None and self.count >= self.limit
