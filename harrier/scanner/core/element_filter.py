"""
Element Filter for Harrier

Scan-wide record of every element already seen, used to tell newly
revealed attack surface apart from known surface. Also decides when a
path has been visited often enough to be considered redundant.
"""

import re
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Pattern, Tuple, Union
from urllib.parse import urlparse
import logging

from harrier.scanner.core.elements import AuditableElement
from harrier.scanner.core.url_utils import parse_query

logger = logging.getLogger(__name__)


class ElementFilter:
    """
    Seen-fingerprint baseline shared by the crawler, auditor and trainer.

    ``update_*`` calls atomically return the elements that were not seen
    before and mark them as seen.
    """

    TYPES = ('links', 'forms', 'cookies')

    def __init__(
            self,
            redundant: Optional[Dict[Union[str, Pattern], int]] = None,
            auto_redundant: int = 0
    ):
        """
        Args:
            redundant: Regex -> how many matching URLs to allow before the
                rest are redundant
            auto_redundant: Max URLs with the same path and parameter names
                (0 disables)
        """
        self._seen: Dict[str, set] = {t: set() for t in self.TYPES}

        self._redundant: List[List] = [
            [re.compile(pattern) if isinstance(pattern, str) else pattern, count]
            for pattern, count in (redundant or {}).items()
        ]
        self.auto_redundant = auto_redundant
        self._auto_redundant_counts: Dict[Tuple, int] = defaultdict(int)

    def init_from_page(self, page):
        """Add the page's links, forms and cookies to the baseline."""
        for element_type in self.TYPES:
            self._update(element_type, getattr(page, element_type))

    def update_links(self, links: Iterable[AuditableElement]) -> Tuple[List[AuditableElement], int]:
        return self._update('links', links)

    def update_forms(self, forms: Iterable[AuditableElement]) -> Tuple[List[AuditableElement], int]:
        return self._update('forms', forms)

    def update_cookies(self, cookies: Iterable[AuditableElement]) -> Tuple[List[AuditableElement], int]:
        return self._update('cookies', cookies)

    def _update(self, element_type: str, elements) -> Tuple[List[AuditableElement], int]:
        seen = self._seen[element_type]
        new = []
        for element in elements:
            if element.id in seen:
                continue
            seen.add(element.id)
            new.append(element)
        return new, len(new)

    def is_redundant_path(self, url: str) -> bool:
        """
        Check whether ``url`` exhausted a redundancy rule.

        Every check of a matching URL consumes one allowance of the rule.
        """
        for rule in self._redundant:
            pattern, count = rule
            if not pattern.search(url):
                continue
            if count <= 0:
                logger.debug(f"Redundant path (matches {pattern.pattern}): {url}")
                return True
            rule[1] -= 1

        if self.auto_redundant:
            key = (urlparse(url).path, tuple(sorted(parse_query(url))))
            if not key[1]:
                return False
            if self._auto_redundant_counts[key] >= self.auto_redundant:
                logger.debug(f"Auto-redundant path: {url}")
                return True
            self._auto_redundant_counts[key] += 1

        return False

    def stats(self) -> Dict[str, int]:
        return {element_type: len(ids) for element_type, ids in self._seen.items()}
