"""
Platform fingerprinting for Harrier

Identifies server-side platforms from page bodies, response headers,
cookies and URL extensions and keeps them per URL.
"""

import re
from collections import defaultdict
from typing import Dict, FrozenSet, Set
from urllib.parse import urlparse
import logging

from harrier.scanner.core.url_utils import normalize_url

logger = logging.getLogger(__name__)


class PlatformManager:
    """
    Registry of detected platforms, keyed by normalized URL.

    Injected into pages; when ``enabled`` every new Page is fingerprinted
    on construction.
    """

    # Body patterns
    TECH_PATTERNS = {
        'jQuery': [r'jquery[.-](\d+\.\d+\.\d+)?', r'jquery\.min\.js'],
        'Bootstrap': [r'bootstrap[.-](\d+\.\d+\.\d+)?', r'bootstrap\.min\.js'],
        'React': [r'react[.-](\d+\.\d+\.\d+)?', r'react\.production\.min\.js'],
        'Angular': [r'angular[.-](\d+\.\d+\.\d+)?', r'angular\.min\.js'],
        'Vue.js': [r'vue[.-](\d+\.\d+\.\d+)?', r'vue\.min\.js'],
        'WordPress': [r'wp-content', r'wp-includes', r'wordpress'],
        'Drupal': [r'drupal\.js', r'/sites/default/'],
        'Joomla': [r'/media/jui/', r'joomla'],
        'Laravel': [r'laravel', r'csrf-token'],
        'Django': [r'csrfmiddlewaretoken', r'django'],
        'ASP.NET': [r'__viewstate', r'__eventvalidation', r'asp\.net'],
        'PHP': [r'\.php', r'phpsessid'],
    }

    # Server / X-Powered-By header patterns
    HEADER_PATTERNS = {
        'Apache': r'apache',
        'Nginx': r'nginx',
        'IIS': r'microsoft-iis',
        'PHP': r'php',
        'ASP.NET': r'asp\.net',
        'Express': r'express',
        'Java': r'servlet|jsp|tomcat|jetty',
    }

    COOKIE_NAMES = {
        'phpsessid': 'PHP',
        'jsessionid': 'Java',
        'asp.net_sessionid': 'ASP.NET',
        'csrftoken': 'Django',
        'laravel_session': 'Laravel',
    }

    EXTENSIONS = {
        '.php': 'PHP',
        '.asp': 'ASP',
        '.aspx': 'ASP.NET',
        '.jsp': 'Java',
        '.do': 'Java',
        '.pl': 'Perl',
        '.py': 'Python',
        '.rb': 'Ruby',
    }

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._platforms: Dict[str, Set[str]] = defaultdict(set)

    def fingerprint(self, page) -> FrozenSet[str]:
        """Detect and record the platforms of ``page``."""
        platforms = set()

        body = page.body.lower()
        for tech, patterns in self.TECH_PATTERNS.items():
            for pattern in patterns:
                if re.search(pattern, body, re.IGNORECASE):
                    platforms.add(tech)
                    break

        response = page.response
        if response is not None:
            banner = f"{response.get_header('Server')} {response.get_header('X-Powered-By')}".lower()
            for tech, pattern in self.HEADER_PATTERNS.items():
                if re.search(pattern, banner):
                    platforms.add(tech)

        for cookie in page.cookies:
            tech = self.COOKIE_NAMES.get(cookie.name.lower())
            if tech:
                platforms.add(tech)

        path = urlparse(page.url).path.lower()
        for extension, tech in self.EXTENSIONS.items():
            if path.endswith(extension):
                platforms.add(tech)

        if platforms and page.url:
            self._platforms[normalize_url(page.url)].update(platforms)
            logger.debug(f"Platforms for {page.url}: {sorted(platforms)}")

        return frozenset(platforms)

    def lookup(self, url: str) -> FrozenSet[str]:
        """Platforms recorded for ``url``."""
        return frozenset(self._platforms.get(normalize_url(url), ()))

    def all(self) -> Dict[str, list]:
        return {url: sorted(platforms) for url, platforms in self._platforms.items()}

    def clear(self):
        self._platforms.clear()
