"""
Async Web Crawler for Harrier

High-performance async crawler with:
- Depth-limited crawling
- Scope restrictions
- URL deduplication
- Robots.txt compliance
- Precision fetching (nonce detection)
- Progress tracking
"""

import asyncio
from typing import Set, List, Dict, Optional, Callable
from urllib.parse import urlparse
from dataclasses import dataclass
import logging

from harrier.scanner.core.element_filter import ElementFilter
from harrier.scanner.core.page import Page
from harrier.scanner.core.platforms import PlatformManager
from harrier.scanner.core.requester import AsyncRequester
from harrier.scanner.core.scope import ScopeFilter, LinkCountGovernor
from harrier.scanner.core.url_utils import normalize_url

logger = logging.getLogger(__name__)


@dataclass
class CrawlStats:
    """Crawling statistics."""
    urls_discovered: int = 0
    urls_crawled: int = 0
    urls_skipped: int = 0
    urls_failed: int = 0
    forms_found: int = 0
    links_found: int = 0


class AsyncCrawler:
    """
    Async web crawler producing Pages.

    Features:
    - Async crawling with configurable concurrency
    - Depth-limited traversal
    - Scope restrictions via ScopeFilter
    - URL normalization and deduplication
    - Robots.txt compliance (optional)
    - Progress callbacks
    - Graceful cancellation
    """

    def __init__(
            self,
            requester: AsyncRequester,
            scope: ScopeFilter,
            element_filter: Optional[ElementFilter] = None,
            link_counter: Optional[LinkCountGovernor] = None,
            platforms: Optional[PlatformManager] = None,
            max_depth: int = 5,
            max_pages: int = 100,
            precision: int = 1,
            respect_robots: bool = True,
            workers: int = 5,
            progress_callback: Optional[Callable[[int, int, str], None]] = None
    ):
        """
        Initialize the crawler.

        Args:
            requester: AsyncRequester instance
            scope: Scope rules
            element_filter: Redundancy rules for crawled paths
            link_counter: Scan-wide link count governor
            platforms: Fingerprint registry for the produced pages
            max_depth: Maximum crawl depth
            max_pages: Maximum pages to crawl
            precision: How many times to fetch every page
            respect_robots: Whether to respect robots.txt
            workers: Number of concurrent crawl workers
            progress_callback: Callback for progress updates (current, total, url)
        """
        self.requester = requester
        self.scope = scope
        self.element_filter = element_filter
        self.link_counter = link_counter or LinkCountGovernor()
        self.platforms = platforms
        self.max_depth = max_depth
        self.max_pages = max_pages
        self.precision = precision
        self.respect_robots = respect_robots
        self.workers = workers
        self.progress_callback = progress_callback

        # State
        self._visited: Set[str] = set()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._robots_rules: Dict[str, List[str]] = {}
        self._cancelled = False

        # Statistics
        self.stats = CrawlStats()

        # Results storage
        self.pages: List[Page] = []

    async def crawl(self, start_url: str) -> List[Page]:
        """
        Crawl website starting from the given URL.

        Args:
            start_url: Starting URL

        Returns:
            List of crawled Pages
        """
        self._visited.clear()
        self.pages = []
        self._cancelled = False
        self.stats = CrawlStats()
        self._queue = asyncio.Queue()

        # Fetch robots.txt if needed
        if self.respect_robots:
            await self._fetch_robots(start_url)

        await self._queue.put((start_url, 0))
        self.stats.urls_discovered = 1

        workers = [
            asyncio.create_task(self._worker())
            for _ in range(max(1, min(self.workers, self.max_pages)))
        ]

        # Wait for queue to be processed
        await self._queue.join()

        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        return self.pages

    async def _worker(self):
        """Worker coroutine for processing URLs."""
        while True:
            url, depth = await self._queue.get()
            try:
                if not self._cancelled:
                    await self._process_url(url, depth)
            except Exception as e:
                logger.error(f"Error processing {url}: {e}")
            finally:
                self._queue.task_done()

    async def _process_url(self, url: str, depth: int):
        """Process a single URL."""
        # Check limits
        if len(self.pages) >= self.max_pages or self.link_counter.limit_reached():
            self._cancelled = True
            return

        url = normalize_url(url)

        # Skip if already visited
        if url in self._visited:
            return
        self._visited.add(url)

        if not self._should_crawl(url):
            self.stats.urls_skipped += 1
            return

        if self.progress_callback:
            self.progress_callback(len(self.pages), self.max_pages, url)

        page = await self._fetch_page(url)
        response = page.response

        if response.error:
            logger.debug(f"Failed to crawl {url}: {response.error}")
            self.stats.urls_failed += 1
            return

        self.stats.urls_crawled += 1
        self.link_counter.register()
        self.pages.append(page)

        self.stats.forms_found += len(page.forms)
        self.stats.links_found += len(page.links)

        # Follow redirects and every referenced path
        next_urls = list(page.paths)
        if response.redirect_url:
            next_urls.append(response.url)

        if depth < self.max_depth:
            for next_url in next_urls:
                normalized = normalize_url(next_url)
                if normalized not in self._visited:
                    await self._queue.put((normalized, depth + 1))
                    self.stats.urls_discovered += 1

    async def _fetch_page(self, url: str) -> Page:
        """Fetch ``url`` with the configured precision."""
        future = asyncio.get_running_loop().create_future()
        await Page.fetch(
            url,
            self.requester,
            precision=self.precision,
            callback=future.set_result,
            fingerprinter=self.platforms
        )
        return await future

    def _should_crawl(self, url: str) -> bool:
        """Check if URL should be crawled based on scope and rules."""
        if not self.scope.is_in_scope(url):
            return False

        if self.element_filter is not None and self.element_filter.is_redundant_path(url):
            return False

        # Check robots.txt
        if self.respect_robots:
            if not self._is_allowed_by_robots(url):
                return False

        return True

    async def _fetch_robots(self, base_url: str):
        """Fetch and parse robots.txt."""
        parsed = urlparse(base_url)
        robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"

        response = await self.requester.get(robots_url)

        if response.is_success:
            self._parse_robots(response.body, parsed.netloc)

    def _parse_robots(self, content: str, domain: str):
        """Parse robots.txt content."""
        disallow_rules = []
        current_agent = None

        for line in content.split('\n'):
            line = line.strip().lower()

            if line.startswith('user-agent:'):
                agent = line.split(':', 1)[1].strip()
                if agent == '*' or 'harrier' in agent:
                    current_agent = agent

            elif line.startswith('disallow:') and current_agent:
                path = line.split(':', 1)[1].strip()
                if path:
                    disallow_rules.append(path)

        self._robots_rules[domain] = disallow_rules

    def _is_allowed_by_robots(self, url: str) -> bool:
        """Check if URL is allowed by robots.txt."""
        parsed = urlparse(url)
        rules = self._robots_rules.get(parsed.netloc, [])

        for rule in rules:
            if parsed.path.startswith(rule):
                return False

        return True

    def cancel(self):
        """Cancel the crawl."""
        self._cancelled = True

    def get_stats(self) -> Dict:
        """Get crawl statistics."""
        return {
            'urls_discovered': self.stats.urls_discovered,
            'urls_crawled': self.stats.urls_crawled,
            'urls_skipped': self.stats.urls_skipped,
            'urls_failed': self.stats.urls_failed,
            'forms_found': self.stats.forms_found,
            'links_found': self.stats.links_found
        }
