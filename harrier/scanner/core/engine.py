"""
Harrier Scanner Engine

The main orchestrator: crawls the target, then audits the page queue.
Audit mutations are trainable, so pages revealed by training are queued
and audited in turn.
"""

import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional
from datetime import datetime
from dataclasses import dataclass, field
import traceback

from harrier.config import BaseConfig
from harrier.scanner.core.auditor import Auditor
from harrier.scanner.core.crawler import AsyncCrawler
from harrier.scanner.core.element_filter import ElementFilter
from harrier.scanner.core.page import Page
from harrier.scanner.core.platforms import PlatformManager
from harrier.scanner.core.requester import AsyncRequester
from harrier.scanner.core.scope import LinkCountGovernor, ScopeFilter
from harrier.scanner.core.trainer import Trainer

logger = logging.getLogger(__name__)


@dataclass
class ScanConfig:
    """Scanner configuration."""
    max_depth: int = 5
    max_pages: int = 100
    link_count_limit: Optional[int] = None
    timeout: int = 30
    delay: float = 0.5
    concurrent_requests: int = 10
    verify_ssl: bool = True
    respect_robots_txt: bool = True
    scope: str = 'domain'
    precision: int = 1
    fingerprint: bool = True
    audit: bool = True
    audit_seed: str = Auditor.SEED
    max_trainings_per_url: int = Trainer.MAX_TRAININGS_PER_URL
    redundant_paths: Dict[str, int] = field(default_factory=dict)
    auto_redundant: int = 0
    custom_headers: Optional[Dict[str, str]] = None
    cookies: Optional[Dict[str, str]] = None
    excluded_paths: Optional[List[str]] = None
    included_paths: Optional[List[str]] = None
    exclude_content: Optional[List[str]] = None
    proxy: Optional[str] = None

    @classmethod
    def from_object(cls, cfg=BaseConfig, **overrides) -> 'ScanConfig':
        """Build a ScanConfig from a config class, with keyword overrides."""
        values = dict(
            max_depth=cfg.SCANNER_MAX_DEPTH,
            max_pages=cfg.SCANNER_MAX_PAGES,
            link_count_limit=cfg.SCANNER_LINK_COUNT_LIMIT,
            timeout=cfg.SCANNER_TIMEOUT,
            delay=cfg.SCANNER_DELAY_BETWEEN_REQUESTS,
            concurrent_requests=cfg.SCANNER_CONCURRENT_REQUESTS,
            verify_ssl=cfg.SCANNER_VERIFY_SSL,
            respect_robots_txt=cfg.SCANNER_RESPECT_ROBOTS,
            scope=cfg.SCANNER_SCOPE,
            precision=cfg.SCANNER_PRECISION,
            fingerprint=cfg.SCANNER_FINGERPRINT,
            audit_seed=cfg.AUDIT_SEED,
            max_trainings_per_url=cfg.TRAINER_MAX_TRAININGS_PER_URL,
            auto_redundant=cfg.SCANNER_AUTO_REDUNDANT,
            proxy=cfg.SCANNER_PROXY,
            custom_headers={'User-Agent': cfg.SCANNER_USER_AGENT},
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class ScannerEngine:
    """
    Scan driver.

    Orchestrates:
    1. Crawling to discover pages
    2. Auditing every queued page with trainable mutations
    3. Feeding pages found by the Trainer back into the audit queue
    4. Result aggregation and progress reporting
    """

    def __init__(
            self,
            config: Optional[ScanConfig] = None,
            progress_callback: Optional[Callable[[Dict], None]] = None,
            page_callback: Optional[Callable[[Page], None]] = None
    ):
        """
        Initialize the scanner engine.

        Args:
            config: Scanner configuration
            progress_callback: Called with progress updates
            page_callback: Called with every page the Trainer discovers
        """
        self.config = config or ScanConfig()
        self.progress_callback = progress_callback
        self.page_callback = page_callback

        # Components
        self.requester: Optional[AsyncRequester] = None
        self.crawler: Optional[AsyncCrawler] = None
        self.scope: Optional[ScopeFilter] = None
        self.element_filter: Optional[ElementFilter] = None
        self.link_counter: Optional[LinkCountGovernor] = None
        self.platforms: Optional[PlatformManager] = None
        self.auditor: Optional[Auditor] = None
        self.trainer: Optional[Trainer] = None

        # State
        self.root_url: str = ''
        self._page_queue: Deque[Page] = deque()
        self._on_audit_page: List[Callable[[Page], Any]] = []
        self._is_running = False
        self._is_cancelled = False
        self._current_phase = 'idle'
        self._start_time: Optional[datetime] = None

        # Results
        self.crawled_pages: List[Page] = []
        self.audited_pages: List[Page] = []
        self.trained_pages: List[Page] = []
        self.scan_stats: Dict[str, Any] = {}

    def on_audit_page(self, callback: Callable[[Page], Any]):
        """Register a callback called with each page before it is audited."""
        self._on_audit_page.append(callback)

    def push_to_page_queue(self, page: Page):
        """Queue a page for auditing."""
        self._page_queue.append(page)
        self.link_counter.register()

    def link_count_limit_reached(self) -> bool:
        return self.link_counter.limit_reached()

    async def scan(self, target_url: str) -> Dict:
        """
        Execute a full scan.

        Args:
            target_url: Target URL to scan

        Returns:
            Scan results dictionary
        """
        self._is_running = True
        self._is_cancelled = False
        self._start_time = datetime.utcnow()
        self.root_url = target_url
        self.crawled_pages = []
        self.audited_pages = []
        self.trained_pages = []

        try:
            self._initialize(target_url)
            await self.requester.start()

            # Phase 1: Crawling
            await self._phase_crawl(target_url)

            if self._is_cancelled:
                return self._build_results('cancelled')

            # Phase 2: Auditing and training
            if self.config.audit:
                await self._phase_audit()

            if self._is_cancelled:
                return self._build_results('cancelled')

            return self._build_results('completed')

        except Exception as e:
            logger.error(f"Scan error: {e}\n{traceback.format_exc()}")
            return self._build_results('failed', str(e))

        finally:
            await self._cleanup()
            self._is_running = False

    def _initialize(self, target_url: str):
        """Initialize scanner components."""
        self._update_progress('initializing', 0, 'Initializing scanner...')

        self.requester = AsyncRequester(
            timeout=self.config.timeout,
            max_concurrent=self.config.concurrent_requests,
            delay=self.config.delay,
            verify_ssl=self.config.verify_ssl,
            custom_headers=self.config.custom_headers,
            cookies=self.config.cookies,
            proxy=self.config.proxy
        )

        self.scope = ScopeFilter(
            target_url,
            scope=self.config.scope,
            excluded_paths=self.config.excluded_paths,
            included_paths=self.config.included_paths,
            exclude_content=self.config.exclude_content
        )
        self.element_filter = ElementFilter(
            redundant=self.config.redundant_paths,
            auto_redundant=self.config.auto_redundant
        )
        self.link_counter = LinkCountGovernor(self.config.link_count_limit)
        self.platforms = PlatformManager(enabled=self.config.fingerprint)

        self.crawler = AsyncCrawler(
            requester=self.requester,
            scope=self.scope,
            element_filter=self.element_filter,
            link_counter=self.link_counter,
            platforms=self.platforms,
            max_depth=self.config.max_depth,
            max_pages=self.config.max_pages,
            precision=self.config.precision,
            respect_robots=self.config.respect_robots_txt
        )

        self.auditor = Auditor(self.requester, self.scope, seed=self.config.audit_seed)

        self._page_queue.clear()
        self._on_audit_page = []
        self.trainer = Trainer(self, max_trainings_per_url=self.config.max_trainings_per_url)
        self.trainer.on_new_page(self._on_trained_page)

    async def _phase_crawl(self, target_url: str):
        """Phase 1: Crawl the target website."""
        self._update_progress('crawling', 10, f'Crawling {target_url}...')

        def crawl_progress(current, total, url):
            progress = 10 + int((current / max(total, 1)) * 30)
            self._update_progress('crawling', progress, f'Crawling: {url[:50]}...')

        self.crawler.progress_callback = crawl_progress

        self.crawled_pages = await self.crawler.crawl(target_url)

        # Crawled surface is known surface; crawled pages were already counted
        for page in self.crawled_pages:
            self.element_filter.init_from_page(page)
        self._page_queue.extend(self.crawled_pages)

        self.scan_stats['crawl'] = self.crawler.get_stats()
        self.scan_stats['crawl']['duration'] = (
                datetime.utcnow() - self._start_time
        ).total_seconds()

        self._update_progress(
            'crawling',
            40,
            f'Crawl complete. Found {len(self.crawled_pages)} pages.'
        )

    async def _phase_audit(self):
        """Phase 2: Audit queued pages until the queue is exhausted."""
        self._update_progress('auditing', 45, 'Auditing pages...')

        while self._page_queue:
            if self._is_cancelled:
                return

            page = self._page_queue.popleft()
            total = len(self.audited_pages) + len(self._page_queue) + 1
            progress = 45 + int((len(self.audited_pages) / total) * 50)
            self._update_progress('auditing', progress, f'Auditing: {page.url[:50]}...')

            await self._audit_page(page)
            self.audited_pages.append(page)

        self._update_progress('auditing', 95, 'Audit complete.')

    async def _audit_page(self, page: Page):
        """Make ``page`` the seed page, audit its elements and wait for every response."""
        for callback in self._on_audit_page:
            callback(page)

        self.auditor.audit(page)

        # Trainer seeds must not change while mutations are in flight
        await self.requester.run()

    def _on_trained_page(self, page: Page):
        self.trained_pages.append(page)
        logger.info(
            f"Training revealed {len(page.links)} links, {len(page.forms)} forms, "
            f"{len(page.cookies)} cookies at {page.url}"
        )

        if self.page_callback:
            self.page_callback(page)

    def _update_progress(self, phase: str, progress: int, message: str):
        """Update scan progress."""
        self._current_phase = phase

        if self.progress_callback:
            self.progress_callback({
                'phase': phase,
                'progress': progress,
                'message': message,
                'pages_crawled': len(self.crawled_pages),
                'pages_trained': len(self.trained_pages)
            })

    @staticmethod
    def _page_summary(page: Page) -> Dict:
        return {
            'url': page.url,
            'code': page.code,
            'title': page.title(),
            'links': [link.id for link in page.links],
            'forms': [form.id for form in page.forms],
            'cookies': [cookie.id for cookie in page.cookies],
            'platforms': sorted(page.platforms()),
        }

    def _build_results(self, status: str, error: Optional[str] = None) -> Dict:
        """Build final scan results."""
        end_time = datetime.utcnow()
        duration = (end_time - self._start_time).total_seconds() if self._start_time else 0

        return {
            'status': status,
            'error': error,
            'target': self.root_url,
            'duration': duration,
            'start_time': self._start_time.isoformat() if self._start_time else None,
            'end_time': end_time.isoformat(),
            'statistics': {
                'pages_crawled': len(self.crawled_pages),
                'pages_audited': len(self.audited_pages),
                'pages_trained': len(self.trained_pages),
                'elements_seen': self.element_filter.stats() if self.element_filter else {},
                'audit': self.auditor.stats if self.auditor else {},
                'training': self.trainer.get_stats() if self.trainer else {},
                'requests': self.requester.get_stats() if self.requester else {},
            },
            'pages': [self._page_summary(page) for page in self.crawled_pages],
            'trained_pages': [self._page_summary(page) for page in self.trained_pages],
            'platforms': self.platforms.all() if self.platforms else {},
            'crawl_stats': self.scan_stats.get('crawl', {})
        }

    async def _cleanup(self):
        """Cleanup resources."""
        if self.requester:
            await self.requester.close()

    def cancel(self):
        """Cancel the running scan."""
        self._is_cancelled = True
        if self.crawler:
            self.crawler.cancel()

    @property
    def is_running(self) -> bool:
        """Check if scan is running."""
        return self._is_running

    @property
    def current_phase(self) -> str:
        """Get current scan phase."""
        return self._current_phase
