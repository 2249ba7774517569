"""
Trainer for Harrier

Analyzes the responses of trainable requests (mostly audit mutations)
looking for elements that were not there before, e.g. links or forms
revealed by a submitted value. New elements are wrapped in a delta Page
that is fed back to the scan's page queue.
"""

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional
import logging
import traceback

from harrier.scanner.core.page import Page
from harrier.scanner.core.parser import Parser
from harrier.scanner.core.requester import Request, Response
from harrier.scanner.core.url_utils import to_absolute

logger = logging.getLogger(__name__)


class TrainingStatus(Enum):
    """Outcome of pushing a response to the trainer."""
    TRAINED = 'trained'
    SKIPPED = 'skipped'
    FAILED = 'failed'


@dataclass
class TrainingResult:
    """
    Result of ``Trainer.push``.

    ``page`` is the emitted delta page, if the response revealed new elements.
    """
    status: TrainingStatus
    reason: Optional[str] = None
    error: Optional[BaseException] = None
    page: Optional[Page] = None

    @property
    def trained(self) -> bool:
        return self.status == TrainingStatus.TRAINED

    @classmethod
    def skipped(cls, reason: str) -> 'TrainingResult':
        return cls(TrainingStatus.SKIPPED, reason=reason)


class Trainer:
    """
    Watches trainable HTTP responses for new elements.

    The framework must provide:
    - ``on_audit_page(callback)`` and ``push_to_page_queue(page)``
    - ``requester`` with ``add_on_queue`` and ``queue_get``
    - ``element_filter``, ``scope`` and ``platforms``
    - ``root_url`` and ``link_count_limit_reached()``
    """

    MAX_TRAININGS_PER_URL = 25

    def __init__(self, framework, max_trainings_per_url: Optional[int] = None):
        self.framework = framework
        self.element_filter = framework.element_filter
        self.scope = framework.scope
        if max_trainings_per_url is None:
            max_trainings_per_url = self.MAX_TRAININGS_PER_URL
        self.max_trainings_per_url = max_trainings_per_url

        self.page: Optional[Page] = None
        self.trainings_per_url: Dict[str, int] = defaultdict(int)

        self._updated = False
        self._on_new_page: List[Callable[[Page], None]] = []

        # Use the page that is being audited as the seed page
        framework.on_audit_page(self.set_page)
        framework.requester.add_on_queue(self._on_queue)

    def set_page(self, page: Page):
        """Set the seed page and add its elements to the baseline."""
        self.element_filter.init_from_page(page)
        self.page = page.dup()

    # Alias
    init = set_page

    def on_new_page(self, callback: Callable[[Page], None]):
        """Register a callback for every emitted delta page."""
        self._on_new_page.append(callback)

    def _on_queue(self, request: Request):
        if not request.train:
            return
        request.on_complete(self._on_response)

    def _on_response(self, response: Response):
        location = response.location
        if not response.is_redirect or not location:
            self.push(response)
            return

        # Follow one hop with a fresh request; the follow-up is not trainable
        # and does not follow further redirects
        reference_url = self.page.url if self.page else self.framework.root_url
        url = to_absolute(location, reference_url)
        logger.debug(f"Following redirection of {response.url} to {url}")
        self.framework.requester.queue_get(
            url, on_complete=self.push, allow_redirects=False, use_cache=False
        )

    def push(self, response: Response) -> TrainingResult:
        """
        Pass the response on for analysis.

        If the response contains new elements, a delta page carrying only
        those is created and pushed to the framework's page queue.
        """
        if self.page is None:
            logger.debug('No seed page assigned yet.')
            return TrainingResult.skipped('no seed page')

        if self.framework.link_count_limit_reached():
            logger.info('Link count limit reached, skipping analysis.')
            return TrainingResult.skipped('link count limit reached')

        try:
            parser = Parser(response)

            if not parser.is_text():
                return TrainingResult.skipped('not text')

            if self.trainings_per_url.get(parser.url, 0) >= self.max_trainings_per_url:
                logger.debug(f"Training limit reached for {parser.url}")
                return TrainingResult.skipped('training limit reached')

            if self.element_filter.is_redundant_path(parser.url):
                return TrainingResult.skipped('redundant path')

            if self.scope.should_skip(response):
                return TrainingResult.skipped('out of scope')

            page = self._analyze(response, parser)

        except Exception as e:
            logger.error(f"Training failed for {response.url}: {e}\n{traceback.format_exc()}")
            return TrainingResult(TrainingStatus.FAILED, error=e)

        return TrainingResult(TrainingStatus.TRAINED, page=page)

    def _analyze(self, response: Response, parser: Parser) -> Optional[Page]:
        """Look for new links, forms and cookies; emit a delta page if any."""
        request_id = response.request.id if response.request else None
        logger.debug(f"Started for response with request ID: #{request_id}")

        try:
            new_elements = {
                'cookies': self._find_new('cookies', parser)
            }

            # Same body as the seed page and no new cookies: nothing to find
            if response.body == self.page.body and not self._updated and self.page.url == parser.url:
                logger.debug("Page hasn't changed.")
                return None

            for element_type in ('forms', 'links'):
                new_elements[element_type] = self._find_new(element_type, parser)

            if not self._updated:
                return None

            self.trainings_per_url[parser.url] += 1

            page = parser.to_page(fingerprinter=self.framework.platforms)

            # Only keep new elements
            for element_type, elements in new_elements.items():
                setattr(page, element_type, elements)

            for callback in self._on_new_page:
                callback(page)

            # Feed the page back to the framework
            self.framework.push_to_page_queue(page)

            logger.debug('Training complete.')
            return page

        finally:
            self._updated = False

    def _find_new(self, element_type: str, parser: Parser) -> list:
        if element_type == 'cookies':
            candidates = parser.cookies_to_audit()
        else:
            candidates = getattr(parser, element_type)()

        elements, count = getattr(self.element_filter, f"update_{element_type}")(candidates)
        if count == 0:
            return []

        self._updated = True
        logger.info(f"Found {count} new {element_type}.")

        return [element.with_scope_override() for element in elements]

    def get_stats(self) -> Dict:
        return {
            'trained_urls': len(self.trainings_per_url),
            'trainings': sum(self.trainings_per_url.values()),
        }
