"""Shared fixtures: response factory, fake HTTP layer and fake scan driver."""

import pytest

from harrier.scanner.core.element_filter import ElementFilter
from harrier.scanner.core.requester import Request, RequestMethod, Response
from harrier.scanner.core.scope import LinkCountGovernor, ScopeFilter

BASE_URL = 'http://target.test'


def make_response(url=BASE_URL + '/', body='', status=200, headers=None,
                  content_type='text/html', set_cookies=None, request=None):
    """Build a Response as the requester would."""
    headers = dict(headers or {})
    if content_type:
        headers.setdefault('Content-Type', content_type)
    response = Response(
        url=url,
        status=status,
        headers=headers,
        body=body,
        set_cookies=list(set_cookies or [])
    )
    response.request = request or Request(url)
    return response


def html(*fragments):
    return '<html><head><title>Test</title></head><body>' + ''.join(fragments) + '</body></html>'


class FakeRequester:
    """Records queued requests instead of sending them."""

    def __init__(self):
        self.hooks = []
        self.queued = []

    def add_on_queue(self, hook):
        self.hooks.append(hook)

    def queue(self, request):
        for hook in self.hooks:
            hook(request)
        self.queued.append(request)
        return request

    def queue_get(self, url, on_complete=None, **options):
        request = Request(url, RequestMethod.GET, **options)
        if on_complete:
            request.on_complete(on_complete)
        return self.queue(request)

    async def run(self):
        pass


class FakeFramework:
    """Minimal scan driver for the Trainer."""

    def __init__(self, root_url=BASE_URL + '/', link_count_limit=None):
        self.root_url = root_url
        self.requester = FakeRequester()
        self.element_filter = ElementFilter()
        self.scope = ScopeFilter(root_url)
        self.platforms = None
        self.link_counter = LinkCountGovernor(link_count_limit)
        self.page_queue = []
        self._on_audit_page = []

    def on_audit_page(self, callback):
        self._on_audit_page.append(callback)

    def audit(self, page):
        for callback in self._on_audit_page:
            callback(page)

    def push_to_page_queue(self, page):
        self.page_queue.append(page)
        self.link_counter.register()

    def link_count_limit_reached(self):
        return self.link_counter.limit_reached()


@pytest.fixture
def framework():
    return FakeFramework()
