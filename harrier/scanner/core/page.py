"""
Page model for Harrier

A Page is a snapshot of a fetched resource. Its auditable elements are
pulled lazily from the backing parser, cached on first access, and frozen
once set.

Two pages are equal when their body and response fingerprint match; URL,
status and elements do not take part in equality.
"""

import copy
import pickle
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from bs4 import BeautifulSoup

from harrier.scanner.core.elements import AuditableElement, Cookie, Form, Header, Link
from harrier.scanner.core.parser import Parser, parse_document
from harrier.scanner.core.requester import AsyncRequester, Request, Response
from harrier.scanner.core.url_utils import parse_query

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """A Page was constructed without usable options."""


# Element collections and the parser method each one is pulled from
COLLECTIONS = {
    'links': 'links',
    'forms': 'forms',
    'cookies': 'cookies_to_audit',
    'headers': 'headers',
    'cookiejar': 'cookie_jar',
    'paths': 'paths',
}

OPTIONS = ('response', 'parser', 'url', 'body', 'code', 'request') + tuple(COLLECTIONS)


class Page:
    """
    Snapshot of a fetched resource and its auditable elements.

    Needs either a ``response`` (or ``parser``) or user supplied data.

    Options:
        response: Response, or list of responses of the same URL for
            precision refinement
        parser: an instantiated Parser
        url, body, code: override the response values
        links, forms, cookies, headers, cookiejar, paths: element collections
        request: Request that produced the page

    Every option value is deep-copied on intake.
    """

    def __init__(self, fingerprinter=None, **options):
        if not options:
            raise ConfigurationError('Options cannot be empty.')

        unknown = set(options) - set(OPTIONS)
        if unknown:
            raise ConfigurationError(f"Unknown page options: {', '.join(sorted(unknown))}")

        self._response = None
        self._parser: Optional[Parser] = None
        self._url: Optional[str] = None
        self._body: Optional[str] = None
        self._code: Optional[int] = None
        self._request: Optional[Request] = None
        for name in COLLECTIONS:
            setattr(self, f"_{name}", None)

        for name, value in options.items():
            if value is None:
                continue
            value = copy.deepcopy(value)
            if name in COLLECTIONS:
                value = tuple(value)
            setattr(self, f"_{name}", value)

        if self._parser is None and self._response is not None:
            self._parser = Parser(self._response)

        self._fingerprinter = fingerprinter
        if fingerprinter is not None and fingerprinter.enabled:
            fingerprinter.fingerprint(self)

    @classmethod
    async def fetch(
            cls,
            url: str,
            requester: AsyncRequester,
            precision: int = 1,
            http_options: Optional[Dict[str, Any]] = None,
            callback: Optional[Callable[['Page'], Any]] = None,
            fingerprinter=None
    ) -> Optional['Page']:
        """
        Fetch ``url`` ``precision`` times and build a Page from the responses.

        Args:
            url: URL to fetch
            requester: HTTP layer
            precision: How many times to request the page; differences between
                the responses identify nonce tokens
            http_options: Request options (headers, cookies, ...)
            callback: If given, fetching is asynchronous: the callback is called
                once with the Page when all responses have arrived and this
                coroutine returns None right away
            fingerprinter: PlatformManager for the new page

        Returns:
            The Page when no callback was given
        """
        precision = max(1, precision or 1)
        options = dict(http_options or {})
        if precision > 1:
            # Identical cached responses would hide nonces
            options['use_cache'] = False

        responses: List[Response] = []

        def collect(response: Response):
            responses.append(response)
            if len(responses) != precision or callback is None:
                return
            callback(cls.from_response(list(responses), fingerprinter=fingerprinter))

        for _ in range(precision):
            requester.queue_get(url, on_complete=collect, **options)

        if callback is not None:
            return None

        await requester.run()
        return cls.from_response(responses, fingerprinter=fingerprinter)

    @classmethod
    def from_response(cls, response, fingerprinter=None) -> 'Page':
        """Page for ``response`` (or a list of responses of the same URL)."""
        if isinstance(response, (list, tuple)) and len(response) == 1:
            response = response[0]
        return cls(fingerprinter=fingerprinter, response=response)

    @classmethod
    def from_data(cls, data: Dict[str, Any], fingerprinter=None) -> 'Page':
        """
        Page from pre-extracted data.

        Top-level ``url``, ``body`` and ``code`` are moved into the response
        record unless it already has them, in which case they stay as page
        overrides. Element collections default to empty.
        """
        data = dict(data)

        response = dict(data.get('response') or {})
        if response.get('code') is None:
            response['code'] = data.pop('code', None) or 200
        if response.get('url') is None:
            response['url'] = data.pop('url', None)
        if response.get('body') is None:
            response['body'] = data.pop('body', None) or ''
        response.setdefault('headers', {})
        request_options = response.pop('request', None) or {}

        for name in ('links', 'forms', 'cookies', 'headers', 'cookiejar'):
            data[name] = data.get(name) or []

        url = response['url'] or ''
        data['response'] = Response(
            url=url,
            status=response['code'],
            headers=response['headers'],
            body=response['body'],
            request=Request(url, **request_options)
        )

        return cls(fingerprinter=fingerprinter, **data)

    @property
    def parser(self) -> Optional[Parser]:
        return self._parser

    @property
    def response(self) -> Optional[Response]:
        """HTTP response of the page."""
        if self._parser is None:
            return None
        return self._parser.response

    @property
    def request(self) -> Optional[Request]:
        if self._request is None and self.response is not None:
            return self.response.request
        return self._request

    @property
    def url(self) -> str:
        if self._url is None:
            if self._parser is None:
                return ''
            self._url = self._parser.url
        return self._url

    @property
    def code(self) -> int:
        if self._code is None:
            if self.response is None:
                return 0
            self._code = self.response.status
        return self._code

    @property
    def body(self) -> str:
        if self._body is None:
            if self._parser is None:
                return ''
            self._body = self.response.body
        return self._body

    @property
    def query_vars(self) -> Dict[str, str]:
        """Query parameters of the page URL."""
        return parse_query(self.url)

    @property
    def method(self) -> str:
        """Request method that returned the page."""
        request = self.request
        if request is None:
            return 'GET'
        return request.method.value

    def _collection(self, name: str) -> Tuple:
        value = getattr(self, f"_{name}")
        if value is None:
            if self._parser is None:
                return ()
            value = tuple(getattr(self._parser, COLLECTIONS[name])())
            setattr(self, f"_{name}", value)
        return value

    @property
    def links(self) -> Tuple[Link, ...]:
        return self._collection('links')

    @links.setter
    def links(self, links):
        self._links = tuple(links)

    @property
    def forms(self) -> Tuple[Form, ...]:
        return self._collection('forms')

    @forms.setter
    def forms(self, forms):
        self._forms = tuple(forms)

    @property
    def cookies(self) -> Tuple[Cookie, ...]:
        return self._collection('cookies')

    @cookies.setter
    def cookies(self, cookies):
        self._cookies = tuple(cookies)

    @property
    def headers(self) -> Tuple[Header, ...]:
        """Request headers to audit."""
        return self._collection('headers')

    @headers.setter
    def headers(self, headers):
        self._headers = tuple(headers)

    @property
    def cookiejar(self) -> Tuple[Cookie, ...]:
        """Cookies with which to update the cookie jar before auditing."""
        return self._collection('cookiejar')

    @property
    def paths(self) -> Tuple[str, ...]:
        """Paths contained in the page."""
        return self._collection('paths')

    def elements(self) -> List[AuditableElement]:
        """All page elements: links, forms, cookies and headers."""
        return list(dict.fromkeys(self.links + self.forms + self.cookies + self.headers))

    def platforms(self):
        """Applicable platforms for the page."""
        if self._fingerprinter is None:
            return frozenset()
        return self._fingerprinter.lookup(self.url)

    def is_text(self) -> bool:
        """``True`` if the body of the page is text-based."""
        if self._parser is None:
            return False
        return self._parser.is_text()

    def document(self) -> BeautifulSoup:
        """Parsed body; data-only pages re-parse on every call."""
        if self._parser is None:
            return parse_document(self.body)
        return self._parser.document()

    def title(self) -> str:
        """Title of the page."""
        try:
            return self.document().find('title').get_text().strip()
        except Exception as e:
            logger.debug(f"No title for {self.url}: {e}")
            return ''

    def dup(self) -> 'Page':
        """Deep copy; the copy shares nothing mutable with this page."""
        return copy.deepcopy(self)

    def __deepcopy__(self, memo):
        page = self.__class__.__new__(self.__class__)
        memo[id(self)] = page
        for name, value in self.__dict__.items():
            if name == '_fingerprinter':
                page._fingerprinter = value
            else:
                setattr(page, name, copy.deepcopy(value, memo))
        return page

    def _payload(self):
        response = self.response
        if response is not None:
            # Callbacks belong to the live scan and must not be replayed
            if response.request is not None:
                response.request.clear_callbacks()
            return response

        data = {}
        for name in OPTIONS:
            value = getattr(self, f"_{name}")
            if value is not None:
                data[name] = value
        return data

    def dump(self) -> bytes:
        """Serialize the page."""
        return pickle.dumps(self._payload())

    @classmethod
    def load(cls, data: bytes, fingerprinter=None) -> 'Page':
        """Restore a page serialized with ``dump``."""
        return _restore(pickle.loads(data), fingerprinter)

    def __reduce__(self):
        return _restore, (self._payload(),)

    def __hash__(self):
        return hash(f"{hash(self.body)}:{hash(self.response)}")

    def __eq__(self, other):
        if not isinstance(other, Page):
            return NotImplemented
        return hash(self) == hash(other)

    def __repr__(self):
        return f"<Page {self.code} {self.url}>"


def _restore(payload, fingerprinter=None) -> Page:
    """Rebuild a page from either serialized encoding."""
    if isinstance(payload, dict):
        return Page(fingerprinter=fingerprinter, **payload)
    return Page.from_response(payload, fingerprinter=fingerprinter)
