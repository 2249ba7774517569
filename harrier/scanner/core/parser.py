"""
Response Parser for Harrier

Extracts auditable elements from HTTP responses:
- Links with query parameters
- Forms and input fields (with nonce detection across precision fetches)
- Cookies set by the response and cookies sent with the request
- Auditable request headers
- Every path referenced by the document
"""

from http.cookies import SimpleCookie, CookieError
from typing import List, Optional, Sequence, Union
from urllib.parse import urljoin, urlparse
from bs4 import BeautifulSoup
import logging

from harrier.scanner.core.elements import Link, Form, FormField, Cookie, Header
from harrier.scanner.core.requester import Response
from harrier.scanner.core.url_utils import normalize_url

logger = logging.getLogger(__name__)

# Tag/attribute pairs that reference other resources
PATH_ATTRIBUTES = (
    ('a', 'href'),
    ('area', 'href'),
    ('link', 'href'),
    ('form', 'action'),
    ('frame', 'src'),
    ('iframe', 'src'),
    ('script', 'src'),
    ('img', 'src'),
    ('embed', 'src'),
    ('meta', 'content'),
)

SKIPPED_SCHEMES = ('javascript:', 'mailto:', 'tel:', 'data:', '#')


def parse_document(html: str) -> BeautifulSoup:
    """Parse HTML, preferring lxml."""
    try:
        return BeautifulSoup(html, 'lxml')
    except Exception:
        # Fallback to html.parser if lxml fails
        return BeautifulSoup(html, 'html.parser')


class Parser:
    """
    Parser bound to one response (or a list of responses of the same URL).

    When several responses are given the first is the primary one; the rest
    are used to find form fields whose values change between fetches.

    Every extraction is computed once and cached.
    """

    # Request headers audited on every page
    AUDITABLE_HEADERS = {
        'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
        'Accept-Charset': 'ISO-8859-1,utf-8;q=0.7,*;q=0.7',
        'Accept-Language': 'en-us,en;q=0.5',
        'From': 'scanner@harrier.local',
        'User-Agent': 'Harrier/1.0 Security Scanner',
        'Pragma': 'no-cache',
    }

    def __init__(self, response: Union[Response, Sequence[Response]]):
        if isinstance(response, (list, tuple)):
            if not response:
                raise ValueError('Parser needs at least one response.')
            self.responses = list(response)
        else:
            self.responses = [response]

        self.response = self.responses[0]
        self.url = normalize_url(self.response.url)

        self._document: Optional[BeautifulSoup] = None
        self._links: Optional[List[Link]] = None
        self._forms: Optional[List[Form]] = None
        self._cookies: Optional[List[Cookie]] = None
        self._paths: Optional[List[str]] = None

    def __getstate__(self):
        # Documents are re-parsed on demand
        state = self.__dict__.copy()
        state['_document'] = None
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)

    def is_text(self) -> bool:
        """Whether the response body is text-based."""
        return self.response.is_text

    def document(self) -> BeautifulSoup:
        """Parsed body, cached."""
        if self._document is None:
            self._document = parse_document(self.response.body if self.is_text() else '')
        return self._document

    def links(self) -> List[Link]:
        """Links carrying query parameters, including the page URL itself."""
        if self._links is not None:
            return self._links

        links = []
        seen = set()

        candidates = [(self.url, '')]
        for a_tag in self.document().find_all('a', href=True):
            href = a_tag['href'].strip()

            # Skip empty, javascript, and mailto links
            if not href or href.startswith(SKIPPED_SCHEMES):
                continue

            candidates.append((urljoin(self.url, href), a_tag.get_text(strip=True)[:100]))

        for url, text in candidates:
            if not urlparse(url).query:
                continue

            link = Link.from_url(self.url, normalize_url(url), text)
            if link.id in seen:
                continue
            seen.add(link.id)
            links.append(link)

        self._links = links
        return links

    def forms(self) -> List[Form]:
        """Forms with all their fields; nonce fields flagged when refined."""
        if self._forms is not None:
            return self._forms

        forms = self._extract_forms(self.document(), self.url)

        if len(self.responses) > 1:
            forms = self._flag_nonces(forms)

        self._forms = forms
        return forms

    def cookies(self) -> List[Cookie]:
        """Cookies set by the response."""
        if self._cookies is not None:
            return self._cookies

        set_cookies = list(self.response.set_cookies)
        if not set_cookies and self.response.get_header('Set-Cookie'):
            set_cookies = [self.response.get_header('Set-Cookie')]

        cookies = []
        for header in set_cookies:
            jar = SimpleCookie()
            try:
                jar.load(header)
            except CookieError as e:
                logger.debug(f"Unparsable Set-Cookie on {self.url}: {e}")
                continue

            for name, morsel in jar.items():
                cookies.append(Cookie.build(
                    self.url, name, morsel.value,
                    secure=bool(morsel['secure']),
                    http_only=bool(morsel['httponly']),
                    path=morsel['path'] or '/'
                ))

        self._cookies = cookies
        return cookies

    def cookie_jar(self) -> List[Cookie]:
        """Cookies that were sent with the request."""
        request = self.response.request
        if request is None:
            return []
        return [Cookie.build(self.url, name, value) for name, value in request.cookies.items()]

    def cookies_to_audit(self) -> List[Cookie]:
        """Response cookies plus jar cookies; the response wins on name clashes."""
        cookies = list(self.cookies())
        names = {c.name for c in cookies}
        cookies.extend(c for c in self.cookie_jar() if c.name not in names)
        return cookies

    def headers(self) -> List[Header]:
        """Request headers to audit, with Referer pointing at this page."""
        headers = [Header.build(self.url, name, value)
                   for name, value in self.AUDITABLE_HEADERS.items()]
        headers.append(Header.build(self.url, 'Referer', self.url))
        return headers

    def paths(self) -> List[str]:
        """Absolute URLs of every resource referenced by the document."""
        if self._paths is not None:
            return self._paths

        paths = []
        seen = set()
        document = self.document()

        for tag_name, attribute in PATH_ATTRIBUTES:
            for tag in document.find_all(tag_name):
                value = tag.get(attribute)
                if not value:
                    continue

                value = value.strip()
                if tag_name == 'meta':
                    # <meta http-equiv="refresh" content="0; url=/next">
                    if (tag.get('http-equiv') or '').lower() != 'refresh' or 'url=' not in value.lower():
                        continue
                    value = value[value.lower().index('url=') + 4:].strip('\'" ')

                if not value or value.startswith(SKIPPED_SCHEMES):
                    continue

                url = normalize_url(urljoin(self.url, value))
                if url not in seen:
                    seen.add(url)
                    paths.append(url)

        self._paths = paths
        return paths

    def to_page(self, fingerprinter=None):
        """Page backed by this parser."""
        from harrier.scanner.core.page import Page

        return Page(parser=self, fingerprinter=fingerprinter)

    def _extract_forms(self, soup: BeautifulSoup, page_url: str) -> List[Form]:
        """Extract all forms with their fields."""
        forms = []

        for form_tag in soup.find_all('form'):
            # Get form action
            action = form_tag.get('action', '')
            if action:
                action = normalize_url(urljoin(page_url, action))
            else:
                action = page_url

            method = form_tag.get('method', 'GET').upper()
            enctype = form_tag.get('enctype', 'application/x-www-form-urlencoded')

            fields = []

            # Input fields
            for input_tag in form_tag.find_all('input'):
                field = self._parse_input_field(input_tag)
                if field:
                    fields.append(field)

            # Textarea fields
            for textarea in form_tag.find_all('textarea'):
                name = textarea.get('name', '')
                if name:
                    fields.append(FormField(
                        name=name,
                        field_type='textarea',
                        value=textarea.string or '',
                        required=textarea.has_attr('required')
                    ))

            # Select fields
            for select in form_tag.find_all('select'):
                name = select.get('name', '')
                if name:
                    # Get first option value
                    first_option = select.find('option')
                    value = first_option.get('value', '') if first_option else ''
                    fields.append(FormField(
                        name=name,
                        field_type='select',
                        value=value,
                        required=select.has_attr('required')
                    ))

            forms.append(Form.build(page_url, action, method, tuple(fields), enctype))

        return forms

    def _parse_input_field(self, input_tag) -> Optional[FormField]:
        """Parse an input tag into FormField."""
        name = input_tag.get('name', '')
        if not name:
            return None

        max_length = input_tag.get('maxlength')
        if max_length:
            try:
                max_length = int(max_length)
            except ValueError:
                max_length = None

        return FormField(
            name=name,
            field_type=input_tag.get('type', 'text').lower(),
            value=input_tag.get('value', ''),
            required=input_tag.has_attr('required'),
            pattern=input_tag.get('pattern'),
            max_length=max_length
        )

    def _flag_nonces(self, forms: List[Form]) -> List[Form]:
        """Mark fields whose values differ between the precision responses."""
        others = []
        for response in self.responses[1:]:
            others.extend(self._extract_forms(parse_document(response.body), self.url))

        refined = []
        for form in forms:
            values = form.parameters
            nonces = set()
            for other in others:
                if other.id != form.id:
                    continue
                for name, value in other.inputs:
                    if values.get(name) != value:
                        nonces.add(name)

            if nonces:
                logger.debug(f"Form {form.action} has nonce fields: {sorted(nonces)}")
                form = form.with_nonces(nonces)
            refined.append(form)

        return refined
