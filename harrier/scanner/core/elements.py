"""
Auditable elements for Harrier

Immutable value types extracted from pages:
- Links with query parameters
- Forms and their fields
- Cookies
- Request headers

Each element exposes a stable ``id`` used by the element filter to tell
new attack surface from surface that was already seen.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse, parse_qsl

from harrier.scanner.core.url_utils import strip_query

Inputs = Tuple[Tuple[str, str], ...]


@dataclass(frozen=True)
class AuditableElement:
    """Base for all auditable elements."""
    url: str
    action: str
    inputs: Inputs = ()
    scope_override: bool = field(default=False, compare=False)

    type = 'element'

    @property
    def method(self) -> str:
        return 'GET'

    @property
    def parameters(self) -> Dict[str, str]:
        """Inputs as a dict."""
        return dict(self.inputs)

    @property
    def input_names(self) -> Tuple[str, ...]:
        return tuple(sorted(name for name, _ in self.inputs))

    @property
    def id(self) -> str:
        """Identity used for deduplication (input values excluded)."""
        return f"{self.type}:{self.method}:{self.action}:{','.join(self.input_names)}"

    def with_scope_override(self) -> 'AuditableElement':
        """Copy of this element that bypasses scope checks when audited."""
        return replace(self, scope_override=True)


@dataclass(frozen=True)
class Link(AuditableElement):
    """Represents a link with query parameters."""
    text: str = ''

    type = 'link'

    @classmethod
    def from_url(cls, page_url: str, url: str, text: str = '') -> 'Link':
        inputs = tuple(parse_qsl(urlparse(url).query, keep_blank_values=True))
        return cls(url=page_url, action=strip_query(url), inputs=inputs, text=text)

    @property
    def has_parameters(self) -> bool:
        return bool(self.inputs)


@dataclass(frozen=True)
class FormField:
    """Represents an HTML form field."""
    name: str
    field_type: str
    value: str = ''
    required: bool = False
    pattern: Optional[str] = None
    max_length: Optional[int] = None

    @property
    def is_password(self) -> bool:
        return self.field_type == 'password'

    @property
    def is_hidden(self) -> bool:
        return self.field_type == 'hidden'

    @property
    def is_file(self) -> bool:
        return self.field_type == 'file'


@dataclass(frozen=True)
class Form(AuditableElement):
    """Represents an HTML form."""
    form_method: str = 'GET'
    fields: Tuple[FormField, ...] = ()
    enctype: str = 'application/x-www-form-urlencoded'
    nonce_names: Tuple[str, ...] = ()

    type = 'form'

    # CSRF token indicators
    CSRF_NAMES = frozenset({
        'csrf', 'csrf_token', 'csrftoken', 'csrfmiddlewaretoken',
        '_token', 'token', 'authenticity_token', '_csrf',
        'anti-csrf-token', 'anticsrf', '__requestverificationtoken',
        'xsrf', 'xsrf_token', '_xsrf'
    })

    @classmethod
    def build(cls, page_url: str, action: str, method: str, fields: Tuple[FormField, ...],
              enctype: str = 'application/x-www-form-urlencoded') -> 'Form':
        inputs = tuple((f.name, f.value) for f in fields)
        return cls(url=page_url, action=action, inputs=inputs, form_method=method.upper(),
                   fields=tuple(fields), enctype=enctype)

    @property
    def method(self) -> str:
        return self.form_method

    @property
    def csrf_field(self) -> Optional[FormField]:
        for f in self.fields:
            if f.name.lower() in self.CSRF_NAMES:
                return f
        return None

    @property
    def has_csrf_token(self) -> bool:
        return self.csrf_field is not None

    @property
    def injectable_fields(self) -> Tuple[FormField, ...]:
        """Get fields that can be tested for injection."""
        excluded_types = {'hidden', 'submit', 'button', 'image', 'reset', 'file'}
        return tuple(f for f in self.fields
                     if f.field_type not in excluded_types and f.name
                     and f.name not in self.nonce_names)

    def with_nonces(self, nonce_names) -> 'Form':
        return replace(self, nonce_names=tuple(sorted(nonce_names)))


@dataclass(frozen=True)
class Cookie(AuditableElement):
    """A cookie, audited by sending a mutated value back to ``action``."""
    secure: bool = False
    http_only: bool = False
    path: str = '/'

    type = 'cookie'

    @classmethod
    def build(cls, page_url: str, name: str, value: str, **attrs) -> 'Cookie':
        return cls(url=page_url, action=page_url, inputs=((name, value),), **attrs)

    @property
    def name(self) -> str:
        return self.inputs[0][0]

    @property
    def value(self) -> str:
        return self.inputs[0][1]

    @property
    def id(self) -> str:
        # Cookies are scoped to the site, not the page that set them
        return f"{self.type}:{self.name}"


@dataclass(frozen=True)
class Header(AuditableElement):
    """A request header, audited by sending a mutated value."""

    type = 'header'

    @classmethod
    def build(cls, page_url: str, name: str, value: str) -> 'Header':
        return cls(url=page_url, action=page_url, inputs=((name, value),))

    @property
    def name(self) -> str:
        return self.inputs[0][0]

    @property
    def value(self) -> str:
        return self.inputs[0][1]

    @property
    def id(self) -> str:
        return f"{self.type}:{self.action}:{self.name.lower()}"
