"""
Async HTTP Requester for Harrier

High-performance async HTTP client with:
- Connection pooling
- Rate limiting
- Retry logic
- SSL handling
- Response caching
- Request queue hooks and completion callbacks
"""

import asyncio
import aiohttp
import hashlib
import itertools
import time
from typing import Dict, Optional, Any, List, Callable
from urllib.parse import urlparse
from dataclasses import dataclass, field, replace
from enum import Enum
import ssl
import logging

logger = logging.getLogger(__name__)

_request_ids = itertools.count(1)

# Content types that are treated as text besides text/*
TEXT_CONTENT_TYPES = ('json', 'xml', 'javascript', 'x-www-form-urlencoded')


class RequestMethod(Enum):
    """HTTP request methods."""
    GET = 'GET'
    POST = 'POST'
    PUT = 'PUT'
    DELETE = 'DELETE'
    HEAD = 'HEAD'
    OPTIONS = 'OPTIONS'
    PATCH = 'PATCH'


@dataclass
class Request:
    """
    A queued HTTP request.

    Requests flagged with ``train`` have their responses analyzed by the
    Trainer. Completion callbacks fire once, in registration order, when
    the response arrives. A queued request can be awaited for its response.
    """
    url: str
    method: RequestMethod = RequestMethod.GET
    data: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)
    allow_redirects: bool = True
    use_cache: bool = True
    train: bool = False
    id: int = field(default_factory=lambda: next(_request_ids))
    _callbacks: List[Callable] = field(default_factory=list, init=False, repr=False, compare=False)
    _future: Optional[asyncio.Future] = field(default=None, init=False, repr=False, compare=False)

    def on_complete(self, callback: Callable[['Response'], Any]) -> 'Request':
        """Register a callback to be called with the response."""
        self._callbacks.append(callback)
        return self

    def clear_callbacks(self):
        """Drop all registered completion callbacks."""
        self._callbacks = []

    @property
    def callbacks(self) -> List[Callable]:
        return list(self._callbacks)

    def complete(self, response: 'Response'):
        """Attach ``response`` to this request and fire callbacks."""
        response.request = self

        for callback in self.callbacks:
            try:
                callback(response)
            except Exception as e:
                logger.error(f"Callback error for request #{self.id} ({self.url}): {e}", exc_info=True)

        if self._future is not None and not self._future.done():
            self._future.set_result(response)

    def __await__(self):
        if self._future is None:
            raise RuntimeError(f"Request #{self.id} has not been queued")
        return self._future.__await__()

    def __getstate__(self):
        # Callbacks and futures are bound to the running scan.
        state = self.__dict__.copy()
        state['_callbacks'] = []
        state['_future'] = None
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)


@dataclass(eq=False)
class Response:
    """
    Represents an HTTP response with security-relevant metadata.
    """
    url: str
    status: int
    headers: Dict[str, str]
    body: str
    elapsed: float = 0.0
    redirect_url: Optional[str] = None
    ssl_info: Optional[Dict] = None
    error: Optional[str] = None
    request_method: str = 'GET'
    request_headers: Dict[str, str] = field(default_factory=dict)
    request_body: Optional[str] = None
    set_cookies: List[str] = field(default_factory=list)
    request: Optional[Request] = field(default=None, repr=False)

    @property
    def is_success(self) -> bool:
        """Check if request was successful (2xx status)."""
        return 200 <= self.status < 300

    @property
    def is_redirect(self) -> bool:
        """Check if response is a redirect (3xx status)."""
        return 300 <= self.status < 400

    @property
    def is_error(self) -> bool:
        """Check if response indicates an error (4xx or 5xx)."""
        return self.status >= 400

    @property
    def content_type(self) -> str:
        """Get Content-Type header value."""
        return self.get_header('Content-Type').lower()

    @property
    def is_html(self) -> bool:
        """Check if response is HTML content."""
        return 'text/html' in self.content_type

    @property
    def is_json(self) -> bool:
        """Check if response is JSON content."""
        return 'application/json' in self.content_type

    @property
    def is_text(self) -> bool:
        """Check if the body is text-based."""
        content_type = self.content_type
        if not content_type:
            # No declared type, sniff for binary
            return '\x00' not in self.body
        return content_type.startswith('text/') or any(t in content_type for t in TEXT_CONTENT_TYPES)

    @property
    def location(self) -> str:
        """Location header value (empty when absent)."""
        return self.get_header('Location')

    @property
    def fingerprint(self) -> str:
        """Digest of status, content type and body (URL excluded)."""
        key_data = f"{self.status}:{self.content_type}:{self.body}"
        return hashlib.md5(key_data.encode('utf-8', errors='ignore')).hexdigest()

    def __hash__(self):
        return hash(self.fingerprint)

    def __eq__(self, other):
        if not isinstance(other, Response):
            return NotImplemented
        return self.fingerprint == other.fingerprint

    def get_header(self, name: str, default: str = '') -> str:
        """Get header value (case-insensitive)."""
        for key, value in self.headers.items():
            if key.lower() == name.lower():
                return value
        return default


class AsyncRequester:
    """
    Async HTTP requester with security features.

    Features:
    - Async requests with aiohttp
    - Connection pooling
    - Rate limiting with semaphore
    - Automatic retry with backoff
    - SSL certificate handling
    - Request/Response caching
    - On-queue hooks (used by the Trainer) and completion callbacks
    """

    DEFAULT_HEADERS = {
        'User-Agent': 'Harrier/1.0 Security Scanner',
        'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
        'Accept-Language': 'en-US,en;q=0.5',
        'Accept-Encoding': 'gzip, deflate',
        'Connection': 'keep-alive',
    }

    def __init__(
            self,
            timeout: int = 30,
            max_concurrent: int = 10,
            delay: float = 0.5,
            max_retries: int = 3,
            verify_ssl: bool = True,
            custom_headers: Optional[Dict[str, str]] = None,
            cookies: Optional[Dict[str, str]] = None,
            proxy: Optional[str] = None
    ):
        """
        Initialize the async requester.

        Args:
            timeout: Request timeout in seconds
            max_concurrent: Maximum concurrent requests
            delay: Delay between requests in seconds
            max_retries: Maximum retry attempts
            verify_ssl: Whether to verify SSL certificates
            custom_headers: Custom headers to include in all requests
            cookies: Cookies to include in all requests
            proxy: Proxy URL for all requests
        """
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_concurrent = max_concurrent
        self.delay = delay
        self.max_retries = max_retries
        self.verify_ssl = verify_ssl
        self.proxy = proxy

        # Headers
        self.headers = self.DEFAULT_HEADERS.copy()
        if custom_headers:
            self.headers.update(custom_headers)

        # Cookies
        self.cookies = dict(cookies or {})

        # Rate limiting
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._last_request_time: Dict[str, float] = {}

        # Session
        self._session: Optional[aiohttp.ClientSession] = None

        # Cache
        self._response_cache: Dict[str, Response] = {}
        self._cache_enabled = True

        # Queue
        self._on_queue: List[Callable[[Request], Any]] = []
        self._pending: set = set()

        # Statistics
        self.stats = {
            'requests_made': 0,
            'requests_successful': 0,
            'requests_failed': 0,
            'requests_queued': 0,
            'total_bytes': 0,
            'cache_hits': 0
        }

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def start(self):
        """Initialize the aiohttp session."""
        if self._session is None or self._session.closed:
            # SSL context
            if self.verify_ssl:
                ssl_context = ssl.create_default_context()
            else:
                ssl_context = ssl.create_default_context()
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE

            # Create connector with connection pooling
            connector = aiohttp.TCPConnector(
                limit=self.max_concurrent * 2,
                limit_per_host=self.max_concurrent,
                ssl=ssl_context,
                enable_cleanup_closed=True
            )

            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers=self.headers,
                cookie_jar=aiohttp.CookieJar(unsafe=True)
            )

            # Initialize semaphore
            self._semaphore = asyncio.Semaphore(self.max_concurrent)

    async def close(self):
        """Wait for queued requests, then close the aiohttp session."""
        await self.run()
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def add_on_queue(self, hook: Callable[[Request], Any]):
        """Register a hook called with every request as it is queued."""
        self._on_queue.append(hook)

    def queue(self, request: Request) -> Request:
        """
        Queue a request for execution on the running event loop.

        On-queue hooks run synchronously, before the request is scheduled,
        so they can attach completion callbacks.

        Returns:
            The request, which can be awaited for its Response
        """
        loop = asyncio.get_running_loop()

        # Every request carries the scan-wide cookies
        request.cookies = {**self.cookies, **request.cookies}

        for hook in self._on_queue:
            hook(request)

        request._future = loop.create_future()
        task = loop.create_task(self._process(request))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

        self.stats['requests_queued'] += 1
        return request

    def queue_get(
            self,
            url: str,
            on_complete: Optional[Callable[[Response], Any]] = None,
            **options
    ) -> Request:
        """Queue a GET request, optionally with a completion callback."""
        request = Request(url, RequestMethod.GET, **options)
        if on_complete:
            request.on_complete(on_complete)
        return self.queue(request)

    async def run(self):
        """Block until every queued request (including ones queued by callbacks) has completed."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        """Number of requests still in flight."""
        return len(self._pending)

    async def _process(self, request: Request):
        response = await self.request(
            request.url,
            request.method,
            data=request.data,
            headers=request.headers,
            cookies=request.cookies,
            allow_redirects=request.allow_redirects,
            use_cache=request.use_cache
        )
        request.complete(response)

    def _get_cache_key(self, url: str, method: str, data: Optional[Dict] = None,
                       headers: Optional[Dict] = None, cookies: Optional[Dict] = None) -> str:
        """Generate cache key for request."""
        key_data = f"{method}:{url}:{str(data)}:{str(headers)}:{str(cookies)}"
        return hashlib.md5(key_data.encode()).hexdigest()

    async def _rate_limit(self, domain: str):
        """Apply rate limiting for domain."""
        if domain in self._last_request_time:
            elapsed = time.time() - self._last_request_time[domain]
            if elapsed < self.delay:
                await asyncio.sleep(self.delay - elapsed)
        self._last_request_time[domain] = time.time()

    async def request(
            self,
            url: str,
            method: RequestMethod = RequestMethod.GET,
            data: Optional[Dict[str, Any]] = None,
            headers: Optional[Dict[str, str]] = None,
            cookies: Optional[Dict[str, str]] = None,
            allow_redirects: bool = True,
            use_cache: bool = True
    ) -> Response:
        """
        Perform an HTTP request directly, bypassing the queue.

        Args:
            url: Target URL
            method: HTTP method
            data: Request body data (query parameters for GET)
            headers: Additional headers
            cookies: Cookies for this request
            allow_redirects: Follow redirects
            use_cache: Use response cache

        Returns:
            Response object
        """
        if self._session is None:
            await self.start()

        # Check cache
        cache_key = self._get_cache_key(url, method.value, data, headers, cookies)
        if use_cache and self._cache_enabled and cache_key in self._response_cache:
            self.stats['cache_hits'] += 1
            return replace(self._response_cache[cache_key], request=None)

        # Parse domain for rate limiting
        domain = urlparse(url).netloc

        # Merge headers
        request_headers = self.headers.copy()
        if headers:
            request_headers.update(headers)

        last_error = None

        for attempt in range(self.max_retries):
            try:
                async with self._semaphore:
                    # Apply rate limiting
                    await self._rate_limit(domain)

                    start_time = time.time()

                    async with self._session.request(
                            method.value,
                            url,
                            data=data if method != RequestMethod.GET else None,
                            params=data if method == RequestMethod.GET else None,
                            headers=request_headers,
                            cookies=cookies or None,
                            allow_redirects=allow_redirects,
                            proxy=self.proxy
                    ) as resp:
                        elapsed = time.time() - start_time

                        # Read body with size limit (10MB)
                        body = await resp.text(errors='ignore')
                        if len(body) > 10 * 1024 * 1024:
                            body = body[:10 * 1024 * 1024]

                        # Get SSL info if available
                        ssl_info = None
                        if resp.connection is not None and resp.connection.transport is not None:
                            ssl_object = resp.connection.transport.get_extra_info('ssl_object')
                            if ssl_object:
                                ssl_info = {
                                    'version': ssl_object.version(),
                                    'cipher': ssl_object.cipher()
                                }

                        # Get redirect URL
                        redirect_url = None
                        if resp.history:
                            redirect_url = str(resp.history[-1].url)

                        response = Response(
                            url=str(resp.url),
                            status=resp.status,
                            headers=dict(resp.headers),
                            body=body,
                            elapsed=elapsed,
                            redirect_url=redirect_url,
                            ssl_info=ssl_info,
                            request_method=method.value,
                            request_headers=request_headers,
                            request_body=str(data) if data else None,
                            set_cookies=resp.headers.getall('Set-Cookie', [])
                        )

                        # Update stats
                        self.stats['requests_made'] += 1
                        self.stats['requests_successful'] += 1
                        self.stats['total_bytes'] += len(body)

                        # Cache response
                        if use_cache and self._cache_enabled and response.is_success:
                            self._response_cache[cache_key] = response

                        return response

            except asyncio.TimeoutError:
                last_error = "Request timed out"
                logger.warning(f"Timeout on {url} (attempt {attempt + 1}/{self.max_retries})")

            except aiohttp.ClientError as e:
                last_error = str(e)
                logger.warning(f"Client error on {url}: {e} (attempt {attempt + 1}/{self.max_retries})")

            except Exception as e:
                last_error = str(e)
                logger.error(f"Unexpected error on {url}: {e}")
                break

            # Exponential backoff
            if attempt < self.max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        # All retries failed
        self.stats['requests_made'] += 1
        self.stats['requests_failed'] += 1

        return Response(
            url=url,
            status=0,
            headers={},
            body='',
            elapsed=0,
            error=last_error,
            request_method=method.value,
            request_headers=request_headers,
            request_body=str(data) if data else None
        )

    async def get(self, url: str, **kwargs) -> Response:
        """Make GET request."""
        return await self.queue(Request(url, RequestMethod.GET, **kwargs))

    async def post(self, url: str, data: Dict = None, **kwargs) -> Response:
        """Make POST request."""
        return await self.queue(Request(url, RequestMethod.POST, data=data, **kwargs))

    async def head(self, url: str, **kwargs) -> Response:
        """Make HEAD request."""
        return await self.queue(Request(url, RequestMethod.HEAD, **kwargs))

    def clear_cache(self):
        """Clear response cache."""
        self._response_cache.clear()

    def get_stats(self) -> Dict[str, int]:
        """Get request statistics."""
        return self.stats.copy()
