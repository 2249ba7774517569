"""HTTP-level tests against local aiohttp applications."""

import asyncio
import itertools

import pytest
from aiohttp import web
from aiohttp import test_utils

from harrier.scanner.core.page import Page
from harrier.scanner.core.platforms import PlatformManager
from harrier.scanner.core.requester import AsyncRequester, Request, RequestMethod
from harrier.scanner.core.trainer import Trainer

from conftest import BASE_URL, FakeFramework, make_response


def build_app():
    tokens = itertools.count()

    async def index(request):
        return web.Response(
            text='<html><head><title>Home</title></head><body>'
                 '<a href="/search?q=x">search</a>'
                 '<form action="/login" method="post"><input name="user">'
                 f'<input type="hidden" name="csrf" value="{next(tokens)}"></form>'
                 '</body></html>',
            content_type='text/html',
            headers={'Server': 'nginx'}
        )

    async def cookies(request):
        response = web.Response(text='<html></html>', content_type='text/html')
        response.set_cookie('sid', '1', httponly=True)
        response.set_cookie('pref', 'dark')
        return response

    async def echo(request):
        return web.Response(text=request.query.get('q', ''), content_type='text/plain')

    async def moved(request):
        raise web.HTTPFound('/')

    app = web.Application()
    app.router.add_get('/', index)
    app.router.add_get('/cookies', cookies)
    app.router.add_get('/echo', echo)
    app.router.add_get('/moved', moved)
    return app


def run_with_server(scenario):
    """Run ``scenario(requester, url)`` against a fresh test server."""
    async def main():
        async with test_utils.TestServer(build_app()) as server:
            async with AsyncRequester(delay=0, max_retries=1) as requester:
                return await scenario(requester, lambda path: str(server.make_url(path)))

    return asyncio.run(main())


class TestQueue:

    def test_hooks_see_every_request_before_it_is_sent(self):
        seen = []

        async def scenario(requester, url):
            requester.add_on_queue(lambda request: seen.append(request.url))
            await requester.get(url('/echo'), data={'q': 'one'})
            await requester.post(url('/echo'), data={'q': 'two'})
            return requester.get_stats()

        stats = run_with_server(scenario)

        assert len(seen) == 2
        assert stats['requests_queued'] == 2

    def test_completion_callback_receives_the_response(self):
        received = []

        async def scenario(requester, url):
            request = requester.queue_get(url('/echo'), on_complete=received.append, data={'q': 'hello'})
            response = await request
            return request, response

        request, response = run_with_server(scenario)

        assert received == [response]
        assert response.body == 'hello'
        assert response.request is request

    def test_run_waits_for_requests_queued_by_callbacks(self):
        bodies = []

        async def scenario(requester, url):
            def chain(response):
                bodies.append(response.body)
                requester.queue_get(url('/echo'), on_complete=lambda r: bodies.append(r.body), data={'q': 'second'})

            requester.queue_get(url('/echo'), on_complete=chain, data={'q': 'first'})
            await requester.run()
            return requester.pending

        assert run_with_server(scenario) == 0
        assert bodies == ['first', 'second']

    def test_set_cookie_headers_are_kept(self):
        async def scenario(requester, url):
            return await requester.get(url('/cookies'))

        response = run_with_server(scenario)

        assert len(response.set_cookies) == 2
        assert {cookie.name for cookie in Page.from_response(response).cookies} == {'sid', 'pref'}

    def test_redirects_can_be_disabled(self):
        async def scenario(requester, url):
            return await requester.get(url('/moved'), allow_redirects=False)

        response = run_with_server(scenario)

        assert response.is_redirect
        assert response.location == '/'

    def test_connection_errors_become_failed_responses(self):
        async def main():
            async with AsyncRequester(delay=0, max_retries=1, timeout=2) as requester:
                return await requester.get('http://127.0.0.1:9/')

        response = asyncio.run(main())

        assert response.status == 0
        assert response.error


class TestPageFetch:

    def test_fetch_returns_a_page(self):
        platforms = PlatformManager()

        async def scenario(requester, url):
            return await Page.fetch(url('/'), requester, fingerprinter=platforms)

        page = run_with_server(scenario)

        assert page.code == 200
        assert page.title() == 'Home'
        assert [link.parameters for link in page.links] == [{'q': 'x'}]
        assert 'Nginx' in page.platforms()

    def test_precision_callback_fires_once_with_every_response(self):
        pages = []

        async def scenario(requester, url):
            result = await Page.fetch(url('/'), requester, precision=3, callback=pages.append)
            assert result is None
            await requester.run()

        run_with_server(scenario)

        assert len(pages) == 1
        assert len(pages[0].parser.responses) == 3
        assert pages[0].forms[0].nonce_names == ('csrf',)

    def test_single_fetch_has_no_nonces(self):
        async def scenario(requester, url):
            return await Page.fetch(url('/'), requester)

        assert run_with_server(scenario).forms[0].nonce_names == ()


class TestRequest:

    def test_callback_errors_do_not_stop_other_callbacks(self):
        calls = []

        def broken(response):
            raise ValueError('broken')

        request = Request(BASE_URL + '/').on_complete(broken).on_complete(calls.append)
        response = make_response()
        request.complete(response)

        assert calls == [response]
        assert response.request is request

    def test_unqueued_request_cannot_be_awaited(self):
        async def main():
            await Request(BASE_URL + '/')

        with pytest.raises(RuntimeError):
            asyncio.run(main())

    def test_clear_callbacks(self):
        request = Request(BASE_URL + '/', RequestMethod.POST).on_complete(print)
        request.clear_callbacks()

        assert request.callbacks == []

    def test_response_fingerprint_ignores_url(self):
        assert make_response(url=BASE_URL + '/a', body='x') == make_response(url=BASE_URL + '/b', body='x')
        assert make_response(body='x') != make_response(body='y')


def build_listing_app():
    """Submitting adds an item to the listing and redirects to it."""
    items = []

    async def listing(request):
        links = ''.join(f'<a href="/item?id{i}=1">item</a>' for i in items)
        return web.Response(text=f'<html><body>{links}</body></html>', content_type='text/html')

    async def submit(request):
        items.append(len(items))
        raise web.HTTPFound('/list')

    app = web.Application()
    app.router.add_get('/list', listing)
    app.router.add_get('/submit', submit)
    return app


class TestTrainingThroughRequester:

    def test_redirect_follow_up_sees_fresh_content(self):
        async def main():
            async with test_utils.TestServer(build_listing_app()) as server:
                async with AsyncRequester(delay=0, max_retries=1) as requester:
                    framework = FakeFramework(root_url=str(server.make_url('/')))
                    framework.requester = requester
                    Trainer(framework)

                    # Crawl-time fetch caches the empty listing
                    framework.audit(await Page.fetch(str(server.make_url('/list')), requester))

                    requester.queue(Request(
                        str(server.make_url('/submit')), train=True, allow_redirects=False, use_cache=False
                    ))
                    await requester.run()
                    return framework.page_queue, requester.get_stats()

        pages, stats = asyncio.run(main())

        assert len(pages) == 1
        assert [link.input_names for link in pages[0].links] == [('id0',)]
        assert stats['cache_hits'] == 0
