"""Tests for the Page model."""

import pytest

from harrier.scanner.core.elements import Link
from harrier.scanner.core.page import ConfigurationError, Page
from harrier.scanner.core.platforms import PlatformManager

from conftest import BASE_URL, html, make_response


SEED_BODY = html(
    '<a href="/a?x=1">a</a>',
    '<form action="/login" method="post"><input name="user"><input type="password" name="pass"></form>',
)


def seed_page(url=BASE_URL + '/', body=SEED_BODY, **kwargs):
    return Page.from_response(make_response(url=url, body=body, **kwargs))


class TestEquality:

    def test_same_body_and_response_are_equal_regardless_of_url(self):
        p = seed_page(url=BASE_URL + '/one')
        q = seed_page(url=BASE_URL + '/two')

        assert p == q
        assert hash(p) == hash(q)

    def test_element_sets_do_not_take_part(self):
        p = seed_page()
        q = seed_page()
        q.links = []

        assert p.links
        assert p == q

    def test_different_bodies_differ(self):
        assert seed_page(body='A') != seed_page(body='B')

    def test_different_status_differs(self):
        assert seed_page(status=200) != seed_page(status=404)


class TestCollections:

    def test_elements_are_extracted_lazily(self):
        page = seed_page()

        assert [link.action for link in page.links] == [BASE_URL + '/a']
        assert [form.action for form in page.forms] == [BASE_URL + '/login']
        assert page.forms[0].method == 'POST'

    def test_setter_stores_an_equal_immutable_copy(self):
        page = seed_page()
        links = [Link.from_url(page.url, BASE_URL + '/b?y=2')]

        page.links = links
        links.append(Link.from_url(page.url, BASE_URL + '/c?z=3'))

        assert isinstance(page.links, tuple)
        assert page.links == (Link.from_url(page.url, BASE_URL + '/b?y=2'),)

    def test_collections_are_cached(self):
        page = seed_page()
        assert page.links is page.links

    def test_elements_combines_every_type_without_duplicates(self):
        page = seed_page(set_cookies=['sid=1; Path=/'])
        elements = page.elements()

        types = {element.type for element in elements}
        assert types == {'link', 'form', 'cookie', 'header'}
        assert len(elements) == len(set(elements))
        assert len(elements) == len(page.links) + len(page.forms) + len(page.cookies) + len(page.headers)


class TestWithoutParser:

    def test_unset_accessors_return_zero_values(self):
        page = Page(url=BASE_URL + '/nothing')

        assert page.code == 0
        assert page.body == ''
        assert page.links == ()
        assert page.forms == ()
        assert page.cookies == ()
        assert page.headers == ()
        assert page.cookiejar == ()
        assert page.paths == ()
        assert page.response is None
        assert page.elements() == []
        assert page.is_text() is False

    def test_title_of_empty_page(self):
        assert Page(body='').title() == ''

    def test_document_is_parsed_from_body(self):
        page = Page(body='<html><title>Data only</title></html>')
        assert page.title() == 'Data only'


class TestConstruction:

    def test_empty_options_are_rejected(self):
        with pytest.raises(ConfigurationError):
            Page()

    def test_unknown_options_are_rejected(self):
        with pytest.raises(ConfigurationError, match='bogus'):
            Page(url=BASE_URL, bogus=1)

    def test_configuration_error_is_a_value_error(self):
        assert issubclass(ConfigurationError, ValueError)

    def test_options_are_deep_copied(self):
        response = make_response(body='<title>Original</title>')
        page = Page(response=response)
        response.body = 'changed'

        assert page.body == '<title>Original</title>'

    def test_from_data(self):
        page = Page.from_data({'url': BASE_URL + '/data', 'body': '<title>Hi</title>'})

        assert page.code == 200
        assert page.url == BASE_URL + '/data'
        assert page.title() == 'Hi'
        assert page.links == ()
        assert page.forms == ()
        assert page.cookies == ()
        assert page.headers == ()
        assert page.request.url == BASE_URL + '/data'

    def test_from_data_keeps_top_level_values_when_the_response_has_them(self):
        page = Page.from_data({
            'url': BASE_URL + '/top',
            'body': '<title>Top</title>',
            'response': {'url': BASE_URL + '/nested', 'body': '<title>Nested</title>'},
        })

        assert page.url == BASE_URL + '/top'
        assert page.body == '<title>Top</title>'
        assert page.response.url == BASE_URL + '/nested'
        assert page.response.body == '<title>Nested</title>'
        assert page.request.url == BASE_URL + '/nested'

    def test_from_response_list_uses_the_first_as_primary(self):
        first = make_response(body='<title>First</title>')
        second = make_response(body='<title>Second</title>')
        page = Page.from_response([first, second])

        assert page.title() == 'First'
        assert len(page.parser.responses) == 2

    def test_query_vars_and_method(self):
        page = seed_page(url=BASE_URL + '/search?q=1&page=2')

        assert page.query_vars == {'page': '2', 'q': '1'}
        assert page.method == 'GET'


class TestDump:

    def test_round_trip_of_response_backed_page(self):
        page = seed_page(headers={'X-Test': 'yes'})
        page.response.request.on_complete(lambda response: None)

        restored = Page.load(page.dump())

        assert restored.body == page.body
        assert restored.response.headers == page.response.headers
        assert restored.response.request.callbacks == []
        assert restored == page

    def test_dump_clears_callbacks_on_the_original(self):
        page = seed_page()
        page.response.request.on_complete(lambda response: None)

        page.dump()

        assert page.response.request.callbacks == []

    def test_round_trip_of_data_only_page(self):
        page = Page(url=BASE_URL + '/x', body='hello', code=201)

        restored = Page.load(page.dump())

        assert restored.url == BASE_URL + '/x'
        assert restored.body == 'hello'
        assert restored.code == 201
        assert restored.response is None

    def test_restored_page_keeps_elements(self):
        page = seed_page()
        restored = Page.load(page.dump())

        assert [link.id for link in restored.links] == [link.id for link in page.links]


class TestDup:

    def test_copy_is_independent(self):
        page = seed_page()
        copy = page.dup()
        copy.links = []

        assert copy is not page
        assert copy == page
        assert page.links
        assert copy.response is not page.response

    def test_copy_shares_the_fingerprinter(self):
        platforms = PlatformManager()
        page = Page.from_response(make_response(body='wp-content'), fingerprinter=platforms)

        assert page.dup().platforms() == page.platforms()


class TestPlatforms:

    def test_fingerprinted_on_construction(self):
        platforms = PlatformManager()
        page = Page.from_response(
            make_response(url=BASE_URL + '/index.php', body='<link href="/wp-content/style.css">',
                          headers={'Server': 'nginx/1.24'}),
            fingerprinter=platforms
        )

        assert {'WordPress', 'Nginx', 'PHP'} <= page.platforms()
        assert platforms.lookup(BASE_URL + '/index.php') == page.platforms()

    def test_disabled_fingerprinter(self):
        page = Page.from_response(make_response(body='wp-content'), fingerprinter=PlatformManager(enabled=False))
        assert page.platforms() == frozenset()

    def test_no_fingerprinter(self):
        assert seed_page().platforms() == frozenset()
