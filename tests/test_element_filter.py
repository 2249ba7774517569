"""Tests for the element filter and scope rules."""

from harrier.scanner.core.element_filter import ElementFilter
from harrier.scanner.core.elements import Link
from harrier.scanner.core.page import Page
from harrier.scanner.core.scope import LinkCountGovernor, ScopeFilter

from conftest import BASE_URL, html, make_response


def link(url):
    return Link.from_url(BASE_URL + '/', url)


class TestElementFilter:

    def test_update_returns_only_new_elements(self):
        element_filter = ElementFilter()

        new, count = element_filter.update_links([link(BASE_URL + '/a?x=1')])
        assert count == 1
        assert new == [link(BASE_URL + '/a?x=1')]

        new, count = element_filter.update_links([link(BASE_URL + '/a?x=2'), link(BASE_URL + '/b?y=1')])
        assert count == 1
        assert [element.action for element in new] == [BASE_URL + '/b']

    def test_types_are_tracked_separately(self):
        element_filter = ElementFilter()
        element_filter.update_links([link(BASE_URL + '/a?x=1')])

        assert element_filter.stats() == {'links': 1, 'forms': 0, 'cookies': 0}

    def test_init_from_page_is_additive(self):
        element_filter = ElementFilter()
        element_filter.init_from_page(Page.from_response(make_response(body=html('<a href="/a?x=1">a</a>'))))
        element_filter.init_from_page(Page.from_response(make_response(
            body=html('<a href="/b?y=1">b</a>', '<form action="/f"><input name="q"></form>'),
            set_cookies=['sid=1']
        )))

        assert element_filter.stats() == {'links': 2, 'forms': 1, 'cookies': 1}
        assert element_filter.update_links([link(BASE_URL + '/a?x=9')]) == ([], 0)

    def test_redundancy_rules_count_down(self):
        element_filter = ElementFilter(redundant={r'/calendar': 2})
        url = BASE_URL + '/calendar?day=1'

        assert [element_filter.is_redundant_path(url) for _ in range(4)] == [False, False, True, True]
        assert not element_filter.is_redundant_path(BASE_URL + '/other')

    def test_auto_redundancy(self):
        element_filter = ElementFilter(auto_redundant=2)

        assert not element_filter.is_redundant_path(BASE_URL + '/item?id=1')
        assert not element_filter.is_redundant_path(BASE_URL + '/item?id=2')
        assert element_filter.is_redundant_path(BASE_URL + '/item?id=3')
        assert not element_filter.is_redundant_path(BASE_URL + '/item?id=3&extra=1')
        # Parameterless URLs are never auto-redundant
        assert not any(element_filter.is_redundant_path(BASE_URL + '/item') for _ in range(5))


class TestScopeFilter:

    def test_domain_scope(self):
        scope = ScopeFilter(BASE_URL + '/')

        assert scope.is_in_scope(BASE_URL + '/page')
        assert not scope.is_in_scope('http://sub.target.test/page')
        assert not scope.is_in_scope('ftp://target.test/file')

    def test_subdomain_scope(self):
        scope = ScopeFilter(BASE_URL + '/', scope='subdomain')

        assert scope.is_in_scope('http://sub.target.test/page')
        assert not scope.is_in_scope('http://nottarget.test/page')

    def test_path_scope(self):
        scope = ScopeFilter(BASE_URL + '/app/index', scope='path')

        assert scope.is_in_scope(BASE_URL + '/app/users')
        assert not scope.is_in_scope(BASE_URL + '/admin')

    def test_skipped_resources(self):
        scope = ScopeFilter(BASE_URL + '/', excluded_paths=['/private'])

        assert not scope.is_in_scope(BASE_URL + '/style.css')
        assert not scope.is_in_scope(BASE_URL + '/logout')
        assert not scope.is_in_scope(BASE_URL + '/private/data')

    def test_included_paths(self):
        scope = ScopeFilter(BASE_URL + '/', included_paths=['/api'])

        assert scope.is_in_scope(BASE_URL + '/api/users')
        assert not scope.is_in_scope(BASE_URL + '/blog')

    def test_should_skip_excluded_content(self):
        scope = ScopeFilter(BASE_URL + '/', exclude_content=['maintenance mode'])

        assert scope.should_skip(make_response(body='<p>Maintenance Mode</p>'))
        assert not scope.should_skip(make_response(body='<p>Welcome</p>'))
        assert scope.should_skip(make_response(url='http://other.test/'))

    def test_scope_override(self):
        scope = ScopeFilter(BASE_URL + '/')
        outside = Link.from_url(BASE_URL + '/', 'http://other.test/x?y=1')

        assert not scope.element_in_scope(outside)
        assert scope.element_in_scope(outside.with_scope_override())


def test_link_count_governor():
    governor = LinkCountGovernor(limit=2)
    governor.register()
    assert not governor.limit_reached()
    governor.register()
    assert governor.limit_reached()

    unlimited = LinkCountGovernor()
    unlimited.register(1000)
    assert not unlimited.limit_reached()
