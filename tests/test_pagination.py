import pytest

from ldapmapper.exceptions import ConnectionError
from ldapmapper.pagination import Paginator
from ldapmapper.query import Builder
from ldapmapper.transport import PAGED_RESULTS_OID

from conftest import search_result


@pytest.fixture
def query():
    return Builder(None, 'dc=local,dc=com')


def test_stops_when_cookie_is_empty(query, transport):
    transport.search_results.extend([
        search_result([{ 'dn' : 'cn=a' }], b'first'),
        search_result([{ 'dn' : 'cn=b' }], b'second'),
        search_result([{ 'dn' : 'cn=c' }], b''),
    ])
    pages = Paginator(query, '(cn=*)', 1).execute(transport)
    assert len(transport.searches) == 3
    assert pages == [[{ 'dn' : 'cn=a' }], [{ 'dn' : 'cn=b' }], [{ 'dn' : 'cn=c' }]]


def test_sends_cookie_from_previous_page(query, transport):
    transport.search_results.extend([
        search_result([], b'first'),
        search_result([], b'second'),
        search_result([], None),
    ])
    Paginator(query, '(cn=*)', 50, critical = True).execute(transport)
    controls = [s['controls'][0] for s in transport.searches]
    assert [c.oid for c in controls] == [PAGED_RESULTS_OID] * 3
    assert [c.value['cookie'] for c in controls] == [b'', b'first', b'second']
    assert all(c.value['size'] == 50 for c in controls)
    assert all(c.critical for c in controls)


def test_single_page_without_paging_support(query, transport):
    # A server that ignores the control returns no cookie
    transport.search_results.append(search_result([{ 'dn' : 'cn=a' }]))
    assert Paginator(query, '(cn=*)', 10).execute(transport) == [[{ 'dn' : 'cn=a' }]]


def test_pages_are_lazy(query, transport):
    transport.search_results.extend([
        search_result([{ 'dn' : 'cn=a' }], b'first'),
        search_result([{ 'dn' : 'cn=b' }], b''),
    ])
    pages = Paginator(query, '(cn=*)', 1).pages(transport)
    assert next(pages) == [{ 'dn' : 'cn=a' }]
    assert len(transport.searches) == 1


def test_uses_query_scope_and_filter(query, transport):
    Paginator(query.list().select('cn'), '(cn=a*)', 10).execute(transport)
    search = transport.searches[0]
    assert search['scope'] == 'list'
    assert search['filter'] == '(cn=a*)'
    assert search['base_dn'] == 'dc=local,dc=com'
    assert search['attributes'] == ['cn', 'objectclass']


def test_failures_are_not_retried(query, transport):
    transport.search_results.extend([
        search_result([], b'first'),
        ConnectionError("Can't contact LDAP server"),
    ])
    with pytest.raises(ConnectionError):
        Paginator(query, '(cn=*)', 1).execute(transport)
    assert len(transport.searches) == 2


def test_page_size_must_be_positive(query):
    with pytest.raises(ValueError):
        Paginator(query, '(cn=*)', 0)
