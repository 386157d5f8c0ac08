"""
Shared fixtures, including a scripted transport that records every call.
"""

import pytest

from ldapmapper import events
from ldapmapper.connection import Connection
from ldapmapper.transport import Transport, Response, SearchResult


#: Response for a host that cannot be reached
SERVER_DOWN = Response(81, '', "Can't contact LDAP server", '')
#: Response for rejected credentials
INVALID_CREDENTIALS = Response(
    49, '', 'Invalid credentials',
    '80090308: LdapErr: DSID-0C09042A, comment: AcceptSecurityContext error, data 52e, v3839'
)


class StubTransport(Transport):
    """
    Transport that returns scripted results and records the calls made to it.

    ``bind_results`` and ``search_results`` are queues. Each item is either
    returned or, if it is an exception, raised. When a queue is empty, binds
    succeed and searches return no entries.
    """
    def __init__(self):
        super().__init__()
        self.calls = []
        self.connects = []
        self.closes = 0
        self.binds = []
        self.tls_started = 0
        self.bind_results = []
        self.search_results = []
        self.searches = []
        self._open = False
        self._last = Response()

    def _next(self, queue, default):
        item = queue.pop(0) if queue else default
        if isinstance(item, Exception):
            raise item
        return item

    def connect(self, host, port = Transport.PORT):
        self.calls.append('connect')
        self.connects.append(host)
        self._host = self.make_uri(host, port)
        self._open = True
        return True

    def is_connected(self):
        return self._open

    def start_tls(self):
        self.calls.append('start_tls')
        self.tls_started += 1
        return True

    def bind(self, username = None, password = None):
        self.calls.append('bind')
        self.binds.append((username, password))
        response = self._next(self.bind_results, Response())
        self._last = response
        self._mark_bound(response, username)
        return response

    def _search(self, scope, base_dn, filter_str, attributes, size_limit, controls):
        self.calls.append(scope)
        self.searches.append({
            'scope' : scope,
            'base_dn' : base_dn,
            'filter' : filter_str,
            'attributes' : attributes,
            'size_limit' : size_limit,
            'controls' : controls,
        })
        return self._next(self.search_results, SearchResult([], Response()))

    def search(self, base_dn, filter_str, attributes = None, size_limit = 0, controls = None):
        return self._search('search', base_dn, filter_str, attributes, size_limit, controls)

    def list(self, base_dn, filter_str, attributes = None, size_limit = 0, controls = None):
        return self._search('list', base_dn, filter_str, attributes, size_limit, controls)

    def read(self, base_dn, filter_str, attributes = None, size_limit = 0, controls = None):
        return self._search('read', base_dn, filter_str, attributes, size_limit, controls)

    def add(self, dn, attributes):
        self.calls.append(('add', dn, attributes))
        return True

    def modify(self, dn, modifications):
        self.calls.append(('modify', dn, modifications))
        return True

    def delete(self, dn):
        self.calls.append(('delete', dn))
        return True

    def rename(self, dn, new_rdn, new_parent_dn = None, delete_old_rdn = True):
        self.calls.append(('rename', dn, new_rdn, new_parent_dn, delete_old_rdn))
        return True

    def get_last_error(self):
        return self._last.diagnostic_message or self._last.error_message or None

    def err_no(self):
        return self._last.error_code

    def get_detailed_error(self):
        return self._last.detailed_error()

    def close(self):
        self.calls.append('close')
        self.closes += 1
        self._open = False
        self._mark_closed()
        return True


class RecordingDispatcher(events.Dispatcher):
    """
    Dispatcher that keeps every event it is given.
    """
    def __init__(self):
        super().__init__()
        self.dispatched = []

    def dispatch(self, event):
        self.dispatched.append(event)
        super().dispatch(event)

    def names(self):
        return [type(e).__name__ for e in self.dispatched]


def search_result(entries = (), cookie = None):
    """
    Returns a search result with the given entries and paged results cookie.
    """
    controls = {}
    if cookie is not None:
        controls['1.2.840.113556.1.4.319'] = { 'value' : { 'size' : 0, 'cookie' : cookie } }
    return SearchResult(list(entries), Response(controls = controls))


@pytest.fixture
def transport():
    return StubTransport()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def options():
    return {
        'hosts' : ['foo', 'bar', 'baz'],
        'base_dn' : 'dc=local,dc=com',
        'username' : 'cn=admin,dc=local,dc=com',
        'password' : 'secret',
    }


@pytest.fixture
def connection(options, transport, dispatcher):
    return Connection(options, transport, dispatcher)
