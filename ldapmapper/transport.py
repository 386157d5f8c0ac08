"""
This module provides the transport used to talk to an LDAP server.

:py:class:`Transport` is the abstract capability that the rest of the library
relies on: connect, bind, search and modify, with failures reported using the
exceptions from :py:mod:`~.exceptions`. :py:class:`Ldap3Transport` implements
it as a layer over `ldap3 <https://ldap3.readthedocs.org/>`_ that is intended to
be more intuitive and easier to mock.
"""

__author__ = "Matt Pryor"
__copyright__ = "Copyright 2015 UK Science and Technology Facilities Council"

import abc, logging, contextlib
from collections import namedtuple

import ldap3

from . import exceptions
from .exceptions import DetailedError


_log = logging.getLogger(__name__)


#: Result code used when the server cannot be contacted (LDAP_SERVER_DOWN)
SERVER_DOWN = 81
#: Message used when the server cannot be contacted
SERVER_DOWN_MESSAGE = "Can't contact LDAP server"

#: Result code for a successful operation
SUCCESS = 0
#: Result code returned when the search base does not exist
NO_SUCH_OBJECT = 32
#: Result code returned when a search hits the size limit
SIZE_LIMIT_EXCEEDED = 4

#: OID of the simple paged results control
PAGED_RESULTS_OID = '1.2.840.113556.1.4.319'


class Control(namedtuple('Control', ['oid', 'critical', 'value'])):
    """
    An LDAP control to send with a request.

    .. py:attribute:: oid

        The OID of the control.

    .. py:attribute:: critical

        Whether the server must fail the request if it does not support the control.

    .. py:attribute:: value

        The control value. For the paged results control this is a dictionary
        with ``size`` and ``cookie`` keys.
    """
    __slots__ = ()


class Response(namedtuple('Response', ['error_code', 'matched_dn', 'error_message',
                                       'diagnostic_message', 'referrals', 'controls'])):
    """
    The result of an LDAP operation as reported by the server.

    ``controls`` maps the OID of each response control to a dictionary with
    (at least) a ``value`` key.
    """
    __slots__ = ()

    def __new__(cls, error_code = SUCCESS, matched_dn = '', error_message = '',
                diagnostic_message = '', referrals = None, controls = None):
        return super().__new__(
            cls, error_code, matched_dn, error_message,
            diagnostic_message, referrals, controls or {}
        )

    def successful(self):
        """
        Returns ``True`` if the operation succeeded.
        """
        return int(self.error_code or 0) == SUCCESS and not self.diagnostic_message

    def failed(self):
        """
        Returns ``True`` if the operation failed.
        """
        return not self.successful()

    def detailed_error(self):
        """
        Returns the :py:class:`~.exceptions.DetailedError` for a failed response.
        """
        if self.successful():
            return None
        return DetailedError(
            int(self.error_code or 0), self.error_message or '', self.diagnostic_message or ''
        )


class SearchResult(namedtuple('SearchResult', ['entries', 'response'])):
    """
    The entries returned by a search, along with the server :py:class:`Response`.

    Each entry is an attribute dictionary that maps attribute names to a **list
    of values**, plus a ``dn`` key.
    """
    __slots__ = ()


class Transport(metaclass = abc.ABCMeta):
    """
    Base class for the transports used by :py:class:`~.connection.Connection`.

    A transport owns exactly one handle to a server at a time. Settings made
    using :py:meth:`ssl`, :py:meth:`tls` and :py:meth:`set_options` apply to the
    next call to :py:meth:`connect`.
    """
    #: The default LDAP port
    PORT = 389
    #: The default LDAPS port
    PORT_SSL = 636

    def __init__(self):
        self._host = None
        self._bound = False
        self._bound_as = None
        self._use_ssl = False
        self._use_tls = False
        self._options = {}

    ############################################################################
    ## State shared by all transports
    ############################################################################

    @property
    def host(self):
        """
        The URI of the host the transport is connected to, or ``None``.
        """
        return self._host

    @property
    def bound_as(self):
        """
        The username the transport is currently bound as (``None`` for anonymous).
        """
        return self._bound_as

    def is_bound(self):
        return self._bound

    def is_using_ssl(self):
        return self._use_ssl

    def is_using_tls(self):
        return self._use_tls

    def ssl(self, enabled = True):
        self._use_ssl = enabled
        return self

    def tls(self, enabled = True):
        self._use_tls = enabled
        return self

    def set_options(self, options):
        """
        Sets connection options, e.g. ``timeout``, ``version`` or ``follow_referrals``.
        """
        self._options.update(options)

    def get_option(self, name, default = None):
        return self._options.get(name, default)

    def make_uri(self, host, port):
        """
        Returns the URI used to connect to the given host.

        If SSL is enabled and the default port is given, the default SSL port
        is used instead.
        """
        if '://' in host:
            return host
        if self._use_ssl and int(port) == self.PORT:
            port = self.PORT_SSL
        return '{}://{}:{}'.format('ldaps' if self._use_ssl else 'ldap', host, port)

    def _mark_bound(self, response, username):
        self._bound = response.successful()
        self._bound_as = username if self._bound else None

    def _mark_closed(self):
        self._host = None
        self._bound = False
        self._bound_as = None

    ############################################################################
    ## Operations provided by each transport
    ############################################################################

    @abc.abstractmethod
    def connect(self, host, port = PORT):
        """
        Prepares a connection to the given host. Any existing handle is released.
        """

    @abc.abstractmethod
    def is_connected(self):
        """
        Returns ``True`` if the transport holds a connection handle.
        """

    @abc.abstractmethod
    def start_tls(self):
        """
        Upgrades the current connection to TLS.
        """

    @abc.abstractmethod
    def bind(self, username = None, password = None):
        """
        Binds as the given user (anonymously if no username is given).

        Returns a :py:class:`Response`; a failed bind is reported using the
        response rather than raised. Failure to reach the server is raised as
        a :py:class:`~.exceptions.ConnectionError`.
        """

    @abc.abstractmethod
    def search(self, base_dn, filter_str, attributes = None, size_limit = 0, controls = None):
        """
        Searches the entire subtree under ``base_dn``. Returns a :py:class:`SearchResult`.
        """

    @abc.abstractmethod
    def list(self, base_dn, filter_str, attributes = None, size_limit = 0, controls = None):
        """
        Searches the immediate children of ``base_dn``. Returns a :py:class:`SearchResult`.
        """

    @abc.abstractmethod
    def read(self, base_dn, filter_str, attributes = None, size_limit = 0, controls = None):
        """
        Reads the entry at ``base_dn`` only. Returns a :py:class:`SearchResult`.
        """

    @abc.abstractmethod
    def add(self, dn, attributes):
        """
        Creates an entry. Returns ``True`` on success (should raise on failure).
        """

    @abc.abstractmethod
    def modify(self, dn, modifications):
        """
        Applies a batch of modifications, a mapping of attribute name to a list
        of ``(operation, values)`` pairs. Returns ``True`` on success.
        """

    def mod_add(self, dn, attributes):
        """
        Adds values to the given attributes of an entry.
        """
        return self.modify(dn, self._modlist(ldap3.MODIFY_ADD, attributes))

    def mod_replace(self, dn, attributes):
        """
        Replaces the values of the given attributes of an entry.
        """
        return self.modify(dn, self._modlist(ldap3.MODIFY_REPLACE, attributes))

    def mod_delete(self, dn, attributes):
        """
        Removes values (or whole attributes, if no values are given) from an entry.
        """
        return self.modify(dn, self._modlist(ldap3.MODIFY_DELETE, attributes))

    @staticmethod
    def _modlist(operation, attributes):
        return { name : [(operation, _as_list(value))] for name, value in attributes.items() }

    @abc.abstractmethod
    def delete(self, dn):
        """
        Deletes an entry. Returns ``True`` on success (should raise on failure).
        """

    @abc.abstractmethod
    def rename(self, dn, new_rdn, new_parent_dn = None, delete_old_rdn = True):
        """
        Renames and/or moves an entry. Returns ``True`` on success.
        """

    @abc.abstractmethod
    def get_last_error(self):
        """
        Returns the message for the last error, or ``None``.
        """

    @abc.abstractmethod
    def err_no(self):
        """
        Returns the result code of the last operation, or ``None``.
        """

    @abc.abstractmethod
    def get_detailed_error(self):
        """
        Returns a :py:class:`~.exceptions.DetailedError` for the last failed
        operation, or ``None`` if the last operation succeeded.
        """

    @abc.abstractmethod
    def close(self):
        """
        Releases the connection handle. Returns ``True`` if a handle was closed.
        """


def _as_list(value):
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def _decode(values):
    """
    Decodes raw attribute values from LDAP, leaving undecodable values as bytes.
    """
    def _f(v):
        if not isinstance(v, bytes):
            return v
        try:
            return v.decode('utf-8')
        except UnicodeDecodeError:
            return v
    return [_f(v) for v in values]


class Ldap3Transport(Transport):
    """
    :py:class:`Transport` implementation using ``ldap3``.

    ldap3 is used with ``raise_exceptions = False``, so failed operations are
    reported using the result of the operation. Communication errors are always
    raised by ldap3, and are converted to a
    :py:class:`~.exceptions.ConnectionError` with a "Can't contact LDAP server"
    message so that they can be recognised for failover.
    """
    #: Maps the scope of each search method to the ldap3 scope
    _SCOPES = {
        'search' : ldap3.SUBTREE,
        'list'   : ldap3.LEVEL,
        'read'   : ldap3.BASE,
    }

    def __init__(self):
        super().__init__()
        self._conn = None

    @contextlib.contextmanager
    def _connection(self, operation):
        """
        Context manager for the ldap3 connection that converts ldap3 exceptions
        to the appropriate exception from the ``exceptions`` module.
        """
        if self._conn is None:
            raise exceptions.ConnectionError(
                '{} - no connection for [{}]'.format(SERVER_DOWN_MESSAGE, operation),
                DetailedError(SERVER_DOWN, SERVER_DOWN_MESSAGE, '')
            )
        try:
            yield self._conn
        except ldap3.core.exceptions.LDAPCommunicationError as e:
            self._bound = False
            raise exceptions.ConnectionError(
                '{} ({})'.format(SERVER_DOWN_MESSAGE, e),
                DetailedError(SERVER_DOWN, SERVER_DOWN_MESSAGE, str(e))
            ) from e
        except ldap3.core.exceptions.LDAPException as e:
            raise exceptions.LDAPError(str(e), self.get_detailed_error()) from e

    def _check(self, success, operation):
        """
        Raises an :py:class:`~.exceptions.OperationalError` if an operation failed.
        """
        if success:
            return True
        raise exceptions.OperationalError(
            'LDAP operation [{}] failed: {}'.format(operation, self.get_last_error()),
            self.get_detailed_error()
        )

    def _response(self):
        result = (self._conn.result if self._conn is not None else None) or {}
        return Response(
            error_code = result.get('result', SUCCESS),
            matched_dn = result.get('dn', ''),
            error_message = result.get('description', ''),
            diagnostic_message = result.get('message', ''),
            referrals = result.get('referrals'),
            controls = result.get('controls'),
        )

    def connect(self, host, port = Transport.PORT):
        self.close()
        self._host = self.make_uri(host, port)
        _log.debug('Preparing LDAP connection to {}'.format(self._host))
        server = ldap3.Server(
            self._host,
            use_ssl = self._use_ssl,
            get_info = ldap3.NONE,
            connect_timeout = self.get_option('timeout'),
        )
        self._conn = ldap3.Connection(
            server,
            version = self.get_option('version', 3),
            auto_referrals = bool(self.get_option('follow_referrals', False)),
            receive_timeout = self.get_option('timeout'),
            raise_exceptions = False,
        )
        return True

    def is_connected(self):
        return self._conn is not None

    def start_tls(self):
        _log.debug('Starting TLS on {}'.format(self._host))
        with self._connection('start_tls') as conn:
            if conn.closed:
                conn.open()
            return self._check(conn.start_tls(), 'start_tls')

    def bind(self, username = None, password = None):
        _log.debug('Binding to {} as {}'.format(self._host, username or 'anonymous'))
        with self._connection('bind') as conn:
            conn.user = username
            conn.password = password
            conn.authentication = ldap3.SIMPLE if username else ldap3.ANONYMOUS
            conn.bind()
        response = self._response()
        self._mark_bound(response, username)
        return response

    def _search(self, scope, base_dn, filter_str, attributes, size_limit, controls):
        _log.debug('Performing LDAP {} (base_dn: {}, filter: {})'.format(scope, base_dn, filter_str))
        kwargs = {}
        ldap3_controls = []
        for control in controls or []:
            if control.oid == PAGED_RESULTS_OID:
                kwargs.update(
                    paged_size = control.value['size'],
                    paged_cookie = control.value.get('cookie') or None,
                    paged_criticality = control.critical,
                )
            else:
                ldap3_controls.append((control.oid, control.critical, control.value))
        with self._connection(scope) as conn:
            conn.search(
                search_base = base_dn,
                search_filter = filter_str,
                search_scope = self._SCOPES[scope],
                attributes = attributes or ldap3.ALL_ATTRIBUTES,
                size_limit = size_limit,
                controls = ldap3_controls or None,
                **kwargs
            )
            response = self._response()
            # A missing base or a size limit is not a failure, just fewer results
            if response.error_code not in (SUCCESS, NO_SUCH_OBJECT, SIZE_LIMIT_EXCEEDED):
                self._check(False, scope)
            entries = []
            for entry in conn.response or []:
                if entry.get('type') != 'searchResEntry':
                    continue
                attrs = { k : _decode(v) for k, v in entry.get('raw_attributes', {}).items() }
                # Add the dn to the attribute dictionary
                attrs['dn'] = entry['dn']
                entries.append(attrs)
        return SearchResult(entries, response)

    def search(self, base_dn, filter_str, attributes = None, size_limit = 0, controls = None):
        return self._search('search', base_dn, filter_str, attributes, size_limit, controls)

    def list(self, base_dn, filter_str, attributes = None, size_limit = 0, controls = None):
        return self._search('list', base_dn, filter_str, attributes, size_limit, controls)

    def read(self, base_dn, filter_str, attributes = None, size_limit = 0, controls = None):
        return self._search('read', base_dn, filter_str, attributes, size_limit, controls)

    def add(self, dn, attributes):
        _log.debug('Creating LDAP entry at dn {}'.format(dn))
        with self._connection('add') as conn:
            return self._check(conn.add(dn, attributes = attributes), 'add')

    def modify(self, dn, modifications):
        _log.debug('Updating LDAP entry at dn {}'.format(dn))
        with self._connection('modify') as conn:
            return self._check(conn.modify(dn, modifications), 'modify')

    def delete(self, dn):
        _log.debug('Deleting LDAP entry at dn {}'.format(dn))
        with self._connection('delete') as conn:
            return self._check(conn.delete(dn), 'delete')

    def rename(self, dn, new_rdn, new_parent_dn = None, delete_old_rdn = True):
        _log.debug('Renaming LDAP entry at dn {} to {}'.format(dn, new_rdn))
        with self._connection('rename') as conn:
            return self._check(
                conn.modify_dn(
                    dn, new_rdn,
                    delete_old_dn = delete_old_rdn,
                    new_superior = new_parent_dn
                ),
                'rename'
            )

    def get_last_error(self):
        if self._conn is None or not self._conn.result:
            return None
        result = self._conn.result
        return result.get('message') or result.get('description')

    def err_no(self):
        if self._conn is None or not self._conn.result:
            return None
        return self._conn.result.get('result')

    def get_detailed_error(self):
        if not self.err_no():
            return None
        return self._response().detailed_error()

    def close(self):
        closed = False
        if self._conn is not None:
            _log.debug('Closing LDAP connection to {}'.format(self._host))
            try:
                self._conn.unbind()
                closed = True
            except ldap3.core.exceptions.LDAPException:
                # The handle is released regardless
                _log.debug('Error unbinding from {}'.format(self._host), exc_info = True)
        self._conn = None
        self._mark_closed()
        return closed
