"""
This module provides the connection to an LDAP domain.

A :py:class:`Connection` walks the configured hosts until it can bind to one of
them, and re-runs operations on the next host when the current one goes away.
Connections can be used in a ``with`` statement to ensure that the transport is
closed when it is finished with::

    with Connection({'hosts' : ['dc01', 'dc02'], 'base_dn' : 'dc=example,dc=com'}) as conn:
        entries = conn.query().where('uid', 'jbloggs').get()
"""

__author__ = "Matt Pryor"
__copyright__ = "Copyright 2015 UK Science and Technology Facilities Council"

import logging
from datetime import datetime

from . import events, exceptions
from .auth import Guard
from .classifier import ErrorClassifier
from .configuration import DomainConfiguration
from .query import Builder
from .transport import Ldap3Transport


_log = logging.getLogger(__name__)


class Connection:
    """
    Represents a connection to an LDAP domain with one or more hosts.

    Args:
        configuration: A :py:class:`~.configuration.DomainConfiguration` or a
            dictionary of options.
        transport: The :py:class:`~.transport.Transport` to use (optional,
            defaults to an :py:class:`~.transport.Ldap3Transport`).
        dispatcher: The :py:class:`~.events.Dispatcher` for lifecycle events
            (optional).
        classifier: The :py:class:`~.classifier.ErrorClassifier` for failed
            operations (optional).
    """
    #: No transport handle is open
    STATE_DISCONNECTED = 'disconnected'
    #: Trying the configured hosts
    STATE_CONNECTING = 'connecting'
    #: A transport handle is open but not bound
    STATE_CONNECTED = 'connected'
    #: The transport is bound
    STATE_BOUND = 'bound'

    def __init__(self, configuration = None, transport = None, dispatcher = None, classifier = None):
        if not isinstance(configuration, DomainConfiguration):
            configuration = DomainConfiguration(configuration)
        self.configuration = configuration
        self._transport = transport or Ldap3Transport()
        self.dispatcher = dispatcher or events.NullDispatcher()
        self.classifier = classifier or ErrorClassifier()
        #: Maps each host that could not be contacted to the time of the attempt
        self.attempted = {}
        self._state = self.STATE_DISCONNECTED
        self._hostname = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # Just attempt to close the connection, but don't supress exceptions from
        # inside the with statement
        self.disconnect()
        return False

    @property
    def transport(self):
        return self._transport

    @property
    def state(self):
        return self._state

    @property
    def hostname(self):
        """
        The configured host currently in use, or ``None``.
        """
        return self._hostname

    @property
    def host(self):
        """
        The URI of the host the transport is connected to, or ``None``.
        """
        return self._transport.host

    @property
    def bound_as(self):
        return self._transport.bound_as

    def set_dispatcher(self, dispatcher):
        self.dispatcher = dispatcher or events.NullDispatcher()
        return self

    def is_connected(self):
        """
        Returns ``True`` if the transport is open and bound.
        """
        return self._transport.is_connected() and self._transport.is_bound()

    def _configure(self):
        """
        Applies the SSL/TLS mode and options from the configuration to the transport.
        """
        config = self.configuration
        if config.get('use_ssl'):
            self._transport.ssl()
        elif config.get('use_tls'):
            self._transport.tls()
        options = dict(config.get('options'))
        options.update(
            version = config.get('version'),
            timeout = config.get('timeout'),
            follow_referrals = config.get('follow_referrals'),
        )
        self._transport.set_options(options)

    def initialize(self, hostname = None):
        """
        Opens the transport for the given host (by default the first configured host),
        closing any existing handle first.
        """
        hosts = self.configuration.get('hosts')
        if hostname is None:
            if not hosts:
                raise exceptions.ConfigurationError('No LDAP hosts have been configured')
            hostname = hosts[0]
        if self._transport.is_connected():
            self._transport.close()
        self._configure()
        _log.debug('Opening LDAP connection to {}'.format(hostname))
        self._transport.connect(hostname, self.configuration.get('port'))
        self._hostname = hostname
        self._state = self.STATE_CONNECTED
        return self

    def auth(self):
        """
        Returns a :py:class:`~.auth.Guard` for the transport, opening the
        transport first if required.
        """
        if not self._transport.is_connected():
            self.initialize()
        return Guard(self._transport, self.configuration, self.dispatcher, self.classifier)

    def _bind(self, username, password):
        guard = Guard(self._transport, self.configuration, self.dispatcher, self.classifier)
        if username is None and password is None:
            guard.bind_as_configured_user()
        else:
            guard.bind(username, password)
        self._state = self.STATE_BOUND

    def _connect_to(self, hostname, username = None, password = None):
        """
        Opens the transport for a single host and binds to it.
        """
        self._state = self.STATE_CONNECTING
        self.dispatcher.dispatch(events.Connecting(self, hostname))
        self.initialize(hostname)
        self._bind(username, password)
        self.dispatcher.dispatch(events.Connected(self, hostname))

    def connect(self, username = None, password = None):
        """
        Connects and binds to the first available host.

        The configured account is used unless a username or password is given.
        Each host that fails, whether it cannot be contacted or rejects the
        bind, is recorded in :py:attr:`attempted` and the next host is tried.

        Returns:
            The connection.

        Raises:
            NoServerAvailableError: If every host fails. The error carries the
                ``detailed_error`` of the last failure and is chained to it.
        """
        hosts = self.configuration.get('hosts')
        if not hosts:
            raise exceptions.ConfigurationError('No LDAP hosts have been configured')
        last_error = None
        for hostname in hosts:
            try:
                self._connect_to(hostname, username, password)
            except exceptions.LDAPError as e:
                _log.warning('Failed to connect to {}: {}'.format(hostname, e))
                self.attempted[hostname] = datetime.now()
                last_error = e
                continue
            return self
        # If we exit the loop without returning, there are no available servers
        self.disconnect()
        error = exceptions.NoServerAvailableError(
            'No LDAP server available (attempted: {})'.format(', '.join(self.attempted)),
            getattr(last_error, 'detailed_error', None),
            self.attempted
        )
        self.dispatcher.dispatch(events.ConnectionFailed(self, hosts[-1], error))
        raise error from last_error

    def disconnect(self):
        """
        Closes the transport.
        """
        if self._transport.is_connected():
            _log.debug('Closing LDAP connection to {}'.format(self._hostname))
            self._transport.close()
        self._state = self.STATE_DISCONNECTED
        self._hostname = None

    def reconnect(self):
        """
        Closes the transport and connects again from the first host.
        """
        self.disconnect()
        return self.connect()

    def _next_host(self, hostname):
        hosts = self.configuration.get('hosts')
        index = hosts.index(hostname) if hostname in hosts else -1
        return hosts[(index + 1) % len(hosts)]

    def run(self, operation):
        """
        Runs the operation with the transport, connecting first if required.

        If the operation fails because the server cannot be contacted, the
        connection is re-established on the same host and the operation run
        again. Each further failure moves to the next host. There are at most
        as many retries as configured hosts, after which the last error is raised.

        Args:
            operation: Callable that receives the :py:class:`~.transport.Transport`.

        Returns:
            The result of the operation.

        Raises:
            Any of the exceptions from :py:mod:`~.exceptions`. Exceptions that
            are not LDAP errors propagate unchanged.
        """
        if not self.is_connected():
            self.connect()
        max_retries = len(self.configuration.get('hosts'))
        retries = 0
        hostname = self._hostname
        while True:
            try:
                if retries:
                    _log.debug('Reconnecting to {}'.format(hostname))
                    self.disconnect()
                    self._connect_to(hostname)
                return operation(self._transport)
            except exceptions.LDAPError as e:
                if not self.classifier.caused_by_lost_connection(e):
                    classified = self.classifier.classify(e)
                    if classified is e:
                        raise
                    raise classified from e
                if retries >= max_retries:
                    self.attempted[hostname] = datetime.now()
                    raise
                # Retry the same host once, then move on to the next one
                if retries:
                    self.attempted[hostname] = datetime.now()
                    hostname = self._next_host(hostname)
                retries += 1
                _log.warning('Lost connection to LDAP server ({}), retrying on {}'.format(e, hostname))

    def query(self):
        """
        Returns a new :py:class:`~.query.Builder` for the configured base DN.
        """
        return Builder(self, self.configuration.get('base_dn'))

    def replicate(self):
        """
        Returns a new, unconnected connection with the same configuration and
        a new transport of the same type.
        """
        return Connection(
            self.configuration.all(),
            type(self._transport)(),
            self.dispatcher,
            self.classifier
        )

    def isolate(self, callback):
        """
        Calls the callback with a temporary replica of the connection, which is
        closed afterwards. Returns the result of the callback.
        """
        with self.replicate() as replica:
            return callback(replica)
