"""
This module provides the guard used to authenticate users against a directory.

Authenticating a user means binding as that user. Unless told otherwise, the
guard then binds again as the configured (service) account so that later
operations on the same transport run with the rights of that account.
"""

__author__ = "Matt Pryor"
__copyright__ = "Copyright 2015 UK Science and Technology Facilities Council"

import logging
from collections import namedtuple

from . import events, exceptions
from .classifier import ErrorClassifier


_log = logging.getLogger(__name__)


class AuthResult(namedtuple('AuthResult', ['authenticated', 'username', 'error'])):
    """
    The outcome of an authentication attempt.

    .. py:attribute:: authenticated

        ``True`` if the credentials were accepted.

    .. py:attribute:: username

        The username that was tried.

    .. py:attribute:: error

        The :py:class:`~.exceptions.OperationalError` that caused the attempt to
        fail, or ``None``. Its ``detailed_error`` holds what the server reported.
    """
    __slots__ = ()

    def __bool__(self):
        return self.authenticated


class Guard:
    """
    Authenticates users using a :py:class:`~.transport.Transport`.

    Args:
        transport: The transport to bind with.
        configuration: The :py:class:`~.configuration.DomainConfiguration`
            holding the configured account.
        dispatcher: The :py:class:`~.events.Dispatcher` for auth events (optional).
        classifier: The :py:class:`~.classifier.ErrorClassifier` for bind
            failures (optional).
    """
    def __init__(self, transport, configuration, dispatcher = None, classifier = None):
        self.transport = transport
        self.configuration = configuration
        self.dispatcher = dispatcher or events.NullDispatcher()
        self.classifier = classifier or ErrorClassifier()

    def _dispatch(self, event_class, username, password, *args):
        self.dispatcher.dispatch(event_class(self.transport, username, password, *args))

    def authenticate(self, username, password, stay_bound = False):
        """
        Tries to bind as the given user and reports the outcome.

        Unless ``stay_bound`` is ``True``, the configured account is bound again
        afterwards, whether or not the user's credentials were accepted.

        Args:
            username: The username to authenticate.
            password: The password to authenticate with.
            stay_bound: If ``True``, stay bound as the user after a successful bind.

        Returns:
            An :py:class:`AuthResult`.

        Raises:
            UsernameRequiredError: If the username is empty.
            PasswordRequiredError: If the password is empty.
            ConnectionError: If the server cannot be reached.
            OperationalError: If binding as the configured account fails.
        """
        if not username:
            raise exceptions.UsernameRequiredError('A username must be specified.')
        if not password:
            raise exceptions.PasswordRequiredError('A password must be specified.')
        self._dispatch(events.Attempting, username, password)
        try:
            self.bind(username, password)
        except exceptions.LDAPError as e:
            # Only a rejected bind is an authentication failure
            if (isinstance(e, exceptions.ConnectionError) or
                    self.classifier.caused_by_lost_connection(e)):
                raise
            _log.debug('Authentication failed for {}: {}'.format(username, e))
            result = AuthResult(False, username, e)
        else:
            self._dispatch(events.Passed, username, password)
            result = AuthResult(True, username, None)
        if not stay_bound:
            self.bind_as_configured_user()
        return result

    def attempt(self, username, password, stay_bound = False):
        """
        Returns ``True`` if the given credentials are accepted, ``False`` otherwise.

        See :py:meth:`authenticate` for the exceptions that are raised.
        """
        return self.authenticate(username, password, stay_bound).authenticated

    def bind(self, username = None, password = None):
        """
        Binds as the given user, or anonymously if no user is given.

        TLS is started first if it is enabled and the transport is not bound.

        Raises:
            ConnectionError: If the server cannot be reached.
            BindError: If the bind fails. If the failure can be classified,
                the error is also an instance of the more specific
                :py:class:`~.exceptions.OperationalError`.
        """
        self._dispatch(events.Binding, username, password)
        try:
            if self.transport.is_using_tls() and not self.transport.is_bound():
                self.transport.start_tls()
            response = self.transport.bind(username, password)
        except exceptions.LDAPError as e:
            self._dispatch(events.Failed, username, password, e)
            raise
        if response.failed():
            detailed_error = response.detailed_error() or self.transport.get_detailed_error()
            error = self.classifier.bind_error(
                self.transport.get_last_error() or response.error_message or 'Bind failed',
                detailed_error
            )
            self._dispatch(events.Failed, username, password, error)
            raise error
        self._dispatch(events.Bound, username, password)

    def bind_as_configured_user(self):
        """
        Binds as the account from the configuration.
        """
        self.bind(
            self.configuration.get('username'),
            self.configuration.get('password')
        )
