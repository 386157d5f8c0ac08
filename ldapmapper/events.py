"""
This module defines the lifecycle events dispatched by connections, auth guards
and queries, along with the dispatchers that deliver them to listeners.

Listeners are registered for an event class and receive every event that is an
instance of that class, so listening for :py:class:`Event` receives everything::

    dispatcher = Dispatcher()
    dispatcher.listen(Failed, lambda event: print(event.username))
"""

__author__ = "Matt Pryor"
__copyright__ = "Copyright 2015 UK Science and Technology Facilities Council"

import logging
from collections import namedtuple, OrderedDict


_log = logging.getLogger(__name__)


class Event:
    """
    Base class for all events.
    """
    __slots__ = ()


class ConnectionEvent(Event):
    """
    Base class for events about a :py:class:`~.connection.Connection`.
    """
    __slots__ = ()

    @property
    def host(self):
        return self.connection.host


class Connecting(ConnectionEvent, namedtuple('Connecting', ['connection', 'hostname'])):
    """
    Dispatched before a connection to a host is attempted.
    """
    __slots__ = ()


class Connected(ConnectionEvent, namedtuple('Connected', ['connection', 'hostname'])):
    """
    Dispatched once a connection has been established and bound.
    """
    __slots__ = ()


class ConnectionFailed(ConnectionEvent, namedtuple('ConnectionFailed',
                                                   ['connection', 'hostname', 'exception'])):
    """
    Dispatched when a connection could not be established.
    """
    __slots__ = ()


class AuthEvent(Event):
    """
    Base class for events from an :py:class:`~.auth.Guard`. ``transport`` is
    the :py:class:`~.transport.Transport` the bind is performed on.
    """
    __slots__ = ()

    @property
    def host(self):
        return self.transport.host


class Attempting(AuthEvent, namedtuple('Attempting', ['transport', 'username', 'password'])):
    """
    Dispatched before an authentication attempt.
    """
    __slots__ = ()


class Passed(AuthEvent, namedtuple('Passed', ['transport', 'username', 'password'])):
    """
    Dispatched when an authentication attempt succeeds.
    """
    __slots__ = ()


class Binding(AuthEvent, namedtuple('Binding', ['transport', 'username', 'password'])):
    """
    Dispatched before a bind.
    """
    __slots__ = ()


class Bound(AuthEvent, namedtuple('Bound', ['transport', 'username', 'password'])):
    """
    Dispatched after a successful bind.
    """
    __slots__ = ()


class Failed(AuthEvent, namedtuple('Failed', ['transport', 'username', 'password', 'exception'])):
    """
    Dispatched when a bind fails.
    """
    __slots__ = ()


class QueryExecuted(ConnectionEvent, namedtuple('QueryExecuted',
                                                ['connection', 'query_type', 'base_dn',
                                                 'filter_str', 'elapsed'])):
    """
    Dispatched after a query has been executed. ``elapsed`` is in milliseconds.
    """
    __slots__ = ()


class Dispatcher:
    """
    Delivers events to the listeners registered for them.

    Listeners are called in the order they were registered. Exceptions raised
    by listeners propagate to the code dispatching the event.
    """
    def __init__(self):
        self._listeners = OrderedDict()

    def listen(self, event_class, listener):
        """
        Registers a listener for the given event class (or tuple of classes).
        """
        classes = event_class if isinstance(event_class, tuple) else (event_class, )
        for cls in classes:
            self._listeners.setdefault(cls, []).append(listener)
        return listener

    def has_listeners(self, event_class):
        return bool(self._listeners.get(event_class))

    def forget(self, event_class = None, listener = None):
        """
        Removes listeners. If a listener is given, only that listener is removed.
        If no event class is given, listeners are removed for every class.
        """
        classes = [event_class] if event_class is not None else list(self._listeners)
        for cls in classes:
            if listener is None:
                self._listeners.pop(cls, None)
            else:
                self._listeners[cls] = [l for l in self._listeners.get(cls, []) if l != listener]

    def dispatch(self, event):
        """
        Delivers the event to every listener registered for a class it is an
        instance of.
        """
        for cls, listeners in list(self._listeners.items()):
            if isinstance(event, cls):
                for listener in list(listeners):
                    listener(event)


class NullDispatcher(Dispatcher):
    """
    Dispatcher that discards every event.
    """
    def listen(self, event_class, listener):
        return listener

    def dispatch(self, event):
        pass


class EventLogger:
    """
    Writes dispatched events to a logger.

    Failures are logged at warning level, everything else at info level.
    Passwords are never logged.

    Args:
        logger: The ``logging.Logger`` to write to (optional, defaults to the
            logger for this module).
    """
    def __init__(self, logger = None):
        self.logger = logger or _log

    def install(self, dispatcher):
        """
        Registers the logger to receive every event from the dispatcher.
        """
        dispatcher.listen(Event, self)
        return self

    def uninstall(self, dispatcher):
        dispatcher.forget(Event, self)
        return self

    @staticmethod
    def format(event):
        """
        Returns the log message for the event.
        """
        parts = [
            'LDAP ({})'.format(event.host or ''),
            'Operation: {}'.format(type(event).__name__),
        ]
        if isinstance(event, AuthEvent):
            parts.append('Username: {}'.format(event.username))
        if isinstance(event, QueryExecuted):
            parts.extend([
                'Type: {}'.format(event.query_type),
                'Base DN: {}'.format(event.base_dn),
                'Filter: {}'.format(event.filter_str),
                'Time: {}ms'.format(event.elapsed),
            ])
        elif isinstance(event, (Connecting, Connected, ConnectionFailed)):
            parts.append('Host: {}'.format(event.hostname))
        if isinstance(event, (Failed, ConnectionFailed)):
            parts.append('Reason: {}'.format(event.exception))
        return ' - '.join(parts)

    def __call__(self, event):
        level = logging.WARNING if isinstance(event, (Failed, ConnectionFailed)) else logging.INFO
        self.logger.log(level, self.format(event))
