"""
This module provides a registry of named connections.

A registry is an ordinary object: create one wherever named connections need to
be resolved and pass it to the code that needs it.
"""

__author__ = "Matt Pryor"
__copyright__ = "Copyright 2015 UK Science and Technology Facilities Council"

import logging
from collections import OrderedDict

from . import events
from .exceptions import RegistryError


_log = logging.getLogger(__name__)


class ConnectionRegistry:
    """
    Holds connections by name, one of which is the default.

    Every connection added to the registry shares the registry's
    :py:class:`~.events.Dispatcher`.
    """
    #: The name used when no name is given
    DEFAULT_NAME = 'default'

    def __init__(self, dispatcher = None):
        self.dispatcher = dispatcher or events.Dispatcher()
        self._connections = OrderedDict()
        self._default = self.DEFAULT_NAME
        self._logger = None

    @property
    def default_name(self):
        return self._default

    def add(self, connection, name = None):
        """
        Adds a connection, replacing any existing connection with the same name.
        """
        name = name or self._default
        _log.debug('Registering LDAP connection [{}]'.format(name))
        connection.set_dispatcher(self.dispatcher)
        self._connections[name] = connection
        return self

    def get(self, name = None):
        """
        Returns the named connection, or the default connection if no name is given.

        :raises RegistryError: If there is no such connection
        """
        name = name or self._default
        try:
            return self._connections[name]
        except KeyError:
            raise RegistryError("The LDAP connection [{}] does not exist".format(name))

    def get_default(self):
        return self.get(self._default)

    def set_default(self, name = None):
        """
        Sets the name of the default connection.
        """
        self._default = name or self.DEFAULT_NAME
        return self

    def exists(self, name):
        return name in self._connections

    def remove(self, name):
        """
        Removes the named connection, closing it first.
        """
        connection = self._connections.pop(name, None)
        if connection is not None:
            connection.disconnect()
        return self

    def all(self):
        """
        Returns a dictionary of the connections by name.
        """
        return OrderedDict(self._connections)

    def flush(self):
        """
        Closes and removes every connection and restores the default name.
        """
        for name in list(self._connections):
            self.remove(name)
        self._default = self.DEFAULT_NAME
        self.unset_logger()
        return self

    @property
    def logger(self):
        return self._logger

    def set_logger(self, logger):
        """
        Logs every event dispatched by the registered connections to the given
        ``logging.Logger``.
        """
        self.unset_logger()
        self._logger = events.EventLogger(logger).install(self.dispatcher)
        return self

    def unset_logger(self):
        if self._logger is not None:
            self._logger.uninstall(self.dispatcher)
            self._logger = None
        return self
