"""
This module provides the configuration for a connection to an LDAP domain.
"""

__author__ = "Matt Pryor"
__copyright__ = "Copyright 2015 UK Science and Technology Facilities Council"

import copy

from . import validators as v
from .exceptions import ConfigurationError


class DomainConfiguration:
    """
    The options for connecting to an LDAP domain.

    Every option has a default and a validator. Unknown options and invalid
    values raise :py:class:`~.exceptions.ConfigurationError`.

    ::

        config = DomainConfiguration({
            'hosts' : ['dc01.example.com', 'dc02.example.com'],
            'base_dn' : 'dc=example,dc=com',
            'username' : 'cn=admin,dc=example,dc=com',
            'password' : 'secret',
        })
    """
    #: The default values of the options
    DEFAULTS = {
        'hosts' : [],
        'port' : 389,
        'base_dn' : '',
        'username' : None,
        'password' : None,
        'use_ssl' : False,
        'use_tls' : False,
        'version' : 3,
        'timeout' : 5,
        'follow_referrals' : False,
        'options' : {},
    }

    #: The validators for the options
    VALIDATORS = {
        'hosts' : v.chain(
            v.is_list('Option [hosts] must be a list'),
            v.each(v.chain(
                v.is_string('Option [hosts] must only contain strings'),
                v.not_empty('Option [hosts] must not contain empty hosts')
            ))
        ),
        'port' : v.is_integer('Option [port] must be an integer'),
        'base_dn' : v.is_string('Option [base_dn] must be a string'),
        'username' : v.optional(v.is_string('Option [username] must be a string')),
        'password' : v.optional(v.is_string('Option [password] must be a string')),
        'use_ssl' : v.is_boolean('Option [use_ssl] must be a boolean'),
        'use_tls' : v.is_boolean('Option [use_tls] must be a boolean'),
        'version' : v.is_integer('Option [version] must be an integer'),
        'timeout' : v.is_integer('Option [timeout] must be an integer'),
        'follow_referrals' : v.is_boolean('Option [follow_referrals] must be a boolean'),
        'options' : v.is_mapping('Option [options] must be a dictionary'),
    }

    def __init__(self, options = None):
        self._options = copy.deepcopy(self.DEFAULTS)
        for key, value in (options or {}).items():
            self.set(key, value)

    def set(self, key, value):
        """
        Validates and sets an option.

        :raises ConfigurationError: If the option is unknown or the value is invalid
        """
        if key not in self.VALIDATORS:
            raise ConfigurationError("Option [{}] does not exist".format(key))
        try:
            value = self.VALIDATORS[key](value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(str(e)) from e
        # each() produces tuples
        if key == 'hosts':
            value = list(value)
        self._options[key] = value

    def get(self, key):
        """
        Returns the value of an option.

        :raises ConfigurationError: If the option is unknown
        """
        try:
            return self._options[key]
        except KeyError:
            raise ConfigurationError("Option [{}] does not exist".format(key))

    def has(self, key):
        return key in self._options

    def all(self):
        """
        Returns a copy of all the options.
        """
        return copy.deepcopy(self._options)
