"""
This module defines the exceptions that can be thrown by :py:mod:`ldapmapper`.

Any exception raised as the result of a failed directory operation carries a
:py:class:`DetailedError` describing what the server reported, even when the
exception itself is of a generic type.
"""

__author__ = "Matt Pryor"
__copyright__ = "Copyright 2015 UK Science and Technology Facilities Council"

from collections import namedtuple


class DetailedError(namedtuple('DetailedError',
                               ['error_code', 'error_message', 'diagnostic_message'])):
    """
    The details of a failed LDAP operation, captured at the moment it failed.

    .. py:attribute:: error_code

        The numeric LDAP result code.

    .. py:attribute:: error_message

        The textual form of the result code, e.g. ``Invalid credentials``.

    .. py:attribute:: diagnostic_message

        The server-specific diagnostic text. Active Directory formats this as
        ``<hex-code>: <text>``.
    """
    __slots__ = ()

    @property
    def diagnostic_code(self):
        """
        Returns the hex code that prefixes the diagnostic message, or ``None``.
        """
        code, sep, _ = (self.diagnostic_message or '').partition(':')
        code = code.strip()
        if sep and code and all(c in '0123456789abcdefABCDEF' for c in code):
            return code
        return None


class LDAPError(Exception):
    """
    Raised when an LDAP error occurs.

    Args:
        message: The error message.
        detailed_error: The :py:class:`DetailedError` for the failure, if known.
    """
    def __init__(self, message = '', detailed_error = None):
        super().__init__(message)
        self.detailed_error = detailed_error


class ConnectionError(LDAPError):
    """
    Raised when there is an error with the LDAP connection itself, as opposed to
    a problem executing an operation (see :py:class:`OperationalError`).
    """


class NoServerAvailableError(ConnectionError):
    """
    Raised when a connection cannot be established to any configured host.

    The ``attempted`` attribute maps each host that failed to the time of the
    failed attempt.
    """
    def __init__(self, message = '', detailed_error = None, attempted = None):
        super().__init__(message, detailed_error)
        self.attempted = dict(attempted or {})


class OperationalError(LDAPError):
    """
    Raised when an operational error occurs, i.e. an error that results from a
    bad request rather than a problem with the connection per-se.
    """


class BindError(OperationalError):
    """
    Raised when binding to the directory fails.
    """


class ConstraintViolationError(OperationalError):
    """
    Raised when a modification violates a constraint, e.g. a password policy.
    """
    #: Diagnostic code sent by Active Directory when a password policy rejects a password
    PASSWORD_POLICY_CODE = '0000052D'
    #: Diagnostic code sent by Active Directory when the old password is wrong
    INCORRECT_PASSWORD_CODE = '00000056'

    def _diagnostic_contains(self, code):
        if self.detailed_error is None:
            return False
        return code in (self.detailed_error.diagnostic_message or '')

    def caused_by_password_policy(self):
        """
        Returns ``True`` if the violation was caused by the password policy.
        """
        return self._diagnostic_contains(self.PASSWORD_POLICY_CODE)

    def caused_by_incorrect_password(self):
        """
        Returns ``True`` if the violation was caused by an incorrect old password.
        """
        return self._diagnostic_contains(self.INCORRECT_PASSWORD_CODE)


class InsufficientAccessError(OperationalError):
    """
    Raised when the bound identity does not have permission to perform the
    requested operation.
    """


class AlreadyExistsError(OperationalError, ValueError):
    """
    Raised when attempting to create an object that already exists.
    """


class NoSuchObjectError(OperationalError, ValueError):
    """
    Raised when an operation is attempted on a non-existent object.
    """


class UsernameRequiredError(ValueError):
    """
    Raised when an authentication attempt is made without a username.
    """


class PasswordRequiredError(ValueError):
    """
    Raised when an authentication attempt is made without a password.
    """


class ParserError(ValueError):
    """
    Raised when a raw LDAP filter string cannot be parsed.
    """


class UnsupportedOperatorError(ValueError):
    """
    Raised when a filter is requested for an operator that is not supported.
    """


class ConfigurationError(ValueError):
    """
    Raised when a configuration option is unknown or has an invalid value.
    """


class RegistryError(KeyError):
    """
    Raised when a named connection cannot be found in a registry.
    """
