"""
This module provides the classifier that turns the details of a failed LDAP
operation into the most specific exception from :py:mod:`~.exceptions`.

Servers report failures as a result code, a textual error message and a free
text diagnostic message. Active Directory prefixes the diagnostic message with
a hex code (e.g. ``0000052D: Constraint violation - check_password_restrictions``)
that identifies the actual cause, so diagnostic codes are checked first,
followed by the error message and finally the result code.
"""

__author__ = "Matt Pryor"
__copyright__ = "Copyright 2015 UK Science and Technology Facilities Council"

import logging

from . import exceptions


_log = logging.getLogger(__name__)


#: Text found in the errors raised when the server cannot be reached
LOST_CONNECTION_MESSAGES = (
    'contact LDAP server',
    'Connection reset by peer',
    'Broken pipe',
)


class ErrorClassifier:
    """
    Maps each :py:class:`~.exceptions.DetailedError` to an exception class.

    Each classifier starts with the default tables and can be extended using
    :py:meth:`register_code`, :py:meth:`register_message` and
    :py:meth:`register_result_code` without affecting other classifiers.
    """
    #: Default diagnostic codes, matched by substring on the diagnostic message
    DEFAULT_CODES = (
        (exceptions.ConstraintViolationError.PASSWORD_POLICY_CODE,
            exceptions.ConstraintViolationError),
        (exceptions.ConstraintViolationError.INCORRECT_PASSWORD_CODE,
            exceptions.ConstraintViolationError),
    )

    #: Default messages, matched by substring on the error message
    DEFAULT_MESSAGES = (
        ('Already exists', exceptions.AlreadyExistsError),
        ('entryAlreadyExists', exceptions.AlreadyExistsError),
        ('Insufficient access', exceptions.InsufficientAccessError),
        ('insufficientAccessRights', exceptions.InsufficientAccessError),
        ('Constraint violation', exceptions.ConstraintViolationError),
        ('constraintViolation', exceptions.ConstraintViolationError),
        ('No such object', exceptions.NoSuchObjectError),
        ('noSuchObject', exceptions.NoSuchObjectError),
    )

    #: Default LDAP result codes (RFC 4511)
    DEFAULT_RESULT_CODES = (
        (19, exceptions.ConstraintViolationError),
        (32, exceptions.NoSuchObjectError),
        (50, exceptions.InsufficientAccessError),
        (68, exceptions.AlreadyExistsError),
    )

    def __init__(self):
        self._codes = list(self.DEFAULT_CODES)
        self._messages = list(self.DEFAULT_MESSAGES)
        self._result_codes = dict(self.DEFAULT_RESULT_CODES)

    def register_code(self, code, exc_class):
        """
        Registers an exception class for a diagnostic code. Codes registered
        later take precedence.
        """
        self._codes.insert(0, (code, exc_class))
        return self

    def register_message(self, message, exc_class):
        """
        Registers an exception class for text in the error message. Messages
        registered later take precedence.
        """
        self._messages.insert(0, (message, exc_class))
        return self

    def register_result_code(self, result_code, exc_class):
        """
        Registers an exception class for an LDAP result code.
        """
        self._result_codes[int(result_code)] = exc_class
        return self

    def exception_class(self, detailed_error, default = exceptions.OperationalError):
        """
        Returns the exception class for the given detailed error, or ``default``
        if nothing matches.
        """
        if detailed_error is None:
            return default
        diagnostic = detailed_error.diagnostic_message or ''
        for code, exc_class in self._codes:
            # Hex codes are matched case-sensitively
            if code in diagnostic:
                return exc_class
        message = detailed_error.error_message or ''
        for text, exc_class in self._messages:
            if text in message:
                return exc_class
        try:
            return self._result_codes.get(int(detailed_error.error_code), default)
        except (TypeError, ValueError):
            return default

    def classify(self, exc, default = None):
        """
        Returns the most specific exception for the given exception.

        The exception is returned as-is if it has no detailed error, if nothing
        matches or if it is already of the matching type. Otherwise a new
        exception of the matching type is returned with the same message and
        detailed error, chained to the original.

        Args:
            exc: An :py:class:`~.exceptions.LDAPError`.
            default: The class to use when nothing matches (optional, defaults
                to the class of ``exc``).

        Returns:
            An :py:class:`~.exceptions.LDAPError`.
        """
        detailed_error = getattr(exc, 'detailed_error', None)
        exc_class = self.exception_class(detailed_error, default or type(exc))
        if isinstance(exc, exc_class):
            return exc
        _log.debug('Classified LDAP error as {}: {}'.format(exc_class.__name__, exc))
        classified = exc_class(str(exc), detailed_error)
        classified.__cause__ = exc
        return classified

    def bind_error(self, message, detailed_error):
        """
        Returns a new :py:class:`~.exceptions.BindError` for a failed bind.

        If the failure can be classified, the error is also an instance of the
        matching exception class, e.g. a rejected password change is both a
        ``BindError`` and a ``ConstraintViolationError``.
        """
        exc_class = self.exception_class(detailed_error, exceptions.BindError)
        return _bind_error_class(exc_class)(message, detailed_error)

    @staticmethod
    def caused_by_lost_connection(exc):
        """
        Returns ``True`` if the exception indicates that the server could not be
        reached, in which case the operation can be retried on another host.
        """
        message = str(exc)
        detailed_error = getattr(exc, 'detailed_error', None)
        if detailed_error is not None:
            message = ' '.join([
                message,
                detailed_error.error_message or '',
                detailed_error.diagnostic_message or ''
            ])
        return any(m in message for m in LOST_CONNECTION_MESSAGES)


#: Bind error classes created for each classified exception class
_BIND_ERROR_CLASSES = {}


def _bind_error_class(exc_class):
    """
    Returns a subclass of both ``BindError`` and the given class.
    """
    if issubclass(exc_class, exceptions.BindError):
        return exc_class
    if exc_class not in _BIND_ERROR_CLASSES:
        _BIND_ERROR_CLASSES[exc_class] = type(
            'Bind' + exc_class.__name__,
            (exceptions.BindError, exc_class),
            { '__module__' : exc_class.__module__ }
        )
    return _BIND_ERROR_CLASSES[exc_class]
