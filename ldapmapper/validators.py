"""
This module provides functions that return validators.

A validator is a callable that takes a value and either returns the validated
(possibly modified) value or raises a ``ValueError``.

The functions in this module take a set of arguments (at the very least, a
customisable failure message) and produce a validator. Validators can be
chained using :py:func:`chain`.
"""

__author__ = "Matt Pryor"
__copyright__ = "Copyright 2015 UK Science and Technology Facilities Council"

from collections.abc import Iterable, Mapping


def not_empty(msg = 'Field must not be empty'):
    """
    Returns a validator that verifies that the given value is not empty. Only
    applicable for iterables, including strings, and ``None``, where ``None`` is
    considered empty. Other values pass through.
    """
    def f(value):
        if value is None or (isinstance(value, Iterable) and not value):
            raise ValueError(msg)
        return value
    return f


def each(validator, not_iterable_msg = 'Value must be iterable'):
    """
    Returns a validator that applies the given validator for each element of an
    iterable.
    """
    def f(values):
        if not isinstance(values, Iterable) or isinstance(values, (str, bytes)):
            raise TypeError(not_iterable_msg)
        return tuple(validator(v) for v in values)
    return f


def is_integer(msg = 'Value must be an integer'):
    """
    Returns a validator that verifies that the given value is an integer, or a
    string containing one. The integer is returned.
    """
    def f(value):
        # bool is a subclass of int, but True is not a sensible port
        if isinstance(value, bool):
            raise ValueError(msg)
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(msg)
    return f


def is_boolean(msg = 'Value must be a boolean'):
    """
    Returns a validator that verifies that the given value is a boolean.
    """
    def f(value):
        if not isinstance(value, bool):
            raise ValueError(msg)
        return value
    return f


def is_string(msg = 'Value must be a string'):
    """
    Returns a validator that verifies that the given value is a string.
    """
    def f(value):
        if not isinstance(value, str):
            raise ValueError(msg)
        return value
    return f


def is_list(msg = 'Value must be a list'):
    """
    Returns a validator that verifies that the given value is a list or tuple.
    A list is returned.
    """
    def f(value):
        if not isinstance(value, (list, tuple)):
            raise ValueError(msg)
        return list(value)
    return f


def is_mapping(msg = 'Value must be a dictionary'):
    """
    Returns a validator that verifies that the given value is a mapping.
    A dictionary is returned.
    """
    def f(value):
        if not isinstance(value, Mapping):
            raise ValueError(msg)
        return dict(value)
    return f


def optional(validator):
    """
    Returns a validator that lets ``None`` through and applies the given
    validator to anything else.
    """
    def f(value):
        return None if value is None else validator(value)
    return f


def chain(*validators):
    """
    Returns a validator that applies each of the given validators in turn,
    feeding the result of each into the next.
    """
    def f(value):
        for validator in validators:
            value = validator(value)
        return value
    return f
