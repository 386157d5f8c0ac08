"""
This module provides facilities for building LDAP search filters.

Each filter is a small immutable node that knows how to render itself as an
`RFC 4515 <https://tools.ietf.org/html/rfc4515>`_ filter string using ``str``.
Nodes never escape the values they are given - that is the responsibility of
whoever builds them (see :py:mod:`~.query`).

Individual filters can then be combined using logical operators (AND, OR and NOT)
to form filters of arbitrary complexity::

    f = Equals('objectClass', 'person') & (StartsWith('cn', 'Jo') | Has('mail'))
    str(f)  # '(&(objectClass=person)(|(cn=Jo*)(mail=*)))'
"""

__author__ = "Matt Pryor"
__copyright__ = "Copyright 2015 UK Science and Technology Facilities Council"

from .exceptions import UnsupportedOperatorError


class Node:
    """
    Represents a node in the filter expression tree.

    The ``&`` (AND), ``|`` (OR) and ``~`` (NOT) operators can be used to combine
    nodes into more complex filters.
    """
    def and_(self, other):
        """
        Returns a new node that combines this node and the given node using AND.
        """
        return AndGroup(self, other)

    def or_(self, other):
        """
        Returns a new node that combines this node and the given node using OR.
        """
        return OrGroup(self, other)

    def not_(self):
        """
        Returns a new node that negates this node using NOT.
        """
        return Not(self)

    def _key(self):
        raise NotImplementedError

    def __eq__(self, other):
        return type(self) is type(other) and self._key() == other._key()

    def __ne__(self, other):
        return not self == other

    def __hash__(self):
        return hash((type(self), self._key()))

    def __repr__(self):
        return '{}({})'.format(type(self).__name__, ', '.join(repr(k) for k in self._key()))

    ############################################################################
    ## Magic methods for & (AND), | (OR) and ~ (NOT) operators
    ############################################################################

    def __and__(self, other):
        return self.and_(other)

    def __or__(self, other):
        return self.or_(other)

    def __invert__(self):
        return self.not_()


class Condition(Node):
    """
    Base class for the single ``(attribute operator value)`` filters.

    Subclasses set :py:attr:`operator` and, where the value is wrapped in
    wildcards, override :py:meth:`raw_value`.
    """
    #: The LDAP comparison operator for the filter
    operator = '='

    def __init__(self, attribute, value):
        self._attribute = attribute
        self._value = value

    @property
    def attribute(self):
        return self._attribute

    @property
    def value(self):
        return self._value

    def raw_value(self):
        """
        Returns the value as it appears in the filter string.
        """
        return self._value

    @property
    def raw(self):
        """
        Returns the filter without its enclosing parentheses.
        """
        return '{}{}{}'.format(self._attribute, self.operator, self.raw_value())

    def _key(self):
        return (self._attribute, self._value)

    def __str__(self):
        return '({})'.format(self.raw)


class Equals(Condition):
    """
    Filter matching entries where the attribute equals the value.
    """


class ApproximatelyEquals(Condition):
    """
    Filter matching entries where the attribute approximately equals the value.
    """
    operator = '~='


class GreaterThanOrEquals(Condition):
    """
    Filter matching entries where the attribute is greater than or equal to the value.
    """
    operator = '>='


class LessThanOrEquals(Condition):
    """
    Filter matching entries where the attribute is less than or equal to the value.
    """
    operator = '<='


class StartsWith(Condition):
    """
    Filter matching entries where the attribute starts with the value.
    """
    def raw_value(self):
        return '{}*'.format(self._value)


class EndsWith(Condition):
    """
    Filter matching entries where the attribute ends with the value.
    """
    def raw_value(self):
        return '*{}'.format(self._value)


class Contains(Condition):
    """
    Filter matching entries where the attribute contains the value.
    """
    def raw_value(self):
        return '*{}*'.format(self._value)


class Has(Condition):
    """
    Filter matching entries that have any value for the attribute.
    """
    def __init__(self, attribute):
        super().__init__(attribute, None)

    def raw_value(self):
        return '*'

    def _key(self):
        return (self._attribute, )


class Raw(Node):
    """
    A filter string that is used verbatim.
    """
    def __init__(self, value):
        self._value = value

    @property
    def value(self):
        return self._value

    def _key(self):
        return (self._value, )

    def __str__(self):
        return self._value


class Not(Node):
    """
    Node type for negating a node using NOT.
    """
    operator = '!'

    def __init__(self, node):
        self._child = node

    @property
    def child(self):
        """
        Returns the node that is being negated using NOT.
        """
        return self._child

    @property
    def children(self):
        return (self._child, )

    def not_(self):
        # Customise NOT to just return the underlying node
        return self._child

    def _key(self):
        return (self._child, )

    def __str__(self):
        return '(!{})'.format(self._child)


class Group(Node):
    """
    Base class for nodes combining zero or more child nodes.

    An empty group renders as ``(&)`` or ``(|)``, the absolute true and false
    filters from RFC 4526.
    """
    operator = None

    def __init__(self, *children):
        self._children = tuple(children)

    @property
    def children(self):
        """
        Returns the child nodes of the group.
        """
        return self._children

    @property
    def raw(self):
        """
        Returns the group without its enclosing parentheses.
        """
        return self.operator + ''.join(str(c) for c in self._children)

    def _key(self):
        return self._children

    def __str__(self):
        return '({})'.format(self.raw)


class AndGroup(Group):
    """
    Node type for combining nodes using AND.
    """
    operator = '&'

    def and_(self, other):
        # Customise AND to just add a child instead of increasing the tree depth
        return AndGroup(*(self._children + (other, )))


class OrGroup(Group):
    """
    Node type for combining nodes using OR.
    """
    operator = '|'

    def or_(self, other):
        # Customise OR to just add a child instead of increasing the tree depth
        return OrGroup(*(self._children + (other, )))


class Factory:
    """
    Creates filter nodes from the operator tokens accepted by the query builder.

    Negated tokens (``!=``, ``!*``, ``not_contains``, ...) build the base filter
    and wrap it in :py:class:`Not`.
    """
    _OPERATORS = {
        '*'               : Has,
        '!*'              : (Not, Has),
        '='               : Equals,
        '!'               : (Not, Equals),
        '!='              : (Not, Equals),
        '>='              : GreaterThanOrEquals,
        '<='              : LessThanOrEquals,
        '~='              : ApproximatelyEquals,
        'starts_with'     : StartsWith,
        'not_starts_with' : (Not, StartsWith),
        'ends_with'       : EndsWith,
        'not_ends_with'   : (Not, EndsWith),
        'contains'        : Contains,
        'not_contains'    : (Not, Contains),
    }

    @classmethod
    def operators(cls):
        """
        Returns the supported operator tokens.
        """
        return list(cls._OPERATORS)

    @classmethod
    def requires_value(cls, operator):
        """
        Returns ``True`` if filters for the operator need a value.
        """
        target = cls._OPERATORS.get(operator)
        if isinstance(target, tuple):
            target = target[1]
        return target is not Has

    @classmethod
    def make(cls, operator, attribute, value = None):
        """
        Returns the filter for the given operator token.

        :param operator: One of the tokens from :py:meth:`operators`
        :param attribute: The attribute to filter on
        :param value: The value to filter with (ignored for presence filters)
        :returns: A :py:class:`Node`
        :raises UnsupportedOperatorError: If the operator is not supported
        """
        try:
            target = cls._OPERATORS[operator]
        except KeyError:
            raise UnsupportedOperatorError(
                "Invalid LDAP filter operator ['{}']".format(operator)
            )
        if isinstance(target, tuple):
            wrapper, target = target
            return wrapper(cls._create(target, attribute, value))
        return cls._create(target, attribute, value)

    @staticmethod
    def _create(filter_type, attribute, value):
        if filter_type is Has:
            return Has(attribute)
        return filter_type(attribute, value)
