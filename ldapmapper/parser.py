"""
This module provides a parser for raw LDAP filter strings.

:py:func:`parse` turns a filter string into a tree of :py:class:`ConditionNode`
and :py:class:`GroupNode` objects that can be inspected, and :py:func:`assemble`
turns a tree back into a canonical filter string::

    node = parse('(&(objectClass=person)(|(sn=Smith)(sn=Johnson)))')
    node.operator                # '&'
    node.children[1].children    # [ConditionNode('sn', '=', 'Smith'), ...]
    assemble(node)               # '(&(objectClass=person)(|(sn=Smith)(sn=Johnson)))'

Redundant parentheses and whitespace around groups are removed by a round
trip, so ``assemble(parse(s))`` is the canonical form of ``s``.
"""

__author__ = "Matt Pryor"
__copyright__ = "Copyright 2015 UK Science and Technology Facilities Council"

import logging

from . import filters
from .exceptions import ParserError


_log = logging.getLogger(__name__)


#: Condition operators, multi-character operators first
CONDITION_OPERATORS = ('>=', '<=', '~=', '=')
#: Group operators
GROUP_OPERATORS = ('&', '|', '!')


class ParsedNode:
    """
    Base class for nodes produced by the parser.
    """
    raw = ''

    def __str__(self):
        return '({})'.format(self.raw)

    def __ne__(self, other):
        return not self == other


class ConditionNode(ParsedNode):
    """
    A single ``attribute operator value`` condition.

    .. py:attribute:: raw

        The condition without its enclosing parentheses.

    .. py:attribute:: attribute

        The attribute the condition applies to.

    .. py:attribute:: operator

        One of ``>=``, ``<=``, ``~=`` or ``=``.

    .. py:attribute:: value

        The (still escaped) value, including any ``*`` wildcards.
    """
    def __init__(self, attribute, operator, value):
        if operator not in CONDITION_OPERATORS:
            raise ParserError("Invalid condition operator [{}]".format(operator))
        self.attribute = attribute
        self.operator = operator
        self.value = value
        self.raw = '{}{}{}'.format(attribute, operator, value)

    @classmethod
    def from_string(cls, condition):
        """
        Builds a condition from a string such as ``cn~=Steve``.

        The string is split on the first operator that occurs in it. Where two
        operators start at the same position (``~=`` and ``=``), the longer one
        wins.
        """
        for pos in range(len(condition)):
            for operator in CONDITION_OPERATORS:
                if condition.startswith(operator, pos):
                    attribute, value = condition[:pos], condition[pos + len(operator):]
                    if not attribute.strip():
                        raise ParserError("Invalid query filter [{}]".format(condition))
                    return cls(attribute.strip(), operator, value)
        raise ParserError(
            "Invalid query condition. No operator found in [{}]".format(condition)
        )

    def to_filter(self):
        """
        Converts the condition into the equivalent :py:mod:`~.filters` node.
        """
        if self.operator == '>=':
            return filters.GreaterThanOrEquals(self.attribute, self.value)
        if self.operator == '<=':
            return filters.LessThanOrEquals(self.attribute, self.value)
        if self.operator == '~=':
            return filters.ApproximatelyEquals(self.attribute, self.value)
        value = self.value
        if value == '*':
            return filters.Has(self.attribute)
        if len(value) > 1 and value.startswith('*') and value.endswith('*'):
            return filters.Contains(self.attribute, value[1:-1])
        if value.startswith('*'):
            return filters.EndsWith(self.attribute, value[1:])
        if value.endswith('*'):
            return filters.StartsWith(self.attribute, value[:-1])
        return filters.Equals(self.attribute, value)

    def __eq__(self, other):
        return (
            isinstance(other, ConditionNode) and
            (self.attribute, self.operator, self.value) ==
                (other.attribute, other.operator, other.value)
        )

    __hash__ = None

    def __repr__(self):
        return 'ConditionNode({!r}, {!r}, {!r})'.format(
            self.attribute, self.operator, self.value
        )


class GroupNode(ParsedNode):
    """
    A group of nodes combined using ``&``, ``|`` or ``!``.

    .. py:attribute:: raw

        The group without its enclosing parentheses, in canonical form.

    .. py:attribute:: operator

        One of ``&``, ``|`` or ``!``.

    .. py:attribute:: children

        The list of child nodes.
    """
    def __init__(self, operator, children):
        if operator not in GROUP_OPERATORS:
            raise ParserError("Invalid group operator [{}]".format(operator))
        self.operator = operator
        self.children = list(children)
        self.raw = operator + ''.join(str(c) for c in self.children)

    def to_filter(self):
        """
        Converts the group into the equivalent :py:mod:`~.filters` node.
        """
        children = [c.to_filter() for c in self.children]
        if self.operator == '&':
            return filters.AndGroup(*children)
        if self.operator == '|':
            return filters.OrGroup(*children)
        return filters.Not(children[0])

    def __eq__(self, other):
        return (
            isinstance(other, GroupNode) and
            self.operator == other.operator and
            self.children == other.children
        )

    __hash__ = None

    def __repr__(self):
        return 'GroupNode({!r}, {!r})'.format(self.operator, self.children)


def _check_balanced(string):
    opened, closed = string.count('('), string.count(')')
    if opened < closed:
        raise ParserError('Unclosed filter group. Missing "(" parenthesis')
    if opened > closed:
        raise ParserError('Unclosed filter group. Missing ")" parenthesis')


def _split_groups(string):
    """
    Scans the string and returns a ``(groups, outside)`` pair, where ``groups``
    is the list of contents of the top-level parenthesised groups and
    ``outside`` is the list of text fragments that were not inside any group.
    """
    groups, outside = [], []
    depth, start, last = 0, 0, 0
    for pos, char in enumerate(string):
        if char == '(':
            if depth == 0:
                outside.append(string[last:pos])
                start = pos + 1
            depth += 1
        elif char == ')':
            if depth == 0:
                raise ParserError('Unclosed filter group. Missing "(" parenthesis')
            depth -= 1
            if depth == 0:
                groups.append(string[start:pos])
                last = pos + 1
    if depth:
        raise ParserError('Unclosed filter group. Missing ")" parenthesis')
    outside.append(string[last:])
    return groups, [o.strip() for o in outside if o.strip()]


def _is_wrapped(content):
    """
    Returns ``True`` if the whole of the content is a single parenthesised group.
    """
    if not (content.startswith('(') and content.endswith(')')):
        return False
    groups, outside = _split_groups(content)
    return len(groups) == 1 and not outside


def _build_node(content):
    content = content.strip()
    # Strip redundant parentheses, e.g. ((x=y)) => (x=y)
    while _is_wrapped(content):
        content = content[1:-1].strip()
    if not content:
        raise ParserError('No filter found')
    if content[0] in GROUP_OPERATORS:
        return _build_group(content)
    if content.startswith('('):
        raise ParserError("Invalid filter group. No operator found in [{}]".format(content))
    return ConditionNode.from_string(content)


def _build_group(content):
    operator, rest = content[0], content[1:]
    groups, outside = _split_groups(rest)
    if outside:
        # Report the unwrapped text that follows the last child
        trailing = rest.rpartition(')')[2].strip()
        raise ParserError("Unclosed filter group [{}]".format(trailing or outside[0]))
    children = [_build_node(g) for g in groups]
    if operator == '!' and len(children) != 1:
        raise ParserError("A NOT group must contain exactly one filter")
    return GroupNode(operator, children)


def parse(string):
    """
    Parses a raw LDAP filter string.

    Text between root-level groups is ignored. Several root-level filters, e.g.
    ``(cn=Steve)(sn=Bauman)``, are allowed.

    :param string: The filter string
    :returns: A single node if the string contains one root filter, otherwise
              the list of root nodes in order
    :raises ParserError: If the filter is malformed
    """
    _log.debug('Parsing LDAP filter {}'.format(string))
    string = string.strip()
    _check_balanced(string)
    groups, _ = _split_groups(string)
    if not groups:
        raise ParserError("No filter found in [{}]".format(string))
    nodes = [_build_node(g) for g in groups]
    return nodes[0] if len(nodes) == 1 else nodes


def assemble(nodes):
    """
    Builds the canonical filter string for a node or a list of nodes.

    Both parser nodes and :py:mod:`~.filters` nodes are accepted.

    :raises TypeError: If anything other than a node is given
    """
    if isinstance(nodes, (ParsedNode, filters.Node)):
        nodes = [nodes]
    parts = []
    for node in nodes:
        if not isinstance(node, (ParsedNode, filters.Node)):
            raise TypeError("Cannot assemble '{}' - not a filter node".format(repr(node)))
        parts.append(str(node))
    return ''.join(parts)
