"""
This module provides facilities for making LDAP queries.

:py:class:`QueryFilters` accumulates filter fragments and compiles them into a
single filter string. :py:class:`Builder` is the fluent query API built on top
of it, which executes queries using a :py:class:`~.connection.Connection`::

    users = (
        connection.query()
            .in_('ou=users,dc=example,dc=com')
            .where('objectClass', 'person')
            .where_starts_with('cn', 'Jo')
            .get()
    )
"""

__author__ = "Matt Pryor"
__copyright__ = "Copyright 2015 UK Science and Technology Facilities Council"

import logging, time, copy
from collections.abc import Iterable, Mapping

import ldap3.utils.conv

from . import events
from .filters import Factory, Node, Raw, AndGroup, OrGroup, Not
from .pagination import Paginator


_log = logging.getLogger(__name__)


def escape(value):
    """
    Escapes a value for use in an LDAP filter.

    The reserved characters (``\\``, ``*``, ``(``, ``)`` and NUL) are hex-encoded.
    Bytes are hex-encoded in their entirety.
    """
    if isinstance(value, bytes):
        return ldap3.utils.conv.escape_bytes(value)
    return ldap3.utils.conv.escape_filter_chars(str(value))


class QueryFilters:
    """
    Accumulates filter fragments in three buckets, ``and``, ``or`` and ``raw``,
    and combines them into a single filter.
    """
    #: The names of the buckets, in the order they are combined
    BUCKETS = ('raw', 'and', 'or')

    def __init__(self):
        self.clear()

    def add(self, node, bucket = 'and'):
        """
        Adds a filter to the given bucket.

        :raises ValueError: If the bucket does not exist
        """
        if bucket not in self._buckets:
            raise ValueError("Invalid filter bucket [{}]".format(bucket))
        self._buckets[bucket].append(node)
        return self

    def get(self, bucket = None):
        """
        Returns the filters in the given bucket, or a dictionary of all the
        buckets if no bucket is given.
        """
        if bucket is None:
            return { k : list(v) for k, v in self._buckets.items() }
        return list(self._buckets[bucket])

    def clear(self, bucket = None):
        """
        Removes the filters from the given bucket, or from every bucket.
        """
        if bucket is None:
            self._buckets = { b : [] for b in self.BUCKETS }
        else:
            self._buckets[bucket] = []
        return self

    def is_empty(self):
        return not any(self._buckets.values())

    def to_node(self):
        """
        Combines the fragments into a single node, or ``None`` if there are none.

        Raw fragments come first, followed by the ``and`` fragments. The ``or``
        fragments are combined using OR and the result is added to the end.
        """
        nodes = self._buckets['raw'] + self._buckets['and']
        ors = self._buckets['or']
        if len(ors) > 1:
            nodes.append(OrGroup(*ors))
        elif ors:
            nodes.append(ors[0])
        if len(nodes) > 1:
            return AndGroup(*nodes)
        return nodes[0] if nodes else None

    def compile(self):
        """
        Returns the filter string for the accumulated fragments. If there are no
        fragments, the empty string is returned.
        """
        node = self.to_node()
        return '' if node is None else str(node)

    def __str__(self):
        return self.compile()


# Marks an argument that was not given
_UNSET = object()


class Builder:
    """
    Fluent builder for LDAP queries.

    Filter methods return the builder so that calls can be chained. Values given
    to the ``where`` methods are escaped unless a ``raw`` variant is used.

    Args:
        connection: The :py:class:`~.connection.Connection` to execute queries with.
        base_dn: The DN to search under.
        nested: ``True`` for builders that only collect filters for another builder.
    """
    #: The filter used when no filters have been given
    DEFAULT_FILTER = '(objectclass=*)'

    def __init__(self, connection, base_dn = None, nested = False):
        self._connection = connection
        self._base_dn = base_dn or ''
        self._nested = nested
        self._filters = QueryFilters()
        self._selects = None
        self._limit = 0
        self._type = 'search'

    @property
    def connection(self):
        return self._connection

    @property
    def filters(self):
        """
        The :py:class:`QueryFilters` for the builder.
        """
        return self._filters

    @property
    def base_dn(self):
        return self._base_dn

    @property
    def type(self):
        return self._type

    def is_nested(self):
        return self._nested

    def new_instance(self, base_dn = None):
        """
        Returns a new builder for the same connection.
        """
        return Builder(self._connection, self._base_dn if base_dn is None else base_dn)

    def new_nested_instance(self, callback = None):
        """
        Returns a new nested builder, passing it to the callback if one is given.
        """
        query = Builder(self._connection, self._base_dn, nested = True)
        if callback is not None:
            callback(query)
        return query

    def clone(self):
        """
        Returns a copy of the builder that can be modified independently.
        """
        query = copy.copy(self)
        query._filters = QueryFilters()
        for bucket, nodes in self._filters.get().items():
            for node in nodes:
                query._filters.add(node, bucket)
        query._selects = None if self._selects is None else list(self._selects)
        return query

    ############################################################################
    ## Query options
    ############################################################################

    def select(self, *attributes):
        """
        Selects the attributes to return. Attributes can be given individually or
        as a single list. Selecting nothing returns all attributes.
        """
        if len(attributes) == 1 and not isinstance(attributes[0], str):
            attributes = attributes[0]
        attributes = list(attributes)
        if attributes:
            self._selects = attributes
        return self

    def get_selects(self):
        """
        Returns the attributes to select. Unless all attributes are selected,
        ``objectclass`` is always included.
        """
        selects = list(self._selects or ['*'])
        if '*' in selects or 'objectclass' in (s.lower() for s in selects):
            return selects
        return selects + ['objectclass']

    def in_(self, base_dn):
        """
        Sets the DN to search under.
        """
        self._base_dn = base_dn or ''
        return self

    def limit(self, limit):
        """
        Sets the maximum number of entries to return (0 means no limit).
        """
        self._limit = int(limit)
        return self

    def search(self):
        """
        Searches the entire subtree under the base DN.
        """
        self._type = 'search'
        return self

    def list(self):
        """
        Searches only the immediate children of the base DN.
        """
        self._type = 'list'
        return self

    def read(self):
        """
        Reads only the entry at the base DN.
        """
        self._type = 'read'
        return self

    ############################################################################
    ## Filters
    ############################################################################

    def add_filter(self, node, bucket = 'and'):
        """
        Adds a :py:class:`~.filters.Node` to the query.
        """
        self._filters.add(node, bucket)
        return self

    def clear_filters(self):
        self._filters.clear()
        return self

    def where(self, attribute, operator = _UNSET, value = _UNSET, boolean = 'and', raw = False):
        """
        Adds a filter to the query.

        ``where('cn', 'John')`` is short for ``where('cn', '=', 'John')``. The
        presence operators ``*`` and ``!*`` do not need a value.

        ``attribute`` can also be a dictionary of attribute => value equality
        filters, a list of argument tuples or a callable that receives a nested
        builder (see :py:meth:`and_filter`).

        :raises UnsupportedOperatorError: If the operator is not supported
        """
        if callable(attribute):
            if boolean == 'or':
                return self.or_filter(attribute)
            return self.and_filter(attribute)
        if isinstance(attribute, Mapping):
            for name, val in attribute.items():
                self.where(name, '=', val, boolean, raw)
            return self
        if isinstance(attribute, Iterable) and not isinstance(attribute, str):
            for args in attribute:
                self.where(*args, boolean = boolean, raw = raw)
            return self
        if value is _UNSET:
            if operator is _UNSET:
                raise TypeError('where() requires an operator or a value')
            if Factory.requires_value(operator):
                operator, value = '=', operator
            else:
                value = None
        if value is not None and not raw:
            value = escape(value)
        node = Factory.make(operator, escape(attribute), value)
        self._filters.add(node, 'or' if boolean == 'or' else 'and')
        return self

    def or_where(self, attribute, operator = _UNSET, value = _UNSET, raw = False):
        """
        Adds a filter that is combined with the other ``or_where`` filters using OR.
        """
        return self.where(attribute, operator, value, 'or', raw)

    def where_raw(self, attribute, operator = _UNSET, value = _UNSET):
        """
        Adds a filter with a value that is not escaped.
        """
        return self.where(attribute, operator, value, 'and', True)

    def or_where_raw(self, attribute, operator = _UNSET, value = _UNSET):
        """
        Adds an OR filter with a value that is not escaped.
        """
        return self.where(attribute, operator, value, 'or', True)

    def raw_filter(self, *filters):
        """
        Adds filter strings (or nodes) that are used verbatim.
        """
        if len(filters) == 1 and isinstance(filters[0], (list, tuple)):
            filters = filters[0]
        for f in filters:
            self._filters.add(f if isinstance(f, Node) else Raw(f), 'raw')
        return self

    def where_equals(self, attribute, value):
        return self.where(attribute, '=', value)

    def where_not_equals(self, attribute, value):
        return self.where(attribute, '!', value)

    def where_approximately_equals(self, attribute, value):
        return self.where(attribute, '~=', value)

    def where_has(self, attribute):
        return self.where(attribute, '*')

    def where_not_has(self, attribute):
        return self.where(attribute, '!*')

    def where_contains(self, attribute, value):
        return self.where(attribute, 'contains', value)

    def where_not_contains(self, attribute, value):
        return self.where(attribute, 'not_contains', value)

    def where_starts_with(self, attribute, value):
        return self.where(attribute, 'starts_with', value)

    def where_not_starts_with(self, attribute, value):
        return self.where(attribute, 'not_starts_with', value)

    def where_ends_with(self, attribute, value):
        return self.where(attribute, 'ends_with', value)

    def where_not_ends_with(self, attribute, value):
        return self.where(attribute, 'not_ends_with', value)

    def or_where_equals(self, attribute, value):
        return self.or_where(attribute, '=', value)

    def or_where_not_equals(self, attribute, value):
        return self.or_where(attribute, '!', value)

    def or_where_approximately_equals(self, attribute, value):
        return self.or_where(attribute, '~=', value)

    def or_where_has(self, attribute):
        return self.or_where(attribute, '*')

    def or_where_not_has(self, attribute):
        return self.or_where(attribute, '!*')

    def or_where_contains(self, attribute, value):
        return self.or_where(attribute, 'contains', value)

    def or_where_not_contains(self, attribute, value):
        return self.or_where(attribute, 'not_contains', value)

    def or_where_starts_with(self, attribute, value):
        return self.or_where(attribute, 'starts_with', value)

    def or_where_not_starts_with(self, attribute, value):
        return self.or_where(attribute, 'not_starts_with', value)

    def or_where_ends_with(self, attribute, value):
        return self.or_where(attribute, 'ends_with', value)

    def or_where_not_ends_with(self, attribute, value):
        return self.or_where(attribute, 'not_ends_with', value)

    def where_in(self, attribute, values):
        """
        Matches entries where the attribute equals any of the given values.

        An empty list of values matches nothing.
        """
        values = list(values)
        if not values:
            # An empty OR is always false
            return self.add_filter(OrGroup())
        def equals_any(query):
            for value in values:
                query.or_where_equals(attribute, value)
        return self.add_filter(self.new_nested_instance(equals_any).filters.to_node())

    def where_between(self, attribute, values):
        """
        Matches entries where the attribute is between the two given values (inclusive).
        """
        low, high = values
        return self.where([
            (attribute, '>=', low),
            (attribute, '<=', high),
        ])

    def and_filter(self, callback):
        """
        Adds the filters from a nested builder, combined using AND.

        The callback receives the nested builder.
        """
        node = self.new_nested_instance(callback).filters.to_node()
        if node is not None:
            children = node.children if isinstance(node, AndGroup) else (node, )
            self.add_filter(AndGroup(*children))
        return self

    def or_filter(self, callback):
        """
        Adds the filters from a nested builder, combined using OR.

        The callback receives the nested builder.
        """
        filters = self.new_nested_instance(callback).filters.get()
        nodes = filters['raw'] + filters['and'] + filters['or']
        if nodes:
            self.add_filter(OrGroup(*nodes))
        return self

    def not_filter(self, callback):
        """
        Adds the negation of the filters from a nested builder.

        The callback receives the nested builder.
        """
        node = self.new_nested_instance(callback).filters.to_node()
        if node is not None:
            self.add_filter(Not(node))
        return self

    def get_query(self):
        """
        Returns the compiled filter string for the query.

        If no filters have been given, a filter matching every entry is used.
        """
        return self._filters.compile() or self.DEFAULT_FILTER

    def __str__(self):
        return self.get_query()

    ############################################################################
    ## Execution
    ############################################################################

    def execute(self, transport, filter_str, controls = None):
        """
        Runs the query against the given transport, returning the
        :py:class:`~.transport.SearchResult`.
        """
        search = getattr(transport, self._type)
        return search(
            self._base_dn,
            filter_str,
            attributes = self.get_selects(),
            size_limit = self._limit,
            controls = controls
        )

    def _log_query(self, query_type, filter_str, started):
        elapsed = round((time.monotonic() - started) * 1000, 2)
        _log.debug('LDAP {} on {} completed in {}ms (base_dn: {}, filter: {})'.format(
            query_type, self._connection.host, elapsed, self._base_dn, filter_str
        ))
        self._connection.dispatcher.dispatch(
            events.QueryExecuted(self._connection, query_type, self._base_dn, filter_str, elapsed)
        )

    def get(self, *attributes):
        """
        Executes the query and returns the list of attribute dictionaries.

        Each dictionary maps attribute names to a **list of values**, plus a
        ``dn`` key.
        """
        query = self.clone().select(*attributes) if attributes else self
        filter_str = query.get_query()
        started = time.monotonic()
        result = self._connection.run(
            lambda transport: query.execute(transport, filter_str)
        )
        self._log_query(self._type, filter_str, started)
        return result.entries

    def first(self, *attributes):
        """
        Returns the first matching entry, or ``None`` if there is no such entry.
        """
        entries = self.clone().limit(1).get(*attributes)
        return entries[0] if entries else None

    def find(self, dn, *attributes):
        """
        Returns the entry with the given DN, or ``None`` if there is no such entry.
        """
        return (
            self.new_instance(dn)
                .read()
                .where_has('objectclass')
                .first(*attributes)
        )

    def find_by(self, attribute, value, *attributes):
        """
        Returns the first entry where the attribute equals the value, or ``None``.
        """
        return self.clone().where_equals(attribute, value).first(*attributes)

    def paginate(self, per_page = 1000, critical = False):
        """
        Executes the query using the paged results control and returns the
        entries from every page as a single list.
        """
        filter_str = self.get_query()
        started = time.monotonic()
        pages = self._connection.run(
            lambda transport: Paginator(self, filter_str, per_page, critical).execute(transport)
        )
        self._log_query('paginate', filter_str, started)
        return [entry for page in pages for entry in page]

    def chunk(self, per_page, callback, critical = False):
        """
        Executes the query using the paged results control, calling the
        callback with the entries of each page and the page number as they
        arrive. Returning ``False`` from the callback stops the iteration.

        Returns ``False`` if the iteration was stopped, ``True`` otherwise.
        """
        query = self.clone().limit(0)
        filter_str = query.get_query()
        started = time.monotonic()
        def operation(transport):
            pages = Paginator(query, filter_str, per_page, critical).pages(transport)
            for number, page in enumerate(pages, start = 1):
                if callback(page, number) is False:
                    return False
            return True
        result = self._connection.run(operation)
        self._log_query('chunk', filter_str, started)
        return result

    ############################################################################
    ## Modifications
    ############################################################################

    def insert(self, dn, attributes):
        """
        Creates an entry with the given attributes.

        :raises ValueError: If no DN or no ``objectclass`` attribute is given
        """
        if not dn:
            raise ValueError('A new LDAP entry must have a distinguished name (dn)')
        if 'objectclass' not in (k.lower() for k in attributes):
            raise ValueError('A new LDAP entry must have at least one objectclass')
        return self._connection.run(lambda transport: transport.add(dn, attributes))

    def update(self, dn, modifications):
        """
        Applies a batch of modifications, in the form accepted by
        :py:meth:`~.transport.Transport.modify`.
        """
        return self._connection.run(lambda transport: transport.modify(dn, modifications))

    def add(self, dn, attributes):
        """
        Adds values to the attributes of an entry.
        """
        return self._connection.run(lambda transport: transport.mod_add(dn, attributes))

    def replace(self, dn, attributes):
        """
        Replaces the values of the attributes of an entry.
        """
        return self._connection.run(lambda transport: transport.mod_replace(dn, attributes))

    def remove(self, dn, attributes):
        """
        Removes values from the attributes of an entry.
        """
        return self._connection.run(lambda transport: transport.mod_delete(dn, attributes))

    def delete(self, dn):
        return self._connection.run(lambda transport: transport.delete(dn))

    def rename(self, dn, new_rdn, new_parent_dn = None, delete_old_rdn = True):
        """
        Renames and/or moves an entry. Returns the new DN.
        """
        self._connection.run(
            lambda transport: transport.rename(dn, new_rdn, new_parent_dn, delete_old_rdn)
        )
        if new_parent_dn is None:
            new_parent_dn = dn.split(',', 1)[1] if ',' in dn else ''
        return ','.join(p for p in (new_rdn, new_parent_dn) if p)
