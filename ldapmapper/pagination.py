"""
This module provides the driver for paged searches, using the simple paged
results control from `RFC 2696 <https://tools.ietf.org/html/rfc2696>`_.
"""

__author__ = "Matt Pryor"
__copyright__ = "Copyright 2015 UK Science and Technology Facilities Council"

import logging

from .transport import Control, PAGED_RESULTS_OID


_log = logging.getLogger(__name__)


class Paginator:
    """
    Runs a query one page at a time until the server stops returning a cookie.

    Args:
        query: The :py:class:`~.query.Builder` to execute. Only its
            ``execute(transport, filter_str, controls)`` method is used.
        filter_str: The compiled filter string.
        per_page: The number of entries to request per page.
        critical: If ``True``, the server must fail the search if it does not
            support paging.
    """
    def __init__(self, query, filter_str, per_page = 1000, critical = False):
        if per_page < 1:
            raise ValueError('per_page must be at least 1')
        self.query = query
        self.filter_str = filter_str
        self.per_page = per_page
        self.critical = critical

    def _control(self, cookie):
        return Control(PAGED_RESULTS_OID, self.critical, {
            'size' : self.per_page,
            'cookie' : cookie,
        })

    @staticmethod
    def _cookie(response):
        control = (response.controls or {}).get(PAGED_RESULTS_OID) or {}
        return (control.get('value') or {}).get('cookie')

    def pages(self, transport):
        """
        Returns a generator of pages, where each page is a list of entries.

        Failures from the transport are not retried here.
        """
        cookie = b''
        page = 0
        while True:
            page += 1
            _log.debug('Fetching page {} (size: {}, filter: {})'.format(
                page, self.per_page, self.filter_str
            ))
            result = self.query.execute(transport, self.filter_str, [self._control(cookie)])
            yield result.entries
            cookie = self._cookie(result.response)
            if not cookie:
                break

    def execute(self, transport):
        """
        Runs every page and returns the list of pages (not a flattened list).
        """
        return list(self.pages(transport))
