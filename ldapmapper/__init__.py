"""
This is the main module for the ldapmapper library.
"""

__author__ = "Matt Pryor"
__copyright__ = "Copyright 2015 UK Science and Technology Facilities Council"

__version__ = "0.3"

from .exceptions import *
from .filters import *
from .parser import parse, assemble, ConditionNode, GroupNode
from .query import QueryFilters, Builder, escape
from .pagination import Paginator
from .transport import Transport, Ldap3Transport, Control, Response, SearchResult
from .classifier import ErrorClassifier
from .configuration import DomainConfiguration
from .auth import Guard, AuthResult
from .connection import Connection
from .registry import ConnectionRegistry
