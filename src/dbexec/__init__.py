"""
Type-directed bind/execute/fetch engine for relational databases.

Statements can be run either as:
- Module functions: dbexec.run(cn, sql, *args)
- Connection methods: cn.run(sql, *args)

The module functions are facades over the connection methods.
"""
__version__ = '0.1.0'

from collections.abc import Callable
from typing import Any

from dbexec.adapters import BindHandler, BindTypeRegistry, Buffer
from dbexec.adapters import get_bind_registry
from dbexec.connection import Connection, connect, logon
from dbexec.cursor import Cursor, CursorState
from dbexec.dispatch import Consumed, ExecutionResult, Handoff
from dbexec.exceptions import ArityMismatch, CollaboratorError
from dbexec.exceptions import CollaboratorFailure, ConnectionFailure
from dbexec.exceptions import DatabaseError, DbConnectionError
from dbexec.exceptions import EmptyArrayBind, EncodingOverflow
from dbexec.exceptions import MissingArraySize, ProgrammingError
from dbexec.exceptions import StateViolation, UnknownType, UnsupportedType
from dbexec.exceptions import ValidationError, error_kind
from dbexec.options import ConnectionOptions, parse_connect_string
from dbexec.pool import ConnectionPool
from dbexec.rows import RowIterator
from dbexec.sql import StatementKind, StatementType
from dbexec.transport import Transport, register_transport
from dbexec.types import BindType, ColumnMetadata, ObjectBase, ServerVersion
from dbexec.types import TypeDescriptor

bind_registry = get_bind_registry()


def run(cn: Connection, sql: str, *args: Any,
        callback: Callable[..., Any] | None = None) -> Any:
    """Execute a statement and return what its kind yields.
    """
    return cn.run(sql, *args, callback=callback)


def select_one(cn: Connection, sql: str, *args: Any) -> list[Any] | None:
    """Execute a query and return its first row, or None.
    """
    return cn.select_one(sql, *args)


def parse(cn: Connection, sql: str) -> Cursor:
    """Prepare a statement and return its cursor.
    """
    return cn.parse(sql)


__all__ = [
    'Connection',
    'connect',
    'logon',
    'Cursor',
    'CursorState',
    'RowIterator',
    'Consumed',
    'Handoff',
    'ExecutionResult',
    'ConnectionOptions',
    'ConnectionPool',
    'parse_connect_string',
    'BindHandler',
    'BindType',
    'BindTypeRegistry',
    'Buffer',
    'bind_registry',
    'ColumnMetadata',
    'ObjectBase',
    'ServerVersion',
    'TypeDescriptor',
    'StatementKind',
    'StatementType',
    'Transport',
    'register_transport',
    'run',
    'select_one',
    'parse',
    'DatabaseError',
    'UnsupportedType',
    'ArityMismatch',
    'MissingArraySize',
    'EmptyArrayBind',
    'EncodingOverflow',
    'StateViolation',
    'ValidationError',
    'CollaboratorFailure',
    'UnknownType',
    'ConnectionFailure',
    'DbConnectionError',
    'ProgrammingError',
    'CollaboratorError',
    'error_kind',
]
