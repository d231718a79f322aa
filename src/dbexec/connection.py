"""
Database sessions.

This module provides the primary interfaces for talking to a server:
1. The `connect()` function for opening a session through a transport
2. The `Connection` class that parses statements and runs them

`Connection.run` is the one-call path: parse, bind, execute and dispatch
by statement kind, releasing the statement on every path except when an
open query cursor is handed to the caller.
"""
import dataclasses
import logging
import re
from collections.abc import Callable
from contextlib import ExitStack
from dataclasses import fields
from typing import Any, Self

import cachetools
from dbexec.cursor import Cursor
from dbexec.dispatch import ExecutionResult, Handoff, dispatch
from dbexec.exceptions import StateViolation, UnsupportedType
from dbexec.options import ConnectionOptions, parse_connect_string
from dbexec.transport import Transport, get_transport
from dbexec.types import ObjectBase, ServerVersion, TypeDescriptor

from libb import load_options

logger = logging.getLogger(__name__)

__all__ = [
    'Connection',
    'StatementCache',
    'connect',
    'logon',
]

_BANNER_VERSION = re.compile(r'\d+(?:\.\d+){2,4}')


class StatementCache(cachetools.LRUCache):
    """Closed statement handles kept for reuse, keyed by statement text.

    Handles evicted by the LRU policy are released through ``release``.
    """

    def __init__(self, maxsize: int, release: Callable[[Any], None]) -> None:
        super().__init__(maxsize=maxsize)
        self._release = release

    def popitem(self) -> tuple[str, Any]:
        sql, handle = super().popitem()
        logger.debug(f'Statement cache evicted {sql!r}')
        self._release(handle)
        return sql, handle

    def release_all(self) -> None:
        while self:
            self.popitem()


class Connection:
    """One authenticated session with a database server

    Tracks statement execution counts and timing, keeps per-session caches
    (current user, server version, named type descriptors, statement
    handles) and closes every cursor it created no later than `logoff()`.
    """

    def __init__(self, transport: Transport, session: Any,
                 options: ConnectionOptions, pool: Any = None) -> None:
        """Initialize a connection

        Args:
            transport: Transport that opened the session
            session: Opaque session handle returned by the transport
            options: The ConnectionOptions used to create this connection
            pool: Optional pool the session was drawn from (not owned)
        """
        self.transport = transport
        self.session = session
        self.options = options
        self.pool = pool
        self.prefetch_rows = options.prefetch_rows
        self.autocommit = options.autocommit
        self.calls = 0
        self.time = 0
        self._closed = False
        self._username = None
        self._server_version = None
        self._charset = None
        self._type_descriptors: dict[str, TypeDescriptor] = {}
        self._open_cursors: set[Cursor] = set()
        self._stmt_cache = None
        if options.statement_cache_size:
            self._stmt_cache = StatementCache(options.statement_cache_size, transport.free)

    def __repr__(self) -> str:
        username = self._username or self.options.username or ''
        return f'<Connection:{username}>'

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.logoff()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def statement_cache_size(self) -> int:
        return self.options.statement_cache_size

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics

        Args:
            elapsed: Time in seconds that the statement took to execute
        """
        self.time += elapsed
        self.calls += 1

    def parse(self, sql: str) -> Cursor:
        """Prepare ``sql`` and return a cursor owned by the caller."""
        self._check_open()
        cursor = Cursor(self, sql)
        self._open_cursors.add(cursor)
        if self.prefetch_rows:
            try:
                cursor.prefetch_rows = self.prefetch_rows
            except Exception:
                cursor.close()
                raise
        return cursor

    def cursor_from_handle(self, handle: Any) -> Cursor:
        """Wrap a server-executed statement handle (ref cursor) in a cursor."""
        self._check_open()
        cursor = Cursor(self, handle=handle)
        self._open_cursors.add(cursor)
        return cursor

    def dispatch(self, sql: str, *params: Any,
                 callback: Callable[..., Any] | None = None) -> ExecutionResult:
        """Parse, bind, execute and route the result by statement kind.

        The cursor is closed on every path except a `Handoff`, whose
        cursor the caller must close.
        """
        cursor = self.parse(sql)
        with ExitStack() as stack:
            stack.callback(cursor.close)
            cursor.exec(*params)
            result = dispatch(cursor, callback)
            if isinstance(result, Handoff):
                stack.pop_all()
            return result

    def run(self, sql: str, *params: Any, callback: Callable[..., Any] | None = None) -> Any:
        """Execute ``sql`` and return what its statement kind yields.

        - query without callback: the open cursor
        - query with callback: ``callback(row)`` per row, then the row count
        - PL/SQL block: the bind values in declaration order, also passed
          to ``callback(*values)`` when given
        - anything else: the row count
        """
        return self.dispatch(sql, *params, callback=callback).unwrap()

    exec = run

    def select_one(self, sql: str, *params: Any) -> list[Any] | None:
        """First row of a query, or None when it returns no rows."""
        with self.parse(sql) as cursor:
            cursor.exec(*params)
            return cursor.fetch()

    @property
    def username(self) -> str | None:
        """Current session user, queried once and cached."""
        if self._username is None:
            sql = self.transport.current_user_sql
            if sql is None:
                self._username = self.options.username
            else:
                row = self.select_one(sql)
                self._username = row[0] if row else None
        return self._username

    @property
    def server_version(self) -> ServerVersion | None:
        """Server release, from the transport or parsed from the version banner."""
        if self._server_version is None:
            self._check_open()
            release = self.transport.server_release(self.session)
            if release is not None:
                self._server_version = ServerVersion(release)
            elif self.transport.version_banner_sql:
                with self.parse(self.transport.version_banner_sql) as cursor:
                    cursor.exec()
                    for row in cursor:
                        match = _BANNER_VERSION.search(str(row[0]))
                        if match:
                            self._server_version = ServerVersion(match.group(0))
                            break
        return self._server_version

    @property
    def database_charset_name(self) -> str | None:
        if self._charset is None:
            self._check_open()
            self._charset = self.transport.charset_name(self.session)
        return self._charset

    def get_type_descriptor(self, type_or_name: type | str) -> TypeDescriptor:
        """Descriptor of a named server type, fetched once per connection.

        Args:
            type_or_name: An `ObjectBase` subclass or the server's type name
        """
        self._check_open()
        host_class = None
        if isinstance(type_or_name, type):
            if not issubclass(type_or_name, ObjectBase) or not type_or_name.type_name:
                raise UnsupportedType(f'{type_or_name!r} has no type_name')
            host_class, name = type_or_name, type_or_name.type_name
        else:
            name = type_or_name
        if not name:
            raise UnsupportedType('named type bind needs a type name')

        key = name.upper()
        descriptor = self._type_descriptors.get(key)
        if descriptor is None:
            descriptor = self.transport.lookup_named_type(self.session, name)
            logger.debug(f'Described named type {name}: {descriptor.attribute_names}')
        if host_class is not None and descriptor.host_class is None:
            descriptor = dataclasses.replace(descriptor, host_class=host_class)
        self._type_descriptors[key] = descriptor
        return descriptor

    def commit(self) -> None:
        self._check_open()
        self.transport.commit(self.session)

    def rollback(self) -> None:
        self._check_open()
        self.transport.rollback(self.session)

    def logoff(self) -> None:
        """Close every open cursor and end the session.

        Uncommitted work is rolled back. Safe to call more than once.
        """
        if self._closed:
            return
        try:
            for cursor in list(self._open_cursors):
                cursor.close()
            if self._stmt_cache is not None:
                self._stmt_cache.release_all()
        finally:
            self._closed = True
            self.transport.close(self.session)
            logger.debug(f'Connection closed: {self.calls} statements in {self.time:.2f}s (avg: {self.time/max(1,self.calls):.3f}s per statement)')

    close = logoff

    def _prepare_handle(self, sql: str) -> Any:
        if self._stmt_cache is not None:
            handle = self._stmt_cache.pop(sql, None)
            if handle is not None:
                logger.debug(f'Statement cache hit: {sql!r}')
                return handle
        return self.transport.prepare(self.session, sql)

    def _release_handle(self, handle: Any, sql: str | None) -> None:
        if self._stmt_cache is None or sql is None or self._closed:
            self.transport.free(handle)
            return
        self.transport.reset(handle)
        previous = self._stmt_cache.pop(sql, None)
        if previous is not None:
            self.transport.free(previous)
        self._stmt_cache[sql] = handle

    def _check_open(self) -> None:
        if self._closed:
            raise StateViolation('connection is closed')


@load_options(cls=ConnectionOptions)
def connect(options: ConnectionOptions | dict[str, Any] | str,
            config: Any | None = None, **kw: Any) -> Connection:
    """Open a session through the transport registered for the driver name

    Args:
        options: Can be:
                - ConnectionOptions object
                - String path to configuration
                - Dictionary of options
                - Options specified as keyword arguments
        config: Configuration object (for loading from config files)
        **kw: Additional keyword arguments to override options

    Returns
        Connection object for the new session
    """
    if isinstance(options, ConnectionOptions):
        for field in fields(options):
            kw.pop(field.name, None)
    else:
        options_func = load_options(cls=ConnectionOptions)(lambda o, c: o)
        options = options_func(options, config, **kw)

    transport = get_transport(options.drivername)
    session = transport.open(options)
    logger.debug(f'Connected via {options.drivername} to {options.database or options.dbname}')
    return Connection(transport, session, options)


def logon(connstr: str, **kw: Any) -> Connection:
    """Connect with a ``username/password@dbname [as privilege]`` string.
    """
    username, password, dbname, privilege = parse_connect_string(connstr)
    return connect(username=username, password=password, dbname=dbname,
                   privilege=privilege, **kw)
