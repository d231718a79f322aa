"""
SQLite transport.

Sessions are SQLAlchemy connections (NullPool unless pooling is requested);
statements run on the sqlite3 DBAPI connection underneath. It handles
SQLite's particulars:

- ``:name``, ``:1`` and ``?`` placeholders, rewritten to ``?``
- manifest typing: column types come from the values of every row, so
  describing a query reads its whole result
- array execution through ``executemany``
- no PL/SQL blocks and no named types
"""
import atexit
import collections
import datetime
import logging
import sqlite3
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import dateutil.parser
import sqlalchemy as sa
from dbexec.exceptions import CollaboratorFailure, StateViolation
from dbexec.sql import Placeholder, find_placeholders, rewrite_placeholders
from dbexec.transport.base import Transport, register_transport
from dbexec.types import ColumnMetadata
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

if TYPE_CHECKING:
    from dbexec.adapters.handlers import Buffer
    from dbexec.options import ConnectionOptions

logger = logging.getLogger(__name__)

DEFAULT_PREFETCH_ROWS = 100

_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()


def convert_date(val: bytes) -> datetime.date:
    """Convert ISO 8601 date string to date object."""
    return dateutil.parser.isoparse(val.decode()).date()


def convert_datetime(val: bytes) -> datetime.datetime:
    """Convert ISO 8601 datetime string to datetime object."""
    return dateutil.parser.isoparse(val.decode())


def get_engine_for_options(options: 'ConnectionOptions',
                           engine_factory: Callable[..., Engine] = sa.create_engine) -> Engine:
    """Get or create a SQLAlchemy engine for the given options.
    """
    key = f'{options.database}_{options.use_pool}'

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {options.database}')
            return _engine_registry[key]

        url = sa.URL.create(drivername='sqlite', database=options.database)
        engine_kwargs: dict[str, Any] = {
            'echo': False,
            'connect_args': {
                'detect_types': sqlite3.PARSE_DECLTYPES,
                'timeout': options.timeout or 5,
            },
        }
        if not options.use_pool:
            engine_kwargs['poolclass'] = NullPool

        engine = engine_factory(url, **engine_kwargs)
        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {options.database}')
        return engine


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for engine in _engine_registry.values():
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All SQLite engines disposed')


atexit.register(dispose_all_engines)


@dataclass
class SQLiteSession:
    sa_connection: sa.engine.Connection
    dbapi_connection: Any


@dataclass
class SQLiteStatement:
    session: SQLiteSession
    sql: str
    placeholders: list[Placeholder]
    rewritten_sql: str
    binds: dict[int | str, 'Buffer'] = field(default_factory=dict)
    cursor: Any = None
    lookahead: collections.deque = field(default_factory=collections.deque)
    description: list[tuple] | None = None
    columns: list[ColumnMetadata] | None = None
    rowcount: int = 0
    fetched: int = 0
    prefetch_rows: int = DEFAULT_PREFETCH_ROWS
    freed: bool = False

    @property
    def names(self) -> list[str]:
        names: list[str] = []
        for ph in self.placeholders:
            if ph.name is not None and ph.name not in names:
                names.append(ph.name)
        return names


def _storage_type(values: list[Any]) -> str:
    """Column type from the classes of its non-NULL values."""
    classes = {type(v) for v in values if v is not None}
    if not classes:
        return 'TEXT'
    if classes <= {int, bool}:
        return 'INTEGER'
    if classes <= {int, bool, float}:
        return 'REAL'
    if classes == {datetime.datetime}:
        return 'DATETIME'
    if classes == {datetime.date}:
        return 'DATE'
    if classes <= {datetime.date, datetime.datetime}:
        return 'DATETIME'
    if classes <= {bytes, memoryview}:
        return 'BLOB'
    return 'TEXT'


@register_transport('sqlite')
class SQLiteTransport(Transport):
    """SQLite call-level interface.
    """

    current_user_sql = None
    version_banner_sql = "SELECT 'SQLite ' || sqlite_version()"

    @classmethod
    def validate_options(cls, options: 'ConnectionOptions') -> None:
        if not options.database:
            raise ValueError('database is required for sqlite (use ":memory:" for in-memory)')
        if options.privilege:
            raise ValueError('sqlite does not support privileged logon')

    def open(self, options: 'ConnectionOptions') -> SQLiteSession:
        engine = get_engine_for_options(options)
        sa_connection = engine.connect()
        sqlite3.register_converter('date', convert_date)
        sqlite3.register_converter('datetime', convert_datetime)
        logger.debug(f'Opened SQLite session on {options.database}')
        return SQLiteSession(sa_connection, sa_connection.connection)

    def close(self, session: SQLiteSession) -> None:
        try:
            session.dbapi_connection.rollback()
        finally:
            session.sa_connection.close()

    def prepare(self, session: SQLiteSession, sql: str) -> SQLiteStatement:
        placeholders = find_placeholders(sql)
        return SQLiteStatement(session, sql, placeholders,
                               rewrite_placeholders(sql, placeholders))

    def bind(self, handle: SQLiteStatement, key: int | str, buffer: 'Buffer') -> None:
        self._check(handle)
        if isinstance(key, str):
            if key not in handle.names:
                raise CollaboratorFailure(f'illegal variable name/number: :{key}')
        elif key > self._position_count(handle):
            raise CollaboratorFailure(f'illegal variable name/number: {key}')
        handle.binds[key] = buffer

    def _position_count(self, handle: SQLiteStatement) -> int:
        names = handle.names
        qmarks = sum(1 for ph in handle.placeholders if ph.name is None)
        return len(names) + qmarks

    def _buffer_for(self, handle: SQLiteStatement, ph: Placeholder, qmark_index: int) -> 'Buffer':
        if ph.name is not None:
            buffer = handle.binds.get(ph.name)
            if buffer is None:
                buffer = handle.binds.get(handle.names.index(ph.name) + 1)
        else:
            buffer = handle.binds.get(len(handle.names) + qmark_index)
        if buffer is None:
            label = f':{ph.name}' if ph.name is not None else f'?{ph.position}'
            raise CollaboratorFailure(f'not all variables bound: {label}')
        return buffer

    def _parameters(self, handle: SQLiteStatement, row: int | None) -> tuple:
        params = []
        qmark_index = 0
        for ph in handle.placeholders:
            if ph.name is None:
                qmark_index += 1
            buffer = self._buffer_for(handle, ph, qmark_index)
            params.append(buffer.value if row is None else buffer.values[row])
        return tuple(params)

    def execute(self, handle: SQLiteStatement, iters: int | None = None) -> None:
        self._check(handle)
        self._close_cursor(handle)
        cursor = handle.session.dbapi_connection.cursor()
        try:
            if iters is None:
                cursor.execute(handle.rewritten_sql, self._parameters(handle, None))
            else:
                seq = [self._parameters(handle, i) for i in range(iters)]
                cursor.executemany(handle.rewritten_sql, seq)
        except Exception:
            cursor.close()
            raise

        handle.rowcount = max(cursor.rowcount, 0)
        handle.fetched = 0
        handle.description = cursor.description
        if handle.description is None:
            cursor.close()
            return

        handle.cursor = cursor
        handle.lookahead.extend(cursor.fetchmany(handle.prefetch_rows))
        handle.columns = None

    def row_count(self, handle: SQLiteStatement) -> int:
        if handle.description is not None:
            return handle.fetched
        return handle.rowcount

    def column_count(self, handle: SQLiteStatement) -> int:
        return len(handle.description or ())

    def describe_column(self, handle: SQLiteStatement, index: int) -> ColumnMetadata:
        if handle.columns is None:
            self._drain(handle)
            rows = list(handle.lookahead)
            handle.columns = [
                ColumnMetadata(name=desc[0],
                               data_type=_storage_type([row[i] for row in rows]),
                               nullable=True)
                for i, desc in enumerate(handle.description or ())
            ]
        return handle.columns[index - 1]

    def fetch_next(self, handle: SQLiteStatement) -> tuple | None:
        self._check(handle)
        if handle.cursor is None and not handle.lookahead:
            return None
        if not handle.lookahead:
            handle.lookahead.extend(handle.cursor.fetchmany(handle.prefetch_rows))
        if not handle.lookahead:
            self._close_cursor(handle)
            return None
        handle.fetched += 1
        return tuple(handle.lookahead.popleft())

    def set_prefetch(self, handle: SQLiteStatement, rows: int) -> None:
        handle.prefetch_rows = max(rows, 1)

    def reset(self, handle: SQLiteStatement) -> None:
        self._close_cursor(handle)
        handle.binds.clear()
        handle.description = None
        handle.columns = None
        handle.rowcount = 0
        handle.fetched = 0

    def free(self, handle: SQLiteStatement) -> None:
        if handle.freed:
            return
        self.reset(handle)
        handle.freed = True

    def commit(self, session: SQLiteSession) -> None:
        session.dbapi_connection.commit()

    def rollback(self, session: SQLiteSession) -> None:
        session.dbapi_connection.rollback()

    def charset_name(self, session: SQLiteSession) -> str | None:
        cursor = session.dbapi_connection.cursor()
        try:
            cursor.execute('PRAGMA encoding')
            row = cursor.fetchone()
        finally:
            cursor.close()
        return row[0] if row else None

    def _drain(self, handle: SQLiteStatement) -> None:
        """Read the rest of the result so column types cover every row."""
        if handle.cursor is not None:
            handle.lookahead.extend(handle.cursor.fetchall())
            handle.cursor.close()
            handle.cursor = None

    def _close_cursor(self, handle: SQLiteStatement) -> None:
        handle.lookahead.clear()
        if handle.cursor is not None:
            handle.cursor.close()
            handle.cursor = None

    def _check(self, handle: SQLiteStatement) -> None:
        if handle.freed:
            raise StateViolation('statement handle has been freed')
