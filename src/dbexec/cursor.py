"""
Statement cursor: one prepared statement, its binds and its result shape.

States::

    PREPARED -> BOUND -> EXECUTED -> DEFINED (queries) -> CLOSED

A cursor is driven by one flow of control at a time; concurrent use of the
same cursor is not supported. `close()` is idempotent and releases the
statement handle exactly once.
"""
import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import TYPE_CHECKING, Any, Self

from dbexec.adapters.handlers import BindHandler, Buffer
from dbexec.adapters.registry import BindTypeRegistry
from dbexec.exceptions import ArityMismatch, EmptyArrayBind, MissingArraySize
from dbexec.exceptions import StateViolation, UnsupportedType, ValidationError
from dbexec.rows import RowIterator, load_frame
from dbexec.sql import StatementKind, StatementType, classify_statement
from dbexec.sql import normalize_bind_key
from dbexec.types import BindType, ColumnMetadata, ObjectBase, TypeConverter

from libb import attrdict

if TYPE_CHECKING:
    import pandas as pd
    from dbexec.connection import Connection

logger = logging.getLogger(__name__)


def dumpsql(func):
    """Decorator for logging statement execution and bind values."""
    @wraps(func)
    def wrapper(self: 'Cursor', *args: Any, **kwargs: Any):
        start = time.time()
        logger.debug(f'SQL:\n{self.statement}\nargs: {args}')
        try:
            result = func(self, *args, **kwargs)
            logger.debug(f'Execute result: {result!r}')
            return result
        except Exception:
            logger.error(f'Error with statement:\nSQL:\n{self.statement}\nargs: {args}')
            raise
        finally:
            elapsed = time.time() - start
            self.connection.addcall(elapsed)
            logger.debug(f'Execute time: {elapsed:.4f}s')
    return wrapper


class CursorState(Enum):
    UNPREPARED = 'unprepared'
    PREPARED = 'prepared'
    BOUND = 'bound'
    EXECUTED = 'executed'
    DEFINED = 'defined'
    CLOSED = 'closed'


@dataclass
class BoundParameter:
    """A bind variable or defined column: key, handler and buffer."""
    key: int | str
    handler: BindHandler
    buffer: Buffer

    @property
    def is_array(self) -> bool:
        return self.buffer.is_array

    def get(self, size: int | None = None) -> Any:
        if self.is_array:
            return self.handler.decode_array(self.buffer, size)
        return self.handler.decode(self.buffer)

    def set(self, value: Any) -> None:
        if self.is_array:
            self.handler.encode_array(list(TypeConverter.convert_params(value)), self.buffer)
        else:
            self.handler.encode(TypeConverter.convert_value(value), self.buffer)


class Cursor:
    """Prepared statement with its bind variables and result set.

    Create cursors with `Connection.parse`; `Connection.run` creates and
    closes one internally.
    """

    def __init__(self, connection: 'Connection', sql: str | None = None,
                 handle: Any = None) -> None:
        self.connection = connection
        self._sql = sql
        self._state = CursorState.UNPREPARED
        self._handle = None
        self._type: StatementType | None = None
        self._binds: dict[int | str, BoundParameter] = {}
        self._defines: dict[int, BoundParameter] = {}
        self._columns: list[BoundParameter] = []
        self._column_metadata: list[ColumnMetadata] | None = None
        self._names: list[str] | None = None
        self._max_array_size: int | None = None
        self._actual_array_size: int | None = None
        self._prefetch_rows: int | None = None
        self._exhausted = False

        if handle is not None:
            self._adopt(handle)
        else:
            self._prepare(sql)

    def _prepare(self, sql: str) -> None:
        if not sql or not sql.strip():
            raise ValidationError('empty statement text')
        self._handle = self.connection._prepare_handle(sql)
        self._type = classify_statement(sql)
        self._state = CursorState.PREPARED
        logger.debug(f'Prepared {self._type.value}: {sql!r}')

    def _adopt(self, handle: Any) -> None:
        """Wrap a statement handle the server already executed (nested cursor)."""
        self._handle = handle
        self._type = StatementType.CURSOR
        self._state = CursorState.EXECUTED
        try:
            self._define_columns()
        except Exception:
            self.close()
            raise

    def __repr__(self) -> str:
        return f'<Cursor {self._state.value} {self._sql!r}>'

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def __iter__(self) -> RowIterator:
        return RowIterator(self)

    @property
    def handle(self) -> Any:
        self._check_open()
        return self._handle

    @property
    def transport(self) -> Any:
        return self.connection.transport

    @property
    def state(self) -> CursorState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is CursorState.CLOSED

    @property
    def type(self) -> StatementType:
        return self._type

    @property
    def kind(self) -> StatementKind:
        return self._type.kind

    @property
    def statement(self) -> str | None:
        """Text of the prepared statement; None for nested cursors."""
        return self._sql

    @property
    def row_count(self) -> int:
        """Rows affected by DML, or rows fetched so far for a query."""
        self._check_open()
        return self.transport.row_count(self._handle)

    @property
    def column_metadata(self) -> list[ColumnMetadata] | None:
        return self._column_metadata

    def get_col_names(self) -> list[str]:
        """Names of the select-list columns; valid after execute."""
        if self._names is None:
            if self._column_metadata is None:
                raise StateViolation('column names are available after execute')
            self._names = [md.name for md in self._column_metadata]
        return self._names

    @property
    def prefetch_rows(self) -> int | None:
        return self._prefetch_rows

    @prefetch_rows.setter
    def prefetch_rows(self, rows: int) -> None:
        self._check_open()
        if rows is None or rows < 1:
            raise ValidationError(f'prefetch_rows must be positive, got {rows!r}')
        self._prefetch_rows = rows
        self.transport.set_prefetch(self._handle, rows)

    @property
    def max_array_size(self) -> int | None:
        return self._max_array_size

    @max_array_size.setter
    def max_array_size(self, size: int) -> None:
        """Switch to array binding; every existing bind is cleared."""
        self._check_open()
        if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
            raise ValidationError(f'expect positive number for max_array_size, got {size!r}')
        self._clear_binds()
        self._max_array_size = size
        self._actual_array_size = None

    @property
    def actual_array_size(self) -> int | None:
        return self._actual_array_size

    def keys(self) -> list[int | str]:
        """Bind keys in declaration order."""
        return list(self._binds)

    def __getitem__(self, key: int | str) -> Any:
        """Current value of a bind variable, e.g. an OUT parameter after execute."""
        return self._bound(key).get(self._actual_array_size)

    def __setitem__(self, key: int | str, value: Any) -> None:
        """Replace the value of an existing bind variable."""
        self._check_open()
        self._bound(key).set(value)

    def bind_values(self) -> list[Any]:
        """Values of all bind variables in declaration order."""
        return [self[key] for key in self._binds]

    def _bound(self, key: int | str) -> BoundParameter:
        self._check_open()
        key = normalize_bind_key(key)
        try:
            return self._binds[key]
        except KeyError:
            raise ValidationError(f'no bind variable {key!r}') from None

    def define(self, pos: int, type: Any, length: int | None = None) -> Self:
        """Fetch select-list column ``pos`` (1-based) with an explicit type.

        Call between parse and execute.
        """
        self._check_open()
        if self._state not in {CursorState.PREPARED, CursorState.BOUND}:
            raise StateViolation('define must be called before execute')
        if self.kind is not StatementKind.QUERY:
            raise StateViolation(f'define on a {self._type.value}')
        if isinstance(pos, bool) or not isinstance(pos, int) or pos < 1:
            raise ValidationError(f'define position starts from 1, got {pos!r}')
        handler = self._handler(BindTypeRegistry.get_instance().resolve(type=type), type)
        self._defines[pos] = BoundParameter(pos, handler, handler.allocate(length))
        return self

    def bind_param(self, key: int | str, value: Any = None, type: Any = None,
                   length: int | None = None) -> Self:
        """Bind a scalar by 1-based position or by placeholder name.

        A class or `BindType` passed as ``value`` binds a NULL of that type.
        Text and raw output binds need a value or ``length``; a longer
        output is truncated to that width.
        """
        self._check_open()
        if self._max_array_size is not None:
            raise StateViolation('scalar bind after max_array_size; use bind_param_array')
        if type is None and (isinstance(value, BindType) or inspect.isclass(value)):
            value, type = None, value
        key = normalize_bind_key(key)
        value = TypeConverter.convert_value(value)
        handler_cls = BindTypeRegistry.get_instance().resolve(value, type)
        handler = self._handler(handler_cls, type if type is not None else value.__class__)
        buffer = handler.create(value, length)
        self.transport.bind(self._handle, key, buffer)
        self._binds[key] = BoundParameter(key, handler, buffer)
        self._state = CursorState.BOUND
        return self

    def bind_param_array(self, key: int | str, values: list[Any] | None,
                         type: Any = None, max_item_length: int | None = None) -> Self:
        """Bind an array for `exec_array`.

        Every array bound in one generation must have the same length.
        """
        self._check_open()
        if self._max_array_size is None:
            raise MissingArraySize('please set max_array_size first.')
        if values is not None and not isinstance(values, list | tuple):
            raise ValidationError('expect a list as input param for bind_param_array.')
        size = 0 if values is None else len(values)
        if size > self._max_array_size:
            raise ArityMismatch(
                f'array of {size} items is larger than max_array_size {self._max_array_size}')
        if self._actual_array_size is not None and size != self._actual_array_size:
            raise ArityMismatch(
                f'all binding arrays should be the same size: got {size}, '
                f'expected {self._actual_array_size}')

        key = normalize_bind_key(key)
        values = list(TypeConverter.convert_params(list(values or [])))
        if type is None:
            first = next((v for v in values if v is not None), None)
            if first is None:
                raise UnsupportedType('bind type is not given.')
            handler_cls = BindTypeRegistry.get_instance().resolve(first)
            handler = self._handler(handler_cls, first.__class__)
        else:
            handler = self._handler(BindTypeRegistry.get_instance().resolve(type=type), type)

        buffer = handler.create_array(values, self._max_array_size, max_item_length)
        self.transport.bind(self._handle, key, buffer)
        self._binds[key] = BoundParameter(key, handler, buffer)
        self._actual_array_size = size
        self._state = CursorState.BOUND
        return self

    def _handler(self, handler_cls: 'type[BindHandler]', source: Any) -> BindHandler:
        """Instantiate a handler; named types fetch their descriptor first."""
        if handler_cls.bind_type is BindType.OBJECT:
            if isinstance(source, type) and issubclass(source, ObjectBase):
                descriptor = self.connection.get_type_descriptor(source)
            elif isinstance(source, str):
                descriptor = self.connection.get_type_descriptor(source)
            else:
                raise UnsupportedType(f'cannot resolve a named type from {source!r}')
            return handler_cls(self.connection, descriptor)
        return handler_cls(self.connection)

    def _bind_params(self, bindvars: tuple) -> None:
        for i, val in enumerate(bindvars, start=1):
            if isinstance(val, tuple):
                self.bind_param(i, *val)
            else:
                self.bind_param(i, val)

    def _clear_binds(self) -> None:
        self._binds.clear()
        self._close_results()
        self.transport.reset(self._handle)
        self._state = CursorState.PREPARED

    def _close_results(self) -> None:
        self._columns = []
        self._column_metadata = None
        self._names = None
        self._exhausted = False

    @dumpsql
    def exec(self, *bindvars: Any) -> int:
        """Bind positional values and execute.

        A ``(value, type, length)`` tuple binds with an explicit type.
        Returns the number of select-list columns for a query and the row
        count otherwise.
        """
        self._check_open()
        if self._type is StatementType.CURSOR:
            raise StateViolation('nested cursor is already executed')
        if self._max_array_size is not None:
            raise StateViolation('array-bound statement; use exec_array')
        self._bind_params(bindvars)
        self._execute(None)
        if self.kind is StatementKind.QUERY:
            return self._define_columns()
        self._autocommit()
        return self.row_count

    execute = exec

    @dumpsql
    def exec_array(self) -> int | bool:
        """Execute once per element of the bound arrays.

        Returns the row count for DML and True otherwise.
        """
        self._check_open()
        if self._max_array_size is None:
            raise MissingArraySize('please set max_array_size first.')
        if self._actual_array_size is None:
            raise MissingArraySize('no arrays bound; call bind_param_array first.')
        if self._actual_array_size == 0:
            raise EmptyArrayBind('please set non-nil values to array binding parameters')
        self._execute(self._actual_array_size)
        self._autocommit()
        if self.kind is StatementKind.DML:
            return self.row_count
        return True

    execute_array = exec_array

    def _execute(self, iters: int | None) -> None:
        self._close_results()
        self.transport.execute(self._handle, iters)
        self._state = CursorState.EXECUTED

    def _autocommit(self) -> None:
        if self.connection.autocommit and self.kind is not StatementKind.QUERY:
            self.connection.commit()

    def _define_columns(self) -> int:
        """Attach a handler to every select-list column.

        Explicit `define` calls win over server metadata.
        """
        registry = BindTypeRegistry.get_instance()
        num_cols = self.transport.column_count(self._handle)
        columns = []
        metadata = []
        for pos in range(1, num_cols + 1):
            md = self.transport.describe_column(self._handle, pos)
            metadata.append(md)
            if pos in self._defines:
                columns.append(self._defines[pos])
                continue
            handler_cls = registry.resolve_metadata(md)
            handler = self._handler(handler_cls, md.type_name)
            columns.append(BoundParameter(pos, handler, self._allocate_column(handler, md)))
        self._columns = columns
        self._column_metadata = metadata
        self._names = None
        self._state = CursorState.DEFINED
        return num_cols

    @staticmethod
    def _allocate_column(handler: BindHandler, md: ColumnMetadata) -> Buffer:
        if handler.bind_type in {BindType.INTEGER, BindType.DECIMAL}:
            scale = md.scale if md.precision else None
            return handler.allocate(md.precision or None, scale=scale)
        if handler.bind_type in {BindType.TEXT, BindType.RAW}:
            return handler.allocate(md.data_size or None)
        return handler.allocate()

    def fetch(self) -> list[Any] | None:
        """Next row as a list, or None when no rows remain."""
        self._check_open()
        if self._state is not CursorState.DEFINED:
            raise StateViolation(f'fetch on a {self._state.value} cursor')
        if self._exhausted:
            return None
        raw = self.transport.fetch_next(self._handle)
        if raw is None:
            self._exhausted = True
            return None
        row = []
        for column, value in zip(self._columns, raw):
            column.buffer.store(value)
            row.append(column.handler.decode(column.buffer))
        return row

    def fetch_hash(self) -> attrdict | None:
        """Next row keyed by column name, or None when no rows remain."""
        row = self.fetch()
        if row is None:
            return None
        return attrdict(zip(self.get_col_names(), row))

    def fetch_all(self) -> list[list[Any]]:
        return list(self)

    def to_frame(self) -> 'pd.DataFrame':
        """Remaining rows as a DataFrame with column types in ``attrs``."""
        return load_frame(list(self), self._column_metadata or [])

    def close(self) -> None:
        """Release the statement. Safe to call more than once."""
        if self._state is CursorState.CLOSED:
            return
        handle, self._handle = self._handle, None
        self._state = CursorState.CLOSED
        self._binds.clear()
        self._defines.clear()
        self._close_results()
        self._exhausted = True
        self.connection._open_cursors.discard(self)
        if handle is not None:
            self.connection._release_handle(handle, self._sql)

    def _check_open(self) -> None:
        if self._state is CursorState.CLOSED:
            raise StateViolation('cursor is closed')
