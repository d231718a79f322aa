"""
Bind type resolution.

The registry maps a type descriptor to a bind handler class. Three kinds of
descriptor are accepted:

1. An explicit type tag (`BindType`), a Python class, or a registered name
2. A value, whose class is looked up
3. Column metadata reported by the server

Explicit types win over value-derived types; a NULL value with no type is
an error. When a class misses the direct table the lookup is retried by the
class's display names, and a hit is cached back under the class. Entries are
never evicted.
"""
import datetime
import decimal
import logging
import threading
from typing import Any

from dbexec.adapters.handlers import HANDLERS, BindHandler
from dbexec.exceptions import UnsupportedType
from dbexec.types import BindType, ColumnMetadata, ObjectBase, TypeConverter

logger = logging.getLogger(__name__)

_MISSING = object()

DEFAULT_TYPE_MAP: dict[Any, BindType] = {
    str: BindType.TEXT,
    bytes: BindType.RAW,
    bytearray: BindType.RAW,
    memoryview: BindType.RAW,
    bool: BindType.INTEGER,
    int: BindType.INTEGER,
    float: BindType.FLOAT,
    decimal.Decimal: BindType.DECIMAL,
    datetime.date: BindType.DATE,
    datetime.datetime: BindType.DATETIME,
    type(None): BindType.NULL,
}

# Database type names, Oracle style and SQLite storage classes
DATA_TYPE_MAP: dict[str, BindType] = {
    'VARCHAR2': BindType.TEXT,
    'VARCHAR': BindType.TEXT,
    'NVARCHAR2': BindType.TEXT,
    'CHAR': BindType.TEXT,
    'NCHAR': BindType.TEXT,
    'CLOB': BindType.TEXT,
    'NCLOB': BindType.TEXT,
    'LONG': BindType.TEXT,
    'ROWID': BindType.TEXT,
    'TEXT': BindType.TEXT,
    'RAW': BindType.RAW,
    'LONG RAW': BindType.RAW,
    'BLOB': BindType.RAW,
    'INTEGER': BindType.INTEGER,
    'INT': BindType.INTEGER,
    'SMALLINT': BindType.INTEGER,
    'BIGINT': BindType.INTEGER,
    'BINARY_FLOAT': BindType.FLOAT,
    'BINARY_DOUBLE': BindType.FLOAT,
    'FLOAT': BindType.FLOAT,
    'REAL': BindType.FLOAT,
    'DOUBLE': BindType.FLOAT,
    'NUMERIC': BindType.DECIMAL,
    'DECIMAL': BindType.DECIMAL,
    'DATE': BindType.DATE,
    'DATETIME': BindType.DATETIME,
    'TIMESTAMP': BindType.DATETIME,
    'TIMESTAMP WITH TIME ZONE': BindType.DATETIME,
    'TIMESTAMP WITH LOCAL TIME ZONE': BindType.DATETIME,
    'NAMED TYPE': BindType.OBJECT,
    'OBJECT': BindType.OBJECT,
    'REF CURSOR': BindType.CURSOR,
    'CURSOR': BindType.CURSOR,
    'NULL': BindType.NULL,
}


def _display_names(cls: type) -> list[str]:
    return [f'{cls.__module__}.{cls.__qualname__}', cls.__qualname__]


class BindTypeRegistry:
    """Process-wide table from type descriptors to bind handler classes.

    Safe for concurrent readers; writers take a lock and the last writer
    wins, which is harmless since handlers for one key are interchangeable.
    """

    _instance = None
    _lock = threading.RLock()

    @classmethod
    def get_instance(cls) -> 'BindTypeRegistry':
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def __init__(self) -> None:
        self._handlers: dict[Any, type[BindHandler]] = dict(HANDLERS)
        for key, tag in DEFAULT_TYPE_MAP.items():
            self._handlers[key] = HANDLERS[tag]
        self._object_classes: dict[str, type[ObjectBase]] = {}

    def register(self, key: type | str | BindType, handler: type[BindHandler] | BindType) -> None:
        """Register a handler for a class, a class display name or a tag.

        Registering by name supports classes that are not importable when
        the registry is built, e.g. ``register('numpy.str_', BindType.TEXT)``.
        """
        if isinstance(handler, BindType):
            handler = HANDLERS[handler]
        with self._lock:
            self._handlers[key] = handler
        logger.debug(f'Registered {handler.__name__} for {key!r}')

    def register_object_type(self, cls: type[ObjectBase]) -> type[ObjectBase]:
        """Register a host class for a named server type. Usable as a decorator."""
        if not (isinstance(cls, type) and issubclass(cls, ObjectBase)) or not cls.type_name:
            raise UnsupportedType(f'{cls!r} is not an ObjectBase subclass with a type_name')
        with self._lock:
            self._object_classes[cls.type_name.upper()] = cls
        logger.debug(f'Registered object type {cls.type_name} as {cls.__name__}')
        return cls

    def object_class(self, type_name: str) -> type[ObjectBase] | None:
        return self._object_classes.get(type_name.upper())

    def lookup(self, key: Any) -> type[BindHandler] | None:
        """Direct lookup, then lookup by display name with write-back."""
        handler = self._handlers.get(key)
        if handler is not None or not isinstance(key, type):
            return handler

        if issubclass(key, ObjectBase):
            return HANDLERS[BindType.OBJECT]

        from dbexec.cursor import Cursor
        if issubclass(key, Cursor):
            return HANDLERS[BindType.CURSOR]

        for name in _display_names(key):
            handler = self._handlers.get(name)
            if handler is not None:
                with self._lock:
                    self._handlers[key] = handler
                logger.debug(f'Cached {handler.__name__} for {key.__qualname__} via {name!r}')
                return handler
        return None

    def resolve(self, value: Any = _MISSING, type: Any = None) -> type[BindHandler]:
        """Resolve a handler from an explicit type or from a value.

        An explicit ``type`` wins over the value's class.
        """
        if type is not None:
            handler = self.lookup(type)
            if handler is None:
                raise UnsupportedType(f'unsupported datatype: {type!r}')
            return handler

        if value is _MISSING or value is None:
            raise UnsupportedType('bind type is not given.')

        from dbexec.cursor import Cursor
        if isinstance(value, Cursor):
            return HANDLERS[BindType.CURSOR]

        value = TypeConverter.convert_value(value)
        if value is None:
            raise UnsupportedType('bind type is not given.')

        handler = self.lookup(value.__class__)
        if handler is None:
            raise UnsupportedType(f'unsupported datatype: {value.__class__.__qualname__}')
        return handler

    def resolve_metadata(self, column: ColumnMetadata) -> type[BindHandler]:
        """Resolve a handler from server-reported column metadata."""
        tag = self.metadata_tag(column)
        return HANDLERS[tag]

    @staticmethod
    def metadata_tag(column: ColumnMetadata) -> BindType:
        """Type tag for a column; NUMBER is split by precision and scale."""
        data_type = column.data_type
        if data_type == 'NUMBER':
            if column.precision and column.scale == 0:
                return BindType.INTEGER
            if not column.precision and column.scale == -127:
                return BindType.FLOAT
            return BindType.DECIMAL
        if data_type is None:
            raise UnsupportedType(f'no data type reported for column {column.name!r}')
        base = data_type.split('(')[0].strip()
        tag = DATA_TYPE_MAP.get(base)
        if tag is None:
            raise UnsupportedType(
                f'unsupported datatype: {data_type} (column {column.name!r})')
        return tag


def get_bind_registry() -> BindTypeRegistry:
    """Get the process-wide bind type registry."""
    return BindTypeRegistry.get_instance()
