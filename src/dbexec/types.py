"""
Consolidated type handling for the bind/execute/fetch engine.

This module provides:
- BindType: the closed set of bind handler tags
- TypeConverter: normalize NumPy/Pandas values before they are bound
- ColumnMetadata: column description reported by the server
- TypeDescriptor / ObjectBase: user-defined structured (named) types
- ServerVersion: comparable server release number
"""
import datetime
import functools
import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Self

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class BindType(Enum):
    """Tags of the bind handler variants."""
    TEXT = 'text'
    RAW = 'raw'
    INTEGER = 'integer'
    FLOAT = 'float'
    DECIMAL = 'decimal'
    DATE = 'date'
    DATETIME = 'datetime'
    OBJECT = 'object'
    CURSOR = 'cursor'
    NULL = 'null'


NUMPY_FLOAT_TYPES = (np.floating,)
NUMPY_INT_TYPES = (np.integer, np.unsignedinteger)


# Type Converter - Handles Python -> Database value conversion

def _convert_numpy_value(val: Any) -> float | int | datetime.datetime | None:
    """Convert NumPy value to Python type."""
    if isinstance(val, np.floating) and np.isnan(val):
        return None

    if isinstance(val, np.datetime64) and np.isnat(val):
        return None

    if isinstance(val, (np.floating, np.integer | np.unsignedinteger)):
        return val.item()

    if isinstance(val, np.datetime64):
        return pd.Timestamp(val).to_pydatetime()

    return val


class TypeConverter:
    """Normalize host values so the registry sees plain Python types.

    Handles NumPy scalars, Pandas timestamps and the NaN/NaT null markers.
    """

    @staticmethod
    def convert_value(value: Any) -> Any:
        """Convert a single value to a bindable Python value."""
        if value is None:
            return None

        if isinstance(value, float) and math.isnan(value):
            return None

        if isinstance(value, type(pd.NaT)):
            return None

        if isinstance(value, (*NUMPY_FLOAT_TYPES, *NUMPY_INT_TYPES, np.datetime64)):
            return _convert_numpy_value(value)

        if isinstance(value, np.bool_):
            return bool(value)

        if isinstance(value, pd.Timestamp):
            return value.to_pydatetime()

        return value

    @staticmethod
    def convert_params(params: Any) -> Any:
        """Convert a collection of bind values."""
        if params is None:
            return None

        if isinstance(params, dict):
            return {k: TypeConverter.convert_value(v) for k, v in params.items()}

        if isinstance(params, list | tuple):
            return type(params)(TypeConverter.convert_value(v) for v in params)

        return TypeConverter.convert_value(params)


# Column - Metadata reported by the server

class ColumnMetadata:
    """Description of one select-list column."""

    def __init__(self,
                 name: str,
                 data_type: str | None,
                 data_size: int | None = None,
                 precision: int | None = None,
                 scale: int | None = None,
                 nullable: bool | None = None,
                 type_name: str | None = None):
        self.name = name
        self.data_type = data_type.upper() if data_type else None
        self.data_size = data_size
        self.precision = precision
        self.scale = scale
        self.nullable = nullable
        self.type_name = type_name

    @property
    def type_string(self) -> str:
        """Human readable type, e.g. ``VARCHAR2(20)`` or ``NUMBER(10,2)``."""
        if self.data_type is None:
            return 'UNKNOWN'
        if self.data_type == 'NUMBER':
            if not self.precision:
                return 'NUMBER'
            if self.scale:
                return f'NUMBER({self.precision},{self.scale})'
            return f'NUMBER({self.precision})'
        if self.data_type in {'NAMED TYPE', 'OBJECT'} and self.type_name:
            return self.type_name
        if self.data_size and self.data_type in {'VARCHAR2', 'VARCHAR', 'CHAR',
                                                  'NVARCHAR2', 'NCHAR', 'RAW'}:
            return f'{self.data_type}({self.data_size})'
        return self.data_type

    def __repr__(self) -> str:
        return f'ColumnMetadata(name={self.name!r}, type={self.type_string})'

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'data_type': self.data_type,
            'type_string': self.type_string,
            'data_size': self.data_size,
            'precision': self.precision,
            'scale': self.scale,
            'nullable': self.nullable,
        }

    @staticmethod
    def get_names(columns: list[Self]) -> list[str]:
        return [col.name for col in columns]

    @staticmethod
    def get_column_types_dict(columns: list[Self]) -> dict[str, dict]:
        return {col.name: col.to_dict() for col in columns}


# Structured types

@dataclass
class TypeDescriptor:
    """Server-side description of a named (object) type.

    ``attributes`` is an ordered list of ``(name, BindType, length)``.
    """
    name: str
    attributes: list[tuple[str, BindType, int | None]] = field(default_factory=list)
    host_class: type | None = None

    @property
    def attribute_names(self) -> list[str]:
        return [attr[0] for attr in self.attributes]


class ObjectBase:
    """Base class for host representations of named database types.

    Subclasses set ``type_name`` to the server's type name::

        class Point(ObjectBase):
            type_name = 'POINT_T'
    """
    type_name: str | None = None

    def __init__(self, **attrs: Any) -> None:
        for name, value in attrs.items():
            setattr(self, name, value)

    def attributes(self) -> dict[str, Any]:
        return dict(vars(self))

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.attributes() == other.attributes()

    def __repr__(self) -> str:
        attrs = ', '.join(f'{k}={v!r}' for k, v in self.attributes().items())
        return f'{type(self).__name__}({attrs})'


# Server version

# A bare major number, or the first dotted release inside a banner
_VERSION_PATTERN = re.compile(r'\A\s*(\d+)\s*\Z|(\d+(?:\.\d+){1,4})')


@functools.total_ordering
class ServerVersion:
    """Five-part server release number (major.minor.update.patch.port_update).

    Accepts a dotted string, a banner containing one, or a packed integer
    (``major << 24 | minor << 20 | update << 12 | patch << 8 | port_update``).
    """

    def __init__(self, version: str | int) -> None:
        if isinstance(version, int):
            parts = [(version >> 24) & 0xFF, (version >> 20) & 0x0F,
                     (version >> 12) & 0xFF, (version >> 8) & 0x0F,
                     version & 0xFF]
        else:
            match = _VERSION_PATTERN.search(version)
            if not match:
                raise ValueError(f'Cannot parse server version: {version!r}')
            parts = [int(p) for p in (match.group(1) or match.group(2)).split('.')]
            parts += [0] * (5 - len(parts))
        self.major, self.minor, self.update, self.patch, self.port_update = parts

    def to_tuple(self) -> tuple[int, int, int, int, int]:
        return (self.major, self.minor, self.update, self.patch, self.port_update)

    def to_int(self) -> int:
        return (self.major << 24 | self.minor << 20 | self.update << 12
                | self.patch << 8 | self.port_update)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, str | int):
            other = ServerVersion(other)
        if not isinstance(other, ServerVersion):
            return NotImplemented
        return self.to_tuple() == other.to_tuple()

    def __lt__(self, other: object) -> bool:
        if isinstance(other, str | int):
            other = ServerVersion(other)
        if not isinstance(other, ServerVersion):
            return NotImplemented
        return self.to_tuple() < other.to_tuple()

    def __hash__(self) -> int:
        return hash(self.to_tuple())

    def __str__(self) -> str:
        return '.'.join(str(p) for p in self.to_tuple())

    def __repr__(self) -> str:
        return f'ServerVersion({str(self)!r})'
