"""
Bind handlers: one variant per data domain.

A handler allocates a `Buffer` for a declared length, encodes host values
into the buffer's wire representation and decodes what the server left in
the buffer back into host values. Wire values are limited to ``None``,
``str``, ``bytes``, ``int``, ``float``, a ``dict`` of attribute wire values
(named types) and an opaque statement handle (nested cursors).

TEXT and RAW truncate silently to the declared width; INTEGER, DECIMAL and
FLOAT raise `EncodingOverflow` when a value does not fit.
"""
import datetime
import decimal
import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

import dateutil.parser
from dbexec.exceptions import EncodingOverflow, UnsupportedType
from dbexec.exceptions import ValidationError
from dbexec.types import BindType, ObjectBase, TypeDescriptor

if TYPE_CHECKING:
    from dbexec.connection import Connection

logger = logging.getLogger(__name__)

DEFAULT_NUMBER_PRECISION = 38


@dataclass
class Buffer:
    """Client-side storage for one bound parameter or defined column."""
    bind_type: BindType
    capacity: int | None = None
    scale: int | None = None
    value: Any = None
    values: list[Any] | None = None
    max_array_size: int | None = None
    descriptor: TypeDescriptor | None = None
    decoded: dict[int, Any] = field(default_factory=dict)

    @property
    def is_array(self) -> bool:
        return self.max_array_size is not None

    def store(self, raw: Any) -> None:
        """Write a server-returned wire value into a scalar buffer."""
        self.value = raw
        self.decoded.clear()


class BindHandler:
    """Base class of the bind handler variants.
    """
    bind_type: ClassVar[BindType]
    python_type: ClassVar[type | None] = None

    def __init__(self, connection: 'Connection | None' = None,
                 descriptor: TypeDescriptor | None = None) -> None:
        self.connection = connection
        self.descriptor = descriptor

    def __repr__(self) -> str:
        return f'{type(self).__name__}()'

    def infer_length(self, value: Any) -> int | None:
        """Declared length to use when the caller gives none."""
        return None

    def allocate(self, length: int | None = None, max_array_size: int | None = None,
                 scale: int | None = None) -> Buffer:
        buffer = Buffer(self.bind_type, capacity=length, scale=scale,
                        max_array_size=max_array_size, descriptor=self.descriptor)
        if max_array_size is not None:
            buffer.values = [None] * max_array_size
        return buffer

    def create(self, value: Any, length: int | None = None) -> Buffer:
        """Allocate a scalar buffer sized for ``value`` and encode it."""
        if length is None:
            length = self.infer_length(value)
        buffer = self.allocate(length)
        self.encode(value, buffer)
        return buffer

    def create_array(self, values: list[Any] | None, max_array_size: int,
                     length: int | None = None) -> Buffer:
        """Allocate an array buffer and encode ``values`` into it."""
        if length is None:
            lengths = [n for n in (self.infer_length(v) for v in values or []) if n is not None]
            length = max(lengths) if lengths else None
        buffer = self.allocate(length, max_array_size=max_array_size)
        self.encode_array(values or [], buffer)
        return buffer

    def encode(self, value: Any, buffer: Buffer) -> None:
        buffer.store(None if value is None else self.encode_value(value, buffer))

    def encode_array(self, values: list[Any], buffer: Buffer) -> None:
        if len(values) > (buffer.max_array_size or 0):
            raise ValidationError(
                f'array of {len(values)} items exceeds max_array_size {buffer.max_array_size}')
        encoded = [None if v is None else self.encode_value(v, buffer) for v in values]
        buffer.values = encoded + [None] * (buffer.max_array_size - len(encoded))
        buffer.decoded.clear()

    def decode(self, buffer: Buffer) -> Any:
        if buffer.value is None:
            return None
        return self.decode_value(buffer.value, buffer)

    def decode_array(self, buffer: Buffer, size: int | None = None) -> list[Any]:
        values = buffer.values or []
        if size is not None:
            values = values[:size]
        return [None if v is None else self.decode_value(v, buffer) for v in values]

    def encode_value(self, value: Any, buffer: Buffer) -> Any:
        raise NotImplementedError

    def decode_value(self, raw: Any, buffer: Buffer) -> Any:
        raise NotImplementedError


class TextHandler(BindHandler):
    """Character data; truncated to the declared width."""
    bind_type = BindType.TEXT
    python_type = str

    def infer_length(self, value: Any) -> int | None:
        if value is None:
            return None
        return max(len(str(value)), 1)

    def allocate(self, length: int | None = None, max_array_size: int | None = None,
                 scale: int | None = None) -> Buffer:
        if length is not None and length < 1:
            raise ValidationError(f'text bind length must be positive, got {length}')
        return super().allocate(length, max_array_size, scale)

    def create(self, value: Any, length: int | None = None) -> Buffer:
        if value is None and length is None:
            raise ValidationError('bind length is not given for a NULL text value')
        return super().create(value, length)

    def encode_value(self, value: Any, buffer: Buffer) -> str:
        if isinstance(value, bytes):
            value = value.decode()
        return _truncate(str(value), buffer.capacity)

    def decode_value(self, raw: Any, buffer: Buffer) -> str:
        if isinstance(raw, bytes):
            raw = raw.decode()
        return _truncate(str(raw), buffer.capacity)


class RawHandler(BindHandler):
    """Binary data; truncated to the declared width."""
    bind_type = BindType.RAW
    python_type = bytes

    def infer_length(self, value: Any) -> int | None:
        if value is None:
            return None
        return max(len(bytes(value)), 1)

    def create(self, value: Any, length: int | None = None) -> Buffer:
        if value is None and length is None:
            raise ValidationError('bind length is not given for a NULL raw value')
        return super().create(value, length)

    def encode_value(self, value: Any, buffer: Buffer) -> bytes:
        if isinstance(value, str):
            value = value.encode()
        return _truncate(bytes(value), buffer.capacity)

    def decode_value(self, raw: Any, buffer: Buffer) -> bytes:
        if isinstance(raw, str):
            raw = raw.encode()
        return _truncate(bytes(raw), buffer.capacity)


class IntegerHandler(BindHandler):
    """Integral numbers of at most ``capacity`` decimal digits."""
    bind_type = BindType.INTEGER
    python_type = int

    def allocate(self, length: int | None = None, max_array_size: int | None = None,
                 scale: int | None = None) -> Buffer:
        return super().allocate(length or DEFAULT_NUMBER_PRECISION, max_array_size, scale)

    def encode_value(self, value: Any, buffer: Buffer) -> int:
        try:
            number = int(value)
        except (TypeError, ValueError) as err:
            raise ValidationError(f'cannot bind {value!r} as an integer') from err
        if number != value and not isinstance(value, str):
            raise ValidationError(f'cannot bind non-integral {value!r} as an integer')
        if len(str(abs(number))) > buffer.capacity:
            raise EncodingOverflow(f'{number} exceeds {buffer.capacity} digits')
        return number

    def decode_value(self, raw: Any, buffer: Buffer) -> int:
        if isinstance(raw, float | decimal.Decimal):
            if not math.isfinite(raw) or raw != int(raw):
                raise ValidationError(f'cannot decode non-integral {raw!r} as an integer')
            return int(raw)
        try:
            return int(raw)
        except (TypeError, ValueError) as err:
            raise ValidationError(f'cannot decode {raw!r} as an integer') from err


class FloatHandler(BindHandler):
    """Binary floating point numbers."""
    bind_type = BindType.FLOAT
    python_type = float

    def encode_value(self, value: Any, buffer: Buffer) -> float:
        try:
            return float(value)
        except OverflowError as err:
            raise EncodingOverflow(f'{value!r} is out of double range') from err
        except (TypeError, ValueError) as err:
            raise ValidationError(f'cannot bind {value!r} as a float') from err

    def decode_value(self, raw: Any, buffer: Buffer) -> float:
        return float(raw)


class DecimalHandler(BindHandler):
    """Fixed-point numbers with ``capacity`` digits of precision and optional scale."""
    bind_type = BindType.DECIMAL
    python_type = decimal.Decimal

    def allocate(self, length: int | None = None, max_array_size: int | None = None,
                 scale: int | None = None) -> Buffer:
        return super().allocate(length or DEFAULT_NUMBER_PRECISION, max_array_size, scale)

    def encode_value(self, value: Any, buffer: Buffer) -> str:
        number = _to_decimal(value)
        if not number.is_finite():
            raise EncodingOverflow(f'{value!r} is not a finite number')
        if buffer.scale is not None:
            number = number.quantize(decimal.Decimal(1).scaleb(-buffer.scale),
                                     rounding=decimal.ROUND_HALF_UP)
            whole_digits = max(number.adjusted() + 1, 0)
            if whole_digits > buffer.capacity - buffer.scale:
                raise EncodingOverflow(
                    f'{value} exceeds NUMBER({buffer.capacity},{buffer.scale})')
        elif len(number.as_tuple().digits) > buffer.capacity:
            raise EncodingOverflow(f'{value} exceeds {buffer.capacity} digits')
        return str(number)

    def decode_value(self, raw: Any, buffer: Buffer) -> decimal.Decimal:
        return _to_decimal(raw)


class DateHandler(BindHandler):
    """Calendar dates."""
    bind_type = BindType.DATE
    python_type = datetime.date

    def encode_value(self, value: Any, buffer: Buffer) -> str:
        if isinstance(value, datetime.datetime):
            value = value.date()
        if not isinstance(value, datetime.date):
            value = _parse_temporal(value).date()
        return value.isoformat()

    def decode_value(self, raw: Any, buffer: Buffer) -> datetime.date:
        if isinstance(raw, datetime.datetime):
            return raw.date()
        if isinstance(raw, datetime.date):
            return raw
        return _parse_temporal(raw).date()


class DateTimeHandler(BindHandler):
    """Timestamps, timezone-aware or naive."""
    bind_type = BindType.DATETIME
    python_type = datetime.datetime

    def encode_value(self, value: Any, buffer: Buffer) -> str:
        if not isinstance(value, datetime.date):
            value = _parse_temporal(value)
        elif not isinstance(value, datetime.datetime):
            value = datetime.datetime.combine(value, datetime.time())
        return value.isoformat(sep=' ')

    def decode_value(self, raw: Any, buffer: Buffer) -> datetime.datetime:
        if isinstance(raw, datetime.datetime):
            return raw
        if isinstance(raw, datetime.date):
            return datetime.datetime.combine(raw, datetime.time())
        return _parse_temporal(raw)


class NullHandler(BindHandler):
    """Null-only sentinel; every decoded value is None."""
    bind_type = BindType.NULL

    def encode_value(self, value: Any, buffer: Buffer) -> None:
        raise ValidationError(f'NULL bind cannot carry a value, got {value!r}')

    def decode_value(self, raw: Any, buffer: Buffer) -> None:
        return None


class ObjectHandler(BindHandler):
    """Instances of named (structured) server types.

    Needs the type's descriptor, fetched from the server through the
    connection before the buffer is allocated.
    """
    bind_type = BindType.OBJECT
    python_type = ObjectBase

    def __init__(self, connection: 'Connection | None' = None,
                 descriptor: TypeDescriptor | None = None) -> None:
        if descriptor is None:
            raise UnsupportedType('named type bind needs a type descriptor')
        super().__init__(connection, descriptor)

    def __repr__(self) -> str:
        return f'ObjectHandler({self.descriptor.name!r})'

    def _attribute_handlers(self) -> list[tuple[str, BindHandler, int | None]]:
        from dbexec.adapters.registry import BindTypeRegistry
        registry = BindTypeRegistry.get_instance()
        return [(name, registry.resolve(type=tag)(self.connection), length)
                for name, tag, length in self.descriptor.attributes]

    def encode_value(self, value: Any, buffer: Buffer) -> dict[str, Any]:
        if not isinstance(value, ObjectBase):
            raise ValidationError(
                f'cannot bind {type(value).__name__} as {self.descriptor.name}')
        attrs = value.attributes()
        encoded = {}
        for name, handler, length in self._attribute_handlers():
            attr = attrs.get(name)
            sub = handler.allocate(length if length is not None else handler.infer_length(attr))
            handler.encode(attr, sub)
            encoded[name] = sub.value
        return encoded

    def decode_value(self, raw: Any, buffer: Buffer) -> ObjectBase:
        from dbexec.adapters.registry import BindTypeRegistry
        host_class = (self.descriptor.host_class
                      or BindTypeRegistry.get_instance().object_class(self.descriptor.name)
                      or ObjectBase)
        attrs = {}
        for name, handler, length in self._attribute_handlers():
            sub = handler.allocate(length)
            sub.store(raw.get(name))
            attrs[name] = handler.decode(sub)
        return host_class(**attrs)


class CursorHandler(BindHandler):
    """Nested cursors: ref-cursor binds and cursor-valued columns."""
    bind_type = BindType.CURSOR

    def encode_value(self, value: Any, buffer: Buffer) -> Any:
        from dbexec.cursor import Cursor
        if not isinstance(value, Cursor):
            raise ValidationError(f'cannot bind {type(value).__name__} as a cursor')
        return value.handle

    def decode(self, buffer: Buffer) -> Any:
        if buffer.value is None:
            return None
        if 0 not in buffer.decoded:
            buffer.decoded[0] = self.decode_value(buffer.value, buffer)
        return buffer.decoded[0]

    def decode_value(self, raw: Any, buffer: Buffer) -> Any:
        if self.connection is None:
            raise UnsupportedType('nested cursor needs a connection')
        return self.connection.cursor_from_handle(raw)


def _truncate(value: Any, capacity: int | None) -> Any:
    if capacity is not None and len(value) > capacity:
        return value[:capacity]
    return value


def _to_decimal(value: Any) -> decimal.Decimal:
    if isinstance(value, decimal.Decimal):
        return value
    if isinstance(value, float):
        return decimal.Decimal(repr(value))
    try:
        return decimal.Decimal(str(value).strip())
    except decimal.InvalidOperation as err:
        raise ValidationError(f'cannot bind {value!r} as a decimal') from err


def _parse_temporal(raw: Any) -> datetime.datetime:
    if isinstance(raw, bytes):
        raw = raw.decode()
    if not isinstance(raw, str):
        raise ValidationError(f'cannot interpret {raw!r} as a date')
    try:
        return dateutil.parser.isoparse(raw)
    except ValueError as err:
        raise ValidationError(f'cannot interpret {raw!r} as a date') from err


HANDLERS: dict[BindType, type[BindHandler]] = {
    cls.bind_type: cls for cls in (
        TextHandler, RawHandler, IntegerHandler, FloatHandler, DecimalHandler,
        DateHandler, DateTimeHandler, NullHandler, ObjectHandler, CursorHandler,
    )
}
