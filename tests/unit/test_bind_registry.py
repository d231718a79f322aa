"""
Tests for bind type resolution precedence and registry extension.
"""
import datetime
import decimal
import threading
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd
import pytest
from dbexec.adapters.handlers import CursorHandler, DateHandler
from dbexec.adapters.handlers import DateTimeHandler, DecimalHandler
from dbexec.adapters.handlers import FloatHandler, IntegerHandler
from dbexec.adapters.handlers import NullHandler, ObjectHandler, RawHandler
from dbexec.adapters.handlers import TextHandler
from dbexec.adapters.registry import BindTypeRegistry, get_bind_registry
from dbexec.exceptions import UnsupportedType
from dbexec.types import BindType, ColumnMetadata, ObjectBase


class Point(ObjectBase):
    type_name = 'POINT_T'


class TestResolveByValue:

    @pytest.mark.parametrize(('value', 'expected'), [
        ('text', TextHandler),
        (b'bytes', RawHandler),
        (bytearray(b'x'), RawHandler),
        (42, IntegerHandler),
        (True, IntegerHandler),
        (1.5, FloatHandler),
        (decimal.Decimal('1.5'), DecimalHandler),
        (datetime.date(2024, 1, 1), DateHandler),
        (datetime.datetime(2024, 1, 1, 12), DateTimeHandler),
        (Point(x=1), ObjectHandler),
    ], ids=['str', 'bytes', 'bytearray', 'int', 'bool', 'float', 'decimal', 'date',
            'datetime', 'object'])
    def test_builtin_types(self, value, expected):
        assert get_bind_registry().resolve(value) is expected

    @pytest.mark.parametrize(('value', 'expected'), [
        (np.int64(5), IntegerHandler),
        (np.float32(1.5), FloatHandler),
        (pd.Timestamp('2024-01-01 12:00'), DateTimeHandler),
    ], ids=['numpy-int', 'numpy-float', 'pandas-timestamp'])
    def test_numpy_pandas_scalars(self, value, expected):
        assert get_bind_registry().resolve(value) is expected

    def test_null_without_type(self):
        with pytest.raises(UnsupportedType, match='bind type is not given'):
            get_bind_registry().resolve(None)

    def test_nan_without_type(self):
        with pytest.raises(UnsupportedType, match='bind type is not given'):
            get_bind_registry().resolve(float('nan'))

    def test_unsupported_value(self):
        with pytest.raises(UnsupportedType, match='unsupported datatype'):
            get_bind_registry().resolve(object())

    def test_cursor_instance(self, fake_conn):
        cursor = fake_conn.parse('SELECT 1 FROM dual')
        assert get_bind_registry().resolve(cursor) is CursorHandler


class TestPrecedence:

    def test_explicit_type_wins_over_value(self):
        registry = get_bind_registry()
        assert registry.resolve(42, type=str) is TextHandler
        assert registry.resolve('42', type=BindType.INTEGER) is IntegerHandler

    def test_explicit_type_with_null(self):
        registry = get_bind_registry()
        assert registry.resolve(type=datetime.date) is DateHandler
        assert registry.resolve(None, type=type(None)) is NullHandler

    def test_unknown_explicit_type(self):
        with pytest.raises(UnsupportedType):
            get_bind_registry().resolve('x', type=complex)


class TestExtension:

    def test_register_class(self):
        class Money(decimal.Decimal):
            pass

        registry = get_bind_registry()
        registry.register(Money, BindType.DECIMAL)
        assert registry.resolve(Money('1.25')) is DecimalHandler

    def test_late_registration_by_display_name(self):
        """A class registered by name resolves and is cached back under the class"""
        class Label(str):
            pass

        registry = get_bind_registry()
        with pytest.raises(UnsupportedType):
            registry.resolve(complex(1, 2))

        registry.register(f'{Label.__module__}.{Label.__qualname__}', BindType.TEXT)
        assert Label not in registry._handlers
        assert registry.resolve(Label('x')) is TextHandler
        assert registry._handlers[Label] is TextHandler

    def test_unqualified_display_name(self):
        class Tag:
            pass

        registry = get_bind_registry()
        registry.register(Tag.__qualname__, TextHandler)
        assert registry.lookup(Tag) is TextHandler

    def test_register_object_type(self):
        registry = get_bind_registry()

        @registry.register_object_type
        class Employee(ObjectBase):
            type_name = 'emp_t'

        assert registry.object_class('EMP_T') is Employee
        assert registry.resolve(Employee(empno=1)) is ObjectHandler

    def test_register_object_type_needs_type_name(self):
        with pytest.raises(UnsupportedType):
            get_bind_registry().register_object_type(ObjectBase)

    def test_singleton(self):
        assert BindTypeRegistry.get_instance() is get_bind_registry()


class TestConcurrency:

    def test_concurrent_late_resolution(self):
        """Threads resolving late-registered classes all succeed and cache each class once"""
        registry = get_bind_registry()
        classes = [type(f'Code{i}', (str,), {'__module__': __name__}) for i in range(8)]
        for cls in classes:
            registry.register(f'{cls.__module__}.{cls.__qualname__}', BindType.TEXT)

        tasks = classes * 4
        barrier = threading.Barrier(len(tasks), timeout=10)

        def resolve(cls):
            barrier.wait()
            return [registry.resolve(cls('x')) for _ in range(100)]

        with ThreadPoolExecutor(max_workers=len(tasks)) as pool:
            results = list(pool.map(resolve, tasks))

        assert all(handler is TextHandler for batch in results for handler in batch)
        for cls in classes:
            assert registry._handlers[cls] is TextHandler

    def test_concurrent_registration_last_writer_wins(self):
        class Amount(float):
            pass

        registry = get_bind_registry()
        handlers = [FloatHandler, DecimalHandler] * 8
        barrier = threading.Barrier(len(handlers), timeout=10)

        def register(handler):
            barrier.wait()
            registry.register(Amount, handler)
            return registry.resolve(Amount(1.0))

        with ThreadPoolExecutor(max_workers=len(handlers)) as pool:
            resolved = list(pool.map(register, handlers))

        assert set(resolved) <= {FloatHandler, DecimalHandler}
        assert registry.resolve(Amount(1.0)) in {FloatHandler, DecimalHandler}
        registry.register(Amount, FloatHandler)
        assert registry.resolve(Amount(1.0)) is FloatHandler


class TestResolveMetadata:

    @pytest.mark.parametrize(('column', 'expected'), [
        (ColumnMetadata('A', 'VARCHAR2', data_size=20), BindType.TEXT),
        (ColumnMetadata('A', 'NUMBER', precision=10, scale=0), BindType.INTEGER),
        (ColumnMetadata('A', 'NUMBER', precision=0, scale=-127), BindType.FLOAT),
        (ColumnMetadata('A', 'NUMBER', precision=10, scale=2), BindType.DECIMAL),
        (ColumnMetadata('A', 'NUMBER'), BindType.DECIMAL),
        (ColumnMetadata('A', 'DATE'), BindType.DATE),
        (ColumnMetadata('A', 'TIMESTAMP'), BindType.DATETIME),
        (ColumnMetadata('A', 'RAW', data_size=16), BindType.RAW),
        (ColumnMetadata('A', 'BINARY_DOUBLE'), BindType.FLOAT),
        (ColumnMetadata('A', 'integer'), BindType.INTEGER),
        (ColumnMetadata('A', 'REAL'), BindType.FLOAT),
        (ColumnMetadata('A', 'BLOB'), BindType.RAW),
        (ColumnMetadata('A', 'NAMED TYPE', type_name='POINT_T'), BindType.OBJECT),
        (ColumnMetadata('A', 'REF CURSOR'), BindType.CURSOR),
    ], ids=lambda v: v.type_string if isinstance(v, ColumnMetadata) else v.name)
    def test_metadata_tag(self, column, expected):
        assert BindTypeRegistry.metadata_tag(column) is expected

    def test_unsupported_metadata(self):
        with pytest.raises(UnsupportedType):
            get_bind_registry().resolve_metadata(ColumnMetadata('A', 'XMLTYPE'))


if __name__ == '__main__':
    __import__('pytest').main([__file__])
