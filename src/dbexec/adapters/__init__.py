"""
Bind handlers and the registry that resolves them.
"""
from dbexec.adapters.handlers import HANDLERS, BindHandler, Buffer
from dbexec.adapters.handlers import CursorHandler, DateHandler
from dbexec.adapters.handlers import DateTimeHandler, DecimalHandler
from dbexec.adapters.handlers import FloatHandler, IntegerHandler
from dbexec.adapters.handlers import NullHandler, ObjectHandler, RawHandler
from dbexec.adapters.handlers import TextHandler
from dbexec.adapters.registry import BindTypeRegistry, get_bind_registry

__all__ = [
    'HANDLERS',
    'BindHandler',
    'Buffer',
    'BindTypeRegistry',
    'get_bind_registry',
    'TextHandler',
    'RawHandler',
    'IntegerHandler',
    'FloatHandler',
    'DecimalHandler',
    'DateHandler',
    'DateTimeHandler',
    'NullHandler',
    'ObjectHandler',
    'CursorHandler',
]
