"""
Execution dispatch by statement kind.

After a cursor is executed its result is routed by kind:

=========  ===================  ==========================================
kind       no callback          per-row callback
=========  ===================  ==========================================
query      Handoff(cursor)      callback per row, Consumed(row_count)
cursor     Handoff(cursor)      callback per row, Consumed(row_count)
PL/SQL     Consumed(values)     callback(*values), Consumed(values)
DML/other  Consumed(row_count)  callback ignored
=========  ===================  ==========================================

PL/SQL values are the bind variables in declaration order. A `Handoff`
transfers ownership of the open cursor to the caller.
"""
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from dbexec.sql import StatementKind

if TYPE_CHECKING:
    from dbexec.cursor import Cursor

logger = logging.getLogger(__name__)

__all__ = [
    'Consumed',
    'Handoff',
    'ExecutionResult',
    'dispatch',
]


@dataclass(frozen=True)
class Consumed:
    """The result was fully consumed; the cursor can be released."""
    value: Any

    def unwrap(self) -> Any:
        return self.value


@dataclass(frozen=True)
class Handoff:
    """An open query cursor whose release is now the caller's job."""
    cursor: 'Cursor'

    def unwrap(self) -> 'Cursor':
        return self.cursor


ExecutionResult = Consumed | Handoff


def dispatch(cursor: 'Cursor', callback: Callable[..., Any] | None = None) -> ExecutionResult:
    """Route the result of an executed cursor by its statement kind.
    """
    kind = cursor.kind
    if kind in {StatementKind.QUERY, StatementKind.CURSOR}:
        if callback is None:
            return Handoff(cursor)
        for row in cursor:
            callback(row)
        return Consumed(cursor.row_count)

    if kind is StatementKind.PLSQL:
        values = cursor.bind_values()
        if callback is not None:
            callback(*values)
        return Consumed(values)

    if callback is not None:
        logger.debug(f'Callback ignored for {cursor.type.value} statement')
    return Consumed(cursor.row_count)
