"""
Statement text helpers.

- `classify_statement(sql)` - statement type from the leading keyword
- `find_placeholders(sql)` - bind placeholders in textual order
- `rewrite_placeholders(sql)` - replace every placeholder with ``?``

Neither function parses SQL; both skip string literals, quoted identifiers
and comments so that a ``:word`` inside them is not mistaken for a bind.
"""
import re
from dataclasses import dataclass
from enum import Enum

from dbexec.exceptions import ValidationError


class StatementKind(Enum):
    """Return-contract category used by the execution dispatcher."""
    QUERY = 'query'
    DML = 'dml'
    PLSQL = 'plsql'
    OTHER = 'other'
    CURSOR = 'cursor'


class StatementType(Enum):
    """Statement type derived from the leading keyword."""
    SELECT = 'select_stmt'
    INSERT = 'insert_stmt'
    UPDATE = 'update_stmt'
    DELETE = 'delete_stmt'
    BEGIN = 'begin_stmt'
    DECLARE = 'declare_stmt'
    OTHER = 'other_stmt'
    CURSOR = 'cursor_stmt'

    @property
    def kind(self) -> StatementKind:
        return _KIND_BY_TYPE[self]


_KIND_BY_TYPE = {
    StatementType.SELECT: StatementKind.QUERY,
    StatementType.INSERT: StatementKind.DML,
    StatementType.UPDATE: StatementKind.DML,
    StatementType.DELETE: StatementKind.DML,
    StatementType.BEGIN: StatementKind.PLSQL,
    StatementType.DECLARE: StatementKind.PLSQL,
    StatementType.OTHER: StatementKind.OTHER,
    StatementType.CURSOR: StatementKind.CURSOR,
}

_TYPE_BY_KEYWORD = {
    'SELECT': StatementType.SELECT,
    'INSERT': StatementType.INSERT,
    'UPDATE': StatementType.UPDATE,
    'DELETE': StatementType.DELETE,
    'BEGIN': StatementType.BEGIN,
    'DECLARE': StatementType.DECLARE,
}

# Leading whitespace and comments, then the first word
_LEADING = re.compile(r"""
    \A(?:\s+|--[^\n]*(?:\n|\Z)|/\*.*?\*/)*
    (?P<keyword>[A-Za-z_]+)
""", re.DOTALL | re.VERBOSE)

_TOKENIZE = re.compile(r"""
    (?P<string>'(?:[^']|'')*')
    |(?P<quoted>"(?:[^"]|"")*")
    |(?P<line_comment>--[^\n]*)
    |(?P<block_comment>/\*.*?\*/)
    |(?P<assign>:=)
    |:(?P<name>[A-Za-z0-9_$#]+)
    |(?P<qmark>\?)
""", re.DOTALL | re.VERBOSE)


@dataclass(slots=True, frozen=True)
class Placeholder:
    """One placeholder occurrence.

    ``name`` is None for a ``?``; ``position`` is the 1-based occurrence index.
    """
    name: str | None
    position: int
    start: int
    end: int


def classify_statement(sql: str) -> StatementType:
    """Return the statement type from the leading keyword (case-insensitive).

    Only SELECT, INSERT, UPDATE, DELETE, BEGIN and DECLARE are recognized;
    everything else, including WITH and parenthesized queries, is OTHER.
    """
    match = _LEADING.match(sql or '')
    if not match:
        return StatementType.OTHER
    return _TYPE_BY_KEYWORD.get(match.group('keyword').upper(), StatementType.OTHER)


def find_placeholders(sql: str) -> list[Placeholder]:
    """Find bind placeholders (``:name``, ``:1`` and ``?``) in textual order.
    """
    found = []
    for match in _TOKENIZE.finditer(sql):
        if match.group('name') is not None:
            name = match.group('name')
        elif match.group('qmark') is not None:
            name = None
        else:
            continue
        found.append(Placeholder(name, len(found) + 1, match.start(), match.end()))
    return found


def placeholder_names(sql: str) -> list[str]:
    """Unique placeholder names in order of first appearance."""
    names: list[str] = []
    for ph in find_placeholders(sql):
        if ph.name is not None and ph.name not in names:
            names.append(ph.name)
    return names


def rewrite_placeholders(sql: str, placeholders: list[Placeholder] | None = None) -> str:
    """Replace each placeholder occurrence with ``?``."""
    if placeholders is None:
        placeholders = find_placeholders(sql)
    if not placeholders:
        return sql
    parts = []
    last_end = 0
    for ph in placeholders:
        parts.append(sql[last_end:ph.start])
        parts.append('?')
        last_end = ph.end
    parts.append(sql[last_end:])
    return ''.join(parts)


def normalize_bind_key(key: int | str) -> int | str:
    """Bind keys are 1-based positions or names; ``:name`` and ``name`` are the same key."""
    if isinstance(key, bool) or not isinstance(key, int | str):
        raise ValidationError(f'bind key must be an int position or a str name, got {key!r}')
    if isinstance(key, int):
        if key < 1:
            raise ValidationError(f'bind position starts from 1, got {key}')
        return key
    name = key[1:] if key.startswith(':') else key
    if not name:
        raise ValidationError('empty bind name')
    return name
