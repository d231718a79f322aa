"""
Error taxonomy for the bind/execute/fetch engine.

Every error raised by the core carries a stable ``kind`` tag so callers can
branch on it without matching message text. Driver errors are never wrapped;
they are grouped below into tuples usable in ``except`` clauses.
"""
import sqlite3

import sqlalchemy.exc


class DatabaseError(Exception):
    """Base class for all dbexec errors.
    """
    kind = 'DatabaseError'


class UnsupportedType(DatabaseError):
    """No bind handler resolves for a value, type tag or column metadata.
    """
    kind = 'UnsupportedType'


class ArityMismatch(DatabaseError):
    """Arrays bound to one statement generation disagree in length.
    """
    kind = 'ArityMismatch'


class MissingArraySize(DatabaseError):
    """Array operation attempted without an agreed array size.
    """
    kind = 'MissingArraySize'


class EmptyArrayBind(DatabaseError):
    """Array execute attempted with an agreed array size of zero.
    """
    kind = 'EmptyArrayBind'


class EncodingOverflow(DatabaseError):
    """Value does not fit a fixed-width numeric buffer.
    """
    kind = 'EncodingOverflow'


class StateViolation(DatabaseError):
    """Operation invoked out of sequence, e.g. fetch before execute.
    """
    kind = 'StateViolation'


class ValidationError(DatabaseError):
    """Error in input validation.
    """
    kind = 'ValidationError'


class CollaboratorFailure(DatabaseError):
    """Failure reported by a transport that has no driver exception of its own.
    """
    kind = 'CollaboratorFailure'


class UnknownType(CollaboratorFailure):
    """The server does not know the requested named type.
    """
    kind = 'UnknownType'


class ConnectionFailure(CollaboratorFailure):
    """Error establishing or maintaining the session.
    """
    kind = 'ConnectionFailure'


DbConnectionError = (
    sqlite3.OperationalError,
    sqlite3.InterfaceError,
    sqlalchemy.exc.OperationalError,
    sqlalchemy.exc.InterfaceError,
    ConnectionFailure,
    )

ProgrammingError = (
    sqlite3.ProgrammingError,
    sqlite3.DatabaseError,
    sqlalchemy.exc.DBAPIError,
    )

CollaboratorError = (
    sqlite3.Error,
    sqlalchemy.exc.SQLAlchemyError,
    CollaboratorFailure,
    )


def error_kind(exc: BaseException) -> str:
    """Return the stable kind tag for an exception.

    Driver exceptions report ``CollaboratorFailure``; anything else reports
    its class name.
    """
    if isinstance(exc, DatabaseError):
        return exc.kind
    if isinstance(exc, CollaboratorError):
        return CollaboratorFailure.kind
    return type(exc).__name__
