"""
Base transport interface.

A transport is the call-level collaborator that moves statements, bind
buffers and rows between the client and one kind of server. The engine
only ever talks to a server through this interface; sessions and statement
handles are opaque objects owned by the transport.

Transports register under a driver name:

    @register_transport('sqlite')
    class SQLiteTransport(Transport):
        ...
"""
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from dbexec.exceptions import UnknownType
from dbexec.types import ColumnMetadata, TypeDescriptor

if TYPE_CHECKING:
    from dbexec.adapters.handlers import Buffer
    from dbexec.options import ConnectionOptions

# Registry of driver name -> transport class
_TRANSPORT_REGISTRY: dict[str, type['Transport']] = {}


def register_transport(drivername: str):
    """Decorator to register a transport class for a driver name.
    """
    def decorator(cls: type['Transport']) -> type['Transport']:
        _TRANSPORT_REGISTRY[drivername] = cls
        return cls
    return decorator


class Transport(ABC):
    """Call-level interface to one kind of database server.
    """

    # Queries used for session facts the transport cannot report directly
    current_user_sql: str | None = 'SELECT USER FROM DUAL'
    version_banner_sql: str | None = 'SELECT banner FROM v$version'

    @abstractmethod
    def open(self, options: 'ConnectionOptions') -> Any:
        """Authenticate and return a session handle.

        Args:
            options: Connection options with credentials and target
        """

    @abstractmethod
    def close(self, session: Any) -> None:
        """End the session, discarding uncommitted work."""

    @abstractmethod
    def prepare(self, session: Any, sql: str) -> Any:
        """Prepare statement text and return a statement handle."""

    @abstractmethod
    def bind(self, handle: Any, key: int | str, buffer: 'Buffer') -> None:
        """Attach a buffer to a placeholder, by 1-based position or by name."""

    @abstractmethod
    def execute(self, handle: Any, iters: int | None = None) -> None:
        """Execute once, or ``iters`` times over array buffers.

        Output values are written back into the bound buffers.
        """

    @abstractmethod
    def row_count(self, handle: Any) -> int:
        """Rows affected by DML, or rows fetched so far for a query."""

    @abstractmethod
    def column_count(self, handle: Any) -> int:
        """Number of select-list columns; zero when no result set."""

    @abstractmethod
    def describe_column(self, handle: Any, index: int) -> ColumnMetadata:
        """Metadata of the select-list column at 1-based ``index``."""

    @abstractmethod
    def fetch_next(self, handle: Any) -> tuple | None:
        """Next raw row as a tuple of wire values, or None at end of data."""

    @abstractmethod
    def reset(self, handle: Any) -> None:
        """Drop binds and results so a cached handle can be prepared again."""

    @abstractmethod
    def free(self, handle: Any) -> None:
        """Release the statement handle."""

    @abstractmethod
    def commit(self, session: Any) -> None:
        """Commit the session's transaction."""

    @abstractmethod
    def rollback(self, session: Any) -> None:
        """Roll back the session's transaction."""

    def set_prefetch(self, handle: Any, rows: int) -> None:
        """Hint how many rows to transfer per round trip."""

    def lookup_named_type(self, session: Any, name: str) -> TypeDescriptor:
        """Describe a named (object) type known to the server."""
        raise UnknownType(f'unknown named type: {name}')

    def server_release(self, session: Any) -> int | str | None:
        """Server release number, or None to fall back to the banner query."""
        return None

    def charset_name(self, session: Any) -> str | None:
        """Database character set name."""
        return None

    @classmethod
    def validate_options(cls, options: 'ConnectionOptions') -> None:
        """Raise ValueError for options this transport cannot honor."""
