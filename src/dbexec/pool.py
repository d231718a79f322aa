"""
Server-side connection pool reference.

The pool itself lives in the transport or on the server; the client only
keeps its identifier, passes it at connect time and holds a non-owning
back-reference from each connection drawn from it.
"""
import dataclasses
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from dbexec.exceptions import ValidationError

if TYPE_CHECKING:
    from dbexec.connection import Connection
    from dbexec.options import ConnectionOptions


@dataclass(frozen=True)
class ConnectionPool:
    """Identifier of a connection pool to draw sessions from."""
    pool_name: str

    def __post_init__(self):
        if not self.pool_name:
            raise ValidationError('pool_name is required')

    def __str__(self) -> str:
        return self.pool_name

    def connect(self, options: 'ConnectionOptions | dict[str, Any] | str | None' = None,
                config: Any | None = None, **kw: Any) -> 'Connection':
        """Open a session drawn from this pool.

        Accepts the same arguments as `dbexec.connect`.
        """
        from dbexec.connection import connect
        from dbexec.options import ConnectionOptions

        if isinstance(options, ConnectionOptions):
            cn = connect(dataclasses.replace(options, pool_name=self.pool_name))
        elif options is None:
            cn = connect(pool_name=self.pool_name, **kw)
        else:
            cn = connect(options, config, pool_name=self.pool_name, **kw)
        cn.pool = self
        return cn
