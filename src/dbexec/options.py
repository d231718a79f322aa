import re
from dataclasses import dataclass

from dbexec.transport import get_available_drivers, get_transport_class
from dbexec.transport import is_supported_driver

from libb import ConfigOptions, scriptname

__all__ = [
    'ConnectionOptions',
    'parse_connect_string',
    'PRIVILEGES',
]

PRIVILEGES = ('SYSDBA', 'SYSOPER', 'SYSASM')

_CONNECT_STRING = re.compile(r"""
    \A(?P<username>[^/@\s]*)
    (?:/(?P<password>[^@\s]*))?
    (?:@(?P<dbname>\S+))?
    (?:\s+as\s+(?P<privilege>\w+))?\s*\Z
""", re.IGNORECASE | re.VERBOSE)


def parse_connect_string(connstr: str) -> tuple[str | None, str | None, str | None, str | None]:
    """Split ``username/password@dbname [as privilege]``.

    ``/`` alone (or ``/@dbname``) means external authentication and yields
    no username or password.
    """
    match = _CONNECT_STRING.match(connstr.strip())
    if not match:
        raise ValueError(f'invalid connect string: {connstr!r}')
    username = match.group('username') or None
    password = match.group('password') or None
    dbname = match.group('dbname') or None
    privilege = match.group('privilege')
    return username, password, dbname, privilege.upper() if privilege else None


@dataclass
class ConnectionOptions(ConfigOptions):
    """Options

    supported driver names: any registered transport, `sqlite` built in

    - statement_cache_size: closed statements kept for reuse per connection (0 disables)
    - prefetch_rows: default rows per fetch round trip for new cursors
    - autocommit: commit after every successful DML execute
    - pool_name: identifier of a server-side connection pool to draw from
    """
    drivername: str = 'sqlite'
    database: str = None
    username: str = None
    password: str = None
    dbname: str = None
    privilege: str = None
    timeout: int = 0
    appname: str = None
    statement_cache_size: int = 0
    prefetch_rows: int = None
    autocommit: bool = False
    use_pool: bool = False
    pool_name: str = None

    def __post_init__(self):
        if not is_supported_driver(self.drivername):
            available = get_available_drivers()
            raise ValueError(f'drivername must be one of: {available}')
        if self.privilege is not None:
            self.privilege = self.privilege.upper()
            if self.privilege not in PRIVILEGES:
                raise ValueError(f'unknown privilege type {self.privilege}')
        if self.statement_cache_size < 0:
            raise ValueError('statement_cache_size must not be negative')
        if self.prefetch_rows is not None and self.prefetch_rows < 1:
            raise ValueError('prefetch_rows must be positive')
        self.appname = self.appname or scriptname() or 'python_console'
        get_transport_class(self.drivername).validate_options(self)
