"""
Transport factory for driver-specific call-level interfaces.
"""
from functools import lru_cache

from dbexec.transport.base import _TRANSPORT_REGISTRY
from dbexec.transport.base import Transport as Transport
from dbexec.transport.base import register_transport as register_transport
from dbexec.transport.sqlite import SQLiteTransport as SQLiteTransport


def _validate_drivername(drivername: str) -> None:
    """Raise ValueError if drivername is not registered."""
    if drivername not in _TRANSPORT_REGISTRY:
        available = list(_TRANSPORT_REGISTRY.keys())
        raise ValueError(f'Unsupported driver: {drivername}. Available: {available}')


@lru_cache(maxsize=8)
def _get_transport(drivername: str) -> Transport:
    """Get cached transport instance for a driver name."""
    _validate_drivername(drivername)
    return _TRANSPORT_REGISTRY[drivername]()


def get_transport(drivername: str) -> Transport:
    """Get transport instance for a driver name."""
    return _get_transport(drivername)


def get_available_drivers() -> list[str]:
    """Return list of registered driver names."""
    return list(_TRANSPORT_REGISTRY.keys())


def is_supported_driver(drivername: str) -> bool:
    """Check if a driver name is registered."""
    return drivername in _TRANSPORT_REGISTRY


def get_transport_class(drivername: str) -> type[Transport]:
    """Get the transport class for a driver name without instantiating."""
    _validate_drivername(drivername)
    return _TRANSPORT_REGISTRY[drivername]
