"""
Named storage connections.

A connection pairs a name with a backend kind and its configuration. The
manager tracks which connection is the default and lazily builds one cache
backend per connection the first time it is used.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional

from imgforge.constants.constants import ConnectionKind
from imgforge.core.config import ConnectionSpec, TransformConfig
from imgforge.core.exceptions import BackendInitError, ConnectionNotFoundError, ValidationError
from imgforge.core.xdg_paths import get_imgforge_cache_dir
from imgforge.io.base import CacheBackend, _create_cache_backend

logger = logging.getLogger(__name__)

REQUIRED_FIELDS: Dict[ConnectionKind, FrozenSet[str]] = {
    ConnectionKind.LOCAL: frozenset({"cache_directory"}),
    ConnectionKind.MEMORY: frozenset(),
    ConnectionKind.ZARR: frozenset(),
    ConnectionKind.S3: frozenset({"key", "secret", "region", "bucket"}),
    ConnectionKind.R2: frozenset({"account_id", "key", "secret", "bucket"}),
    ConnectionKind.DOSPACES: frozenset({"key", "secret", "region", "space"}),
}

SECRET_FIELDS = frozenset({"key", "secret", "password", "token"})
MASK = "********"


@dataclass(frozen=True)
class NamedConnection:
    """A configured storage connection."""
    name: str
    kind: ConnectionKind
    config: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_spec(cls, spec: ConnectionSpec) -> "NamedConnection":
        config = dict(spec.config)
        if spec.kind is ConnectionKind.LOCAL and not config.get("cache_directory"):
            config["cache_directory"] = str(get_imgforge_cache_dir())
        return cls(name=spec.name, kind=spec.kind, config=config)

    @property
    def missing_fields(self) -> List[str]:
        return sorted(f for f in REQUIRED_FIELDS[self.kind] if not self.config.get(f))

    @property
    def is_valid(self) -> bool:
        return not self.missing_fields

    def masked_config(self) -> Dict[str, Any]:
        """Configuration with credentials hidden, safe to log or display."""
        return {k: (MASK if k in SECRET_FIELDS and v else v) for k, v in self.config.items()}

    def __repr__(self) -> str:
        return f"NamedConnection({self.name!r}, {self.kind.value}, {self.masked_config()})"


class ConnectionManager:
    """
    Registry of named connections with exactly one default.

    Args:
        connections: Initial connections; the first one is the default unless
            ``default`` names another
        default: Name of the default connection
    """

    def __init__(self, connections: Iterable[NamedConnection] = (), default: Optional[str] = None):
        self._connections: Dict[str, NamedConnection] = {}
        self._backends: Dict[str, CacheBackend] = {}
        self._lock = threading.Lock()
        self._default: Optional[str] = None
        for connection in connections:
            self.add(connection)
        if default is not None:
            self.set_default_connection(default)

    @classmethod
    def from_config(cls, config: TransformConfig) -> "ConnectionManager":
        connections = [NamedConnection.from_spec(spec) for spec in config.connections]
        manager = cls(connections)
        if config.default_connection in manager:
            manager.set_default_connection(config.default_connection)
        else:
            logger.warning(f"Default connection '{config.default_connection}' is not configured; "
                           f"using '{manager._default}'")
        return manager

    def __contains__(self, name: object) -> bool:
        return name in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    def add(self, connection: NamedConnection) -> None:
        """Add or replace a connection; a replaced connection's backend is rebuilt on next use."""
        with self._lock:
            self._connections[connection.name] = connection
            self._backends.pop(connection.name, None)
            if self._default is None and connection.is_valid:
                self._default = connection.name
        if not connection.is_valid:
            logger.warning(f"Connection '{connection.name}' is missing {connection.missing_fields}")

    def get(self, name: Optional[str] = None) -> NamedConnection:
        """
        Return the connection called ``name``, or the default one.

        Raises:
            ConnectionNotFoundError: If no such connection is configured
        """
        name = name or self._default
        if name is None or name not in self._connections:
            raise ConnectionNotFoundError(f"No storage connection named '{name}'")
        return self._connections[name]

    def list_connections(self) -> List[NamedConnection]:
        return sorted(self._connections.values(), key=lambda c: c.name)

    @property
    def default(self) -> NamedConnection:
        return self.get(None)

    def set_default_connection(self, name: str) -> None:
        """
        Raises:
            ConnectionNotFoundError: If ``name`` is not configured
            ValidationError: If the connection is missing required fields
        """
        connection = self.get(name)
        if not connection.is_valid:
            raise ValidationError(
                f"Connection '{name}' cannot be the default; missing {connection.missing_fields}"
            )
        self._default = connection.name
        logger.info(f"Default storage connection set to '{name}'")

    def backend_for(self, name: Optional[str] = None) -> CacheBackend:
        """
        Backend for a connection, built on first use.

        Raises:
            ConnectionNotFoundError: If the connection is not configured
            BackendInitError: If the connection is invalid or its backend cannot be built
        """
        connection = self.get(name)
        with self._lock:
            backend = self._backends.get(connection.name)
            if backend is not None:
                return backend
            if not connection.is_valid:
                raise BackendInitError(
                    f"Connection '{connection.name}' is missing {connection.missing_fields}"
                )
            try:
                backend = _create_cache_backend(connection.kind, connection.config)
            except BackendInitError:
                raise
            except (ImportError, OSError, KeyError, ValueError) as e:
                raise BackendInitError(
                    f"Cannot initialise {connection.kind.value} backend for '{connection.name}': {e}"
                ) from e
            self._backends[connection.name] = backend
        logger.debug(f"Initialised {backend!r} for connection '{connection.name}'")
        return backend
