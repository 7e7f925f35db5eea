"""
Abstract base class for cache storage backends.

A cache backend stores opaque encoded payloads under string keys and keeps a
side index of per-entry records (creation time, ttl, size, source reference).
Keys are relative, ``/``-separated names; they never contain ``..`` segments
and are never absolute, so every backend can map them onto its own namespace.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Any, Callable, ContextManager, Dict, Iterable, List, Mapping, Optional, Union

from imgforge.constants.constants import ConnectionKind
from imgforge.io.exceptions import StorageResolutionError

logger = logging.getLogger(__name__)

IndexEntries = Dict[str, Dict[str, Any]]
IndexUpdate = Callable[[IndexEntries], IndexEntries]


@dataclass(frozen=True)
class EntryStat:
    """Size and modification time of a stored payload."""
    size: int
    mtime: float


def validate_key(key: str) -> str:
    """
    Check that ``key`` is a relative, normalized entry name.

    Raises:
        StorageResolutionError: If the key is empty, absolute or escapes the root
    """
    if not isinstance(key, str) or not key.strip():
        raise StorageResolutionError(f"Invalid cache key: {key!r}")
    if key.startswith("/") or "\\" in key:
        raise StorageResolutionError(f"Cache key must be a relative path: {key!r}")
    parts = key.split("/")
    if any(part in ("", ".", "..") for part in parts):
        raise StorageResolutionError(f"Cache key contains an invalid segment: {key!r}")
    return key


class CacheBackend(ABC):
    """
    Storage operations required by the cache store.

    Implementations must make `write` atomic with respect to `read`: a reader
    sees either the previous payload or the complete new one.
    """

    kind: ConnectionKind

    @abstractmethod
    def read(self, key: str) -> bytes:
        """
        Return the payload stored under ``key``.

        Raises:
            FileNotFoundError: If no payload is stored under ``key``
        """
        pass

    @abstractmethod
    def write(self, key: str, data: bytes) -> None:
        """
        Store ``data`` under ``key``, replacing any previous payload.

        Raises:
            StorageWriteError: If the payload cannot be written
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove the payload; returns False if nothing was stored."""
        pass

    @abstractmethod
    def list_keys(self) -> List[str]:
        """All stored payload keys, sorted. Index and lock files are excluded."""
        pass

    @abstractmethod
    def stat(self, key: str) -> EntryStat:
        """
        Raises:
            FileNotFoundError: If no payload is stored under ``key``
        """
        pass

    @abstractmethod
    def load_index(self) -> IndexEntries:
        """Snapshot of the side index (key → record)."""
        pass

    @abstractmethod
    def update_index(self, update_func: IndexUpdate) -> IndexEntries:
        """
        Apply ``update_func`` to the index as one read-modify-write.

        Raises:
            IndexWriteError: If the index cannot be updated
        """
        pass

    def exists(self, key: str) -> bool:
        try:
            self.stat(key)
        except (FileNotFoundError, StorageResolutionError):
            return False
        return True

    def key_lock(self, key: str, timeout: float) -> ContextManager[None]:
        """Cross-process build lock for ``key``; in-process locking is the store's job."""
        return nullcontext()

    def is_locked(self, key: str) -> bool:
        return False

    def sweep_locks(self) -> int:
        """Remove leftover lock artifacts; returns the number removed."""
        return 0

    def record_entry(self, key: str, record: Mapping[str, Any]) -> None:
        def update_func(entries: IndexEntries) -> IndexEntries:
            entries[key] = dict(record)
            return entries
        self.update_index(update_func)

    def remove_records(self, keys: Iterable[str]) -> None:
        doomed = set(keys)
        if not doomed:
            return

        def update_func(entries: IndexEntries) -> IndexEntries:
            for key in doomed:
                entries.pop(key, None)
            return entries
        self.update_index(update_func)

    def merge_records(self, added: Mapping[str, Mapping[str, Any]], removed: Iterable[str] = ()) -> None:
        """Add and remove several records in a single index update."""
        removed = set(removed)
        if not added and not removed:
            return

        def update_func(entries: IndexEntries) -> IndexEntries:
            for key in removed:
                entries.pop(key, None)
            for key, record in added.items():
                entries.setdefault(key, dict(record))
            return entries
        self.update_index(update_func)


def _create_cache_backend(kind: Union[ConnectionKind, str],
                          config: Optional[Mapping[str, Any]] = None) -> CacheBackend:
    """
    Create a cache backend for a connection kind.

    This is the canonical factory used by the connection manager; object-store
    kinds are served by the zarr backend through fsspec.
    """
    # Import here to avoid circular imports
    from imgforge.io.disk import DiskCacheBackend
    from imgforge.io.memory import MemoryCacheBackend
    from imgforge.io.zarr import ZarrCacheBackend

    kind = ConnectionKind(kind)
    config = dict(config or {})
    if kind is ConnectionKind.LOCAL:
        return DiskCacheBackend(config["cache_directory"])
    if kind is ConnectionKind.MEMORY:
        return MemoryCacheBackend()
    return ZarrCacheBackend.from_connection(kind, config)
