"""
Atomic cache index writer with concurrency safety.

The disk backend keeps its side index as a JSON document next to the stored
files. Every change is a locked read-modify-write so that several processes
serving the same cache directory merge their updates instead of overwriting
each other.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from imgforge.io.atomic import CACHE_FILES, FileLockError, atomic_update_json, read_json
from imgforge.io.base import IndexEntries, IndexUpdate
from imgforge.io.exceptions import IndexWriteError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexConfig:
    """Configuration constants for index operations."""
    ENTRIES_KEY: str = "entries"
    VERSION_KEY: str = "version"
    VERSION: int = 1
    DEFAULT_TIMEOUT: float = CACHE_FILES.LOCK_TIMEOUT


INDEX_CONFIG = IndexConfig()


def _empty_index() -> Dict[str, Any]:
    return {INDEX_CONFIG.VERSION_KEY: INDEX_CONFIG.VERSION, INDEX_CONFIG.ENTRIES_KEY: {}}


class CacheIndexWriter:
    """Locked JSON index for one cache directory."""

    def __init__(self, index_path: Union[str, Path], timeout: float = INDEX_CONFIG.DEFAULT_TIMEOUT):
        self.index_path = Path(index_path)
        self.timeout = timeout

    def _ensure_structure(self, data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        data = data if isinstance(data, dict) else _empty_index()
        if not isinstance(data.get(INDEX_CONFIG.ENTRIES_KEY), dict):
            data[INDEX_CONFIG.ENTRIES_KEY] = {}
        data.setdefault(INDEX_CONFIG.VERSION_KEY, INDEX_CONFIG.VERSION)
        return data

    def read(self) -> IndexEntries:
        data = self._ensure_structure(read_json(self.index_path))
        return data[INDEX_CONFIG.ENTRIES_KEY]

    def update(self, update_func: IndexUpdate) -> IndexEntries:
        """
        Apply ``update_func`` to the entries under the index lock.

        Raises:
            IndexWriteError: If the lock cannot be taken or the write fails
        """
        def apply(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
            data = self._ensure_structure(data)
            data[INDEX_CONFIG.ENTRIES_KEY] = update_func(data[INDEX_CONFIG.ENTRIES_KEY])
            return data

        try:
            written = atomic_update_json(self.index_path, apply, self.timeout, _empty_index())
        except FileLockError as e:
            raise IndexWriteError(f"Failed to update cache index {self.index_path}: {e}") from e
        logger.debug(f"Updated cache index {self.index_path}")
        return written[INDEX_CONFIG.ENTRIES_KEY]
