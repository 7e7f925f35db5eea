"""
In-memory cache backend.

Keeps payloads and the index in process-local dictionaries. Useful for tests
and for hosts that only want request coalescing without persistence.
"""

import copy
import logging
import threading
import time
from typing import Callable, Dict, List, Tuple

from imgforge.constants.constants import ConnectionKind
from imgforge.io.base import CacheBackend, EntryStat, IndexEntries, IndexUpdate, validate_key

logger = logging.getLogger(__name__)


class MemoryCacheBackend(CacheBackend):
    kind = ConnectionKind.MEMORY

    def __init__(self, clock: Callable[[], float] = time.time):
        self._entries: Dict[str, Tuple[bytes, float]] = {}
        self._index: IndexEntries = {}
        self._lock = threading.RLock()
        self._clock = clock

    def read(self, key: str) -> bytes:
        with self._lock:
            if validate_key(key) not in self._entries:
                raise FileNotFoundError(f"Memory cache entry not found: {key}")
            return self._entries[key][0]

    def write(self, key: str, data: bytes) -> None:
        with self._lock:
            self._entries[validate_key(key)] = (bytes(data), self._clock())

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(validate_key(key), None) is not None

    def list_keys(self) -> List[str]:
        with self._lock:
            return sorted(self._entries)

    def stat(self, key: str) -> EntryStat:
        with self._lock:
            if validate_key(key) not in self._entries:
                raise FileNotFoundError(f"Memory cache entry not found: {key}")
            data, mtime = self._entries[key]
            return EntryStat(size=len(data), mtime=mtime)

    def load_index(self) -> IndexEntries:
        with self._lock:
            return copy.deepcopy(self._index)

    def update_index(self, update_func: IndexUpdate) -> IndexEntries:
        with self._lock:
            self._index = update_func(copy.deepcopy(self._index))
            return copy.deepcopy(self._index)

    def clear(self) -> None:
        """Drop every payload and index record."""
        with self._lock:
            self._entries.clear()
            self._index.clear()
        logger.debug("Cleared memory cache backend")
