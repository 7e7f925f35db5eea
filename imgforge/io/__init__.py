"""
Storage layer for imgforge: cache backends, atomic file helpers and the
default source loader.
"""

from imgforge.io.atomic import FileLockError, FileLockTimeoutError, file_lock
from imgforge.io.base import CacheBackend, EntryStat, _create_cache_backend, validate_key
from imgforge.io.exceptions import IndexWriteError, StorageResolutionError, StorageWriteError
from imgforge.io.sources import SourceLoader

__all__ = [
    "CacheBackend",
    "EntryStat",
    "FileLockError",
    "FileLockTimeoutError",
    "IndexWriteError",
    "SourceLoader",
    "StorageResolutionError",
    "StorageWriteError",
    "_create_cache_backend",
    "file_lock",
    "validate_key",
]
