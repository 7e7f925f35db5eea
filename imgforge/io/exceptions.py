"""Exceptions raised at the storage boundary."""


class StorageResolutionError(ValueError):
    """Raised when a cache key cannot be resolved to a location in a backend."""
    pass


class StorageWriteError(RuntimeError):
    """Raised when writing an entry or the cache index fails."""
    pass


class IndexWriteError(StorageWriteError):
    """Raised when a cache index read-modify-write cannot complete."""
    pass
