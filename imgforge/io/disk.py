"""
Disk cache backend.

Payloads live as plain files under the connection's cache directory, named by
their key. Writes go through a temporary file and an atomic rename; the side
index is ``cache_index.json`` in the root, maintained by `CacheIndexWriter`.
Build locks are ``<entry>.lock`` files held with ``fcntl``.
"""

import logging
import os
from collections import deque
from pathlib import Path
from typing import ContextManager, List, Union

from imgforge.constants.constants import CACHE_INDEX_FILENAME, ConnectionKind
from imgforge.io.atomic import (
    CACHE_FILES,
    FileLockError,
    atomic_write_bytes,
    file_lock,
    is_cache_artifact,
    is_lock_held,
    lock_path_for,
    remove_lock_file,
)
from imgforge.io.base import CacheBackend, EntryStat, IndexEntries, IndexUpdate, validate_key
from imgforge.io.exceptions import StorageWriteError
from imgforge.io.metadata_writer import CacheIndexWriter

logger = logging.getLogger(__name__)


class DiskCacheBackend(CacheBackend):
    """Cache backend over a local directory."""

    kind = ConnectionKind.LOCAL

    def __init__(self, root: Union[str, Path], index_filename: str = CACHE_INDEX_FILENAME):
        self.root = Path(root).expanduser()
        self.root.mkdir(parents=True, exist_ok=True)
        self.index_filename = index_filename
        self.index = CacheIndexWriter(self.root / index_filename)

    def __repr__(self) -> str:
        return f"DiskCacheBackend({self.root})"

    def path_for(self, key: str) -> Path:
        return self.root / validate_key(key)

    def read(self, key: str) -> bytes:
        path = self.path_for(key)
        if not path.is_file():
            raise FileNotFoundError(f"Cache entry not found: {path}")
        return path.read_bytes()

    def write(self, key: str, data: bytes) -> None:
        path = self.path_for(key)
        try:
            atomic_write_bytes(path, data)
        except FileLockError as e:
            raise StorageWriteError(f"Failed to write cache entry {key}: {e}") from e

    def delete(self, key: str) -> bool:
        path = self.path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        remove_lock_file(lock_path_for(path))
        self._prune_empty_parents(path.parent)
        return True

    def sweep_locks(self) -> int:
        """Remove lock files that nobody holds and whose entry is gone."""
        removed = 0
        index_lock = lock_path_for(self.root / self.index_filename)
        for lock_path in sorted(self.root.rglob(f"*{CACHE_FILES.LOCK_SUFFIX}")):
            if lock_path == index_lock or not lock_path.is_file():
                continue
            payload = lock_path.with_name(lock_path.name[:-len(CACHE_FILES.LOCK_SUFFIX)])
            if payload.exists():
                continue
            if remove_lock_file(lock_path):
                removed += 1
                self._prune_empty_parents(lock_path.parent)
        if removed:
            logger.info(f"Removed {removed} stale lock files from {self.root}")
        return removed

    def _prune_empty_parents(self, directory: Path) -> None:
        while directory != self.root and self.root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                return
            directory = directory.parent

    def _is_payload(self, path: Path) -> bool:
        return not (path.name == self.index_filename or is_cache_artifact(path.name))

    def list_keys(self) -> List[str]:
        keys = []
        pending = deque([self.root])
        while pending:
            directory = pending.popleft()
            try:
                entries = list(os.scandir(directory))
            except OSError as e:
                logger.warning(f"Skipping unreadable cache directory {directory}: {e}")
                continue
            for entry in entries:
                path = Path(entry.path)
                if entry.is_dir(follow_symlinks=False):
                    pending.append(path)
                elif entry.is_file() and self._is_payload(path):
                    keys.append(path.relative_to(self.root).as_posix())
        return sorted(keys)

    def stat(self, key: str) -> EntryStat:
        st = self.path_for(key).stat()
        return EntryStat(size=st.st_size, mtime=st.st_mtime)

    def load_index(self) -> IndexEntries:
        return self.index.read()

    def update_index(self, update_func: IndexUpdate) -> IndexEntries:
        return self.index.update(update_func)

    def key_lock(self, key: str, timeout: float) -> ContextManager[None]:
        return file_lock(lock_path_for(self.path_for(key)), timeout=timeout)

    def is_locked(self, key: str) -> bool:
        return is_lock_held(lock_path_for(self.path_for(key)))
