"""
Atomic cache file operations.

Payloads and the JSON index are written to a hidden temporary file beside
their target and moved into place with ``os.replace``, so a reader sees the
old file or the new one and never a partial write. Index updates are
read-modify-write cycles under an exclusive ``fcntl`` lock held on a
``<name>.lock`` sibling, which lets several processes share one cache
directory.
"""

import fcntl
import json
import logging
import os
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
JsonDocument = Dict[str, Any]


@dataclass(frozen=True)
class CacheFileConfig:
    """Naming and timing constants for cache files."""
    LOCK_SUFFIX: str = '.lock'
    TEMP_PREFIX: str = '.tmp-'
    LOCK_TIMEOUT: float = 30.0
    POLL_INTERVAL: float = 0.05
    JSON_INDENT: int = 2


CACHE_FILES = CacheFileConfig()


class FileLockError(Exception):
    """Raised when a cache file cannot be locked or replaced."""


class FileLockTimeoutError(FileLockError):
    """Raised when another holder keeps a cache lock past the timeout."""


def lock_path_for(path: PathLike) -> Path:
    """``entry.jpg`` → ``entry.jpg.lock`` in the same directory."""
    path = Path(path)
    return path.with_name(path.name + CACHE_FILES.LOCK_SUFFIX)


def is_cache_artifact(name: str) -> bool:
    """True for lock and temporary files, which are never cache entries."""
    return name.endswith(CACHE_FILES.LOCK_SUFFIX) or name.startswith(CACHE_FILES.TEMP_PREFIX)


def _open_locked(lock_path: Path) -> Optional[int]:
    try:
        fd = os.open(str(lock_path), os.O_CREAT | os.O_WRONLY, 0o644)
    except OSError:
        return None
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        os.close(fd)
        return None
    return fd


def _unlock(fd: int, lock_path: Path) -> None:
    try:
        fcntl.flock(fd, fcntl.LOCK_UN)
    except OSError as e:
        logger.warning(f"Could not unlock {lock_path}: {e}")
    finally:
        os.close(fd)


def is_lock_held(lock_path: PathLike) -> bool:
    """True when some other holder owns ``lock_path`` right now."""
    lock_path = Path(lock_path)
    if not lock_path.exists():
        return False
    fd = _open_locked(lock_path)
    if fd is None:
        return True
    _unlock(fd, lock_path)
    return False


def remove_lock_file(lock_path: PathLike) -> bool:
    """
    Delete ``lock_path`` unless another holder owns it.

    The file is unlinked while locked, so a concurrent holder never shares a
    lock with a file that is about to disappear.

    Returns:
        True if the file was removed
    """
    lock_path = Path(lock_path)
    if not lock_path.exists():
        return False
    fd = _open_locked(lock_path)
    if fd is None:
        return False
    try:
        lock_path.unlink()
    except FileNotFoundError:
        return False
    finally:
        _unlock(fd, lock_path)
    logger.debug(f"Removed lock file {lock_path}")
    return True


@contextmanager
def file_lock(lock_path: PathLike, timeout: float = CACHE_FILES.LOCK_TIMEOUT,
              poll_interval: float = CACHE_FILES.POLL_INTERVAL) -> Iterator[None]:
    """
    Hold an exclusive lock on ``lock_path`` for the duration of the block.

    Raises:
        FileLockTimeoutError: If the lock is still held elsewhere after ``timeout``
        FileLockError: If the lock directory cannot be created
    """
    lock_path = Path(lock_path)
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FileLockError(f"Cannot create lock directory for {lock_path}: {e}") from e

    deadline = time.monotonic() + timeout
    fd = _open_locked(lock_path)
    while fd is None:
        if time.monotonic() >= deadline:
            raise FileLockTimeoutError(f"Lock {lock_path} still held after {timeout}s")
        time.sleep(poll_interval)
        fd = _open_locked(lock_path)

    logger.debug(f"Locked {lock_path}")
    try:
        yield
    finally:
        _unlock(fd, lock_path)
        logger.debug(f"Unlocked {lock_path}")


def _replace_with(target: Path, payload: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f"{CACHE_FILES.TEMP_PREFIX}{target.name}.")
    try:
        with os.fdopen(fd, 'wb') as tmp:
            tmp.write(payload)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_name, target)
    except OSError:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def atomic_write_bytes(file_path: PathLike, data: bytes) -> None:
    """
    Replace ``file_path`` with ``data`` in one step.

    Raises:
        FileLockError: If the temporary file cannot be written or moved
    """
    file_path = Path(file_path)
    try:
        _replace_with(file_path, data)
    except OSError as e:
        raise FileLockError(f"Could not write {file_path}: {e}") from e
    logger.debug(f"Wrote {len(data)} bytes to {file_path}")


def atomic_write_json(file_path: PathLike, document: JsonDocument,
                      indent: int = CACHE_FILES.JSON_INDENT) -> None:
    """Serialize ``document`` with sorted keys and replace ``file_path`` with it."""
    try:
        encoded = json.dumps(document, indent=indent, sort_keys=True).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise FileLockError(f"Index document for {file_path} is not JSON serializable: {e}") from e
    atomic_write_bytes(file_path, encoded)


def read_json(file_path: PathLike, default: Optional[JsonDocument] = None) -> Optional[JsonDocument]:
    """The parsed document, or ``default`` when the file is absent or corrupt."""
    file_path = Path(file_path)
    try:
        text = file_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return default
    except OSError as e:
        logger.warning(f"Cannot read {file_path}: {e}")
        return default
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning(f"Corrupt JSON in {file_path}, starting from default: {e}")
        return default


def atomic_update_json(file_path: PathLike,
                       update: Callable[[Optional[JsonDocument]], JsonDocument],
                       lock_timeout: float = CACHE_FILES.LOCK_TIMEOUT,
                       default: Optional[JsonDocument] = None) -> JsonDocument:
    """
    Locked read-modify-write of a JSON document.

    ``update`` receives the current document (or ``default``) and returns the
    document to store. Nothing is written when it raises.

    Returns:
        The document written

    Raises:
        FileLockTimeoutError: If the lock is not acquired within ``lock_timeout``
        FileLockError: If ``update`` fails or the write fails
    """
    file_path = Path(file_path)
    with file_lock(lock_path_for(file_path), timeout=lock_timeout):
        current = read_json(file_path, default)
        try:
            updated = update(current)
        except Exception as e:
            raise FileLockError(f"Index update for {file_path} failed: {e}") from e
        atomic_write_json(file_path, updated)
    return updated
