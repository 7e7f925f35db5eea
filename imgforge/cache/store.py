"""
Cache store.

`CacheStore` sits between the transformer and the storage backends. It reads
and writes payloads by key on a named connection, keeps the per-connection
index current, never serves an expired entry, coordinates builders of the same
key, and audits a connection against its index.

Expiry is decided from the index record (``created_at`` + ``ttl``); entries
without a record fall back to the ttl encoded in the key and the stored file's
modification time. Expired entries found by `get` are removed in the
background; `audit` removes them synchronously.
"""

import dataclasses
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple

from imgforge.cache.connections import ConnectionManager
from imgforge.cache.keys import parse_ttl_from_key
from imgforge.constants.constants import NO_CACHE, OrphanPolicy
from imgforge.core.config import AuditConfig, CacheConfig
from imgforge.core.exceptions import ImgForgeError, StoreIOError
from imgforge.io.atomic import FileLockError
from imgforge.io.base import CacheBackend, IndexEntries, validate_key
from imgforge.io.exceptions import IndexWriteError, StorageResolutionError, StorageWriteError

logger = logging.getLogger(__name__)


@dataclass
class AuditReport:
    """Counters collected by one audit of a connection."""
    connection: str
    files_found: int = 0
    database_entries: int = 0
    total_size: int = 0
    files_without_db_entries: int = 0
    files_removed: int = 0
    entries_removed: int = 0
    entries_added: int = 0
    files_size_removed: int = 0
    locks_removed: int = 0
    cancelled: bool = False
    started_at: float = 0.0
    finished_at: Optional[float] = None

    def as_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class AuditHandle:
    """A background audit that can be cancelled between entries."""
    future: "Future[AuditReport]"
    cancel_event: threading.Event

    def cancel(self) -> None:
        self.cancel_event.set()

    def result(self, timeout: Optional[float] = None) -> AuditReport:
        return self.future.result(timeout)


class CacheStore:
    """
    Keyed payload storage over named connections.

    Args:
        connections: Connection manager that resolves names to backends
        cache_config: Lock, write and worker settings
        audit_config: Orphan handling and audit schedule
        time_source: Clock returning epoch seconds
    """

    def __init__(self, connections: ConnectionManager, cache_config: CacheConfig = CacheConfig(),
                 audit_config: AuditConfig = AuditConfig(),
                 time_source: Callable[[], float] = time.time):
        self.connections = connections
        self.cache_config = cache_config
        self.audit_config = audit_config
        self.time_source = time_source

        self._guard = threading.Lock()
        self._key_locks: Dict[Tuple[str, str], List[Any]] = {}
        self._stale_pending: Set[Tuple[str, str]] = set()
        self._writing: Dict[Tuple[str, str], int] = {}
        self._maintenance = ThreadPoolExecutor(
            max_workers=max(1, cache_config.stale_removal_workers),
            thread_name_prefix="imgforge-maintenance",
        )
        self._writer = ThreadPoolExecutor(max_workers=2, thread_name_prefix="imgforge-write")
        self._schedule_stop = threading.Event()
        self._schedule_thread: Optional[threading.Thread] = None

    # ---------------------------------------------------------------- records

    def make_record(self, key: str, ttl_seconds: Optional[int], size: int,
                    source_ref: Optional[str] = None, created_at: Optional[float] = None) -> Dict[str, Any]:
        return {
            "created_at": self.time_source() if created_at is None else created_at,
            "ttl": ttl_seconds,
            "size": size,
            "source_ref": source_ref,
        }

    @staticmethod
    def is_expired(record: Dict[str, Any], now: float) -> bool:
        ttl = record.get("ttl")
        created_at = record.get("created_at")
        if ttl is None or ttl <= 0 or created_at is None:
            return False
        return now - float(created_at) > ttl

    def _record_for(self, backend: CacheBackend, key: str, index: IndexEntries) -> Dict[str, Any]:
        record = index.get(key)
        if record is not None:
            return record
        st = backend.stat(key)
        return self.make_record(key, parse_ttl_from_key(key), st.size, created_at=st.mtime)

    def _backend(self, connection: Optional[str]) -> Tuple[str, CacheBackend]:
        name = self.connections.get(connection).name
        return name, self.connections.backend_for(name)

    # ------------------------------------------------------------- operations

    def get(self, key: str, connection: Optional[str] = None) -> Optional[bytes]:
        """
        Payload for ``key``, or None on a miss or an expired entry.

        Raises:
            StoreIOError: If the backend cannot be read
        """
        name, backend = self._backend(connection)
        try:
            record = self._record_for(backend, key, backend.load_index())
            if self.is_expired(record, self.time_source()):
                logger.debug(f"Cache entry expired: {key}")
                self._schedule_stale_removal(name, backend, key)
                return None
            data = backend.read(key)
        except FileNotFoundError:
            logger.debug(f"Cache miss: {key}")
            return None
        except (OSError, StorageResolutionError) as e:
            raise StoreIOError(f"Cannot read cache entry {key} on '{name}': {e}") from e
        logger.debug(f"Cache hit: {key}")
        return data

    def put(self, key: str, data: bytes, ttl_seconds: int, source_ref: Optional[str] = None,
            connection: Optional[str] = None) -> bool:
        """
        Store ``data`` under ``key``. A ttl of 0 stores nothing.

        Returns:
            True if the payload was written

        Raises:
            StoreIOError: If the write fails or exceeds the write timeout
        """
        if ttl_seconds == NO_CACHE:
            logger.debug(f"Caching disabled for {key}; not storing")
            return False

        name, backend = self._backend(connection)
        try:
            validate_key(key)
        except StorageResolutionError as e:
            raise StoreIOError(str(e)) from e

        with self._writing_entry(name, key):
            future = self._writer.submit(backend.write, key, data)
            try:
                future.result(timeout=self.cache_config.write_timeout)
            except FutureTimeoutError as e:
                raise StoreIOError(f"Timed out writing {key} after {self.cache_config.write_timeout}s") from e
            except (StorageWriteError, OSError) as e:
                raise StoreIOError(f"Failed to write {key} on '{name}': {e}") from e

            try:
                backend.record_entry(key, self.make_record(key, ttl_seconds, len(data), source_ref))
            except IndexWriteError as e:
                logger.warning(f"Cache entry {key} written but not indexed: {e}")
        logger.debug(f"Stored {len(data)} bytes as {key} on '{name}'")
        return True

    def delete(self, key: str, connection: Optional[str] = None) -> bool:
        _, backend = self._backend(connection)
        try:
            removed = backend.delete(key)
            backend.remove_records([key])
        except (OSError, IndexWriteError, StorageResolutionError) as e:
            raise StoreIOError(f"Failed to delete {key}: {e}") from e
        return removed

    def invalidate_prefix(self, prefix: str, source_ref: Optional[str] = None,
                          connection: Optional[str] = None) -> int:
        """
        Remove every entry whose name starts with ``prefix``.

        When ``source_ref`` is given, entries whose index record names a
        different source are kept.

        Returns:
            Number of payloads removed
        """
        name, backend = self._backend(connection)

        def matches(key: str, record: Optional[Dict[str, Any]]) -> bool:
            if not key.rsplit("/", 1)[-1].startswith(prefix):
                return False
            recorded = (record or {}).get("source_ref")
            return source_ref is None or recorded is None or recorded == source_ref

        try:
            index = backend.load_index()
            doomed = [key for key in backend.list_keys() if matches(key, index.get(key))]
            removed = sum(1 for key in doomed if backend.delete(key))
            backend.remove_records(set(doomed) | {k for k, r in index.items() if matches(k, r)})
        except (OSError, IndexWriteError) as e:
            raise StoreIOError(f"Failed to invalidate '{prefix}' on '{name}': {e}") from e
        logger.info(f"Invalidated {removed} cache entries with prefix '{prefix}' on '{name}'")
        return removed

    def entries(self, connection: Optional[str] = None) -> IndexEntries:
        """Snapshot of the connection's index."""
        _, backend = self._backend(connection)
        return backend.load_index()

    # ------------------------------------------------------------------ locks

    def _local_lock(self, name: str, key: str) -> threading.Lock:
        with self._guard:
            slot = self._key_locks.setdefault((name, key), [threading.Lock(), 0])
            slot[1] += 1
            return slot[0]

    def _release_local(self, name: str, key: str, acquired: bool) -> None:
        with self._guard:
            slot = self._key_locks[(name, key)]
            if acquired:
                slot[0].release()
            slot[1] -= 1
            if slot[1] == 0:
                del self._key_locks[(name, key)]

    def is_building(self, key: str, connection: Optional[str] = None) -> bool:
        name = self.connections.get(connection).name
        return self._is_building(name, key)

    def _is_building(self, name: str, key: str) -> bool:
        with self._guard:
            slot = self._key_locks.get((name, key))
            return (slot is not None and slot[0].locked()) or (name, key) in self._writing

    @contextmanager
    def _writing_entry(self, name: str, key: str) -> Iterator[None]:
        # audits and stale removal leave the key alone until it is indexed
        with self._guard:
            self._writing[(name, key)] = self._writing.get((name, key), 0) + 1
        try:
            yield
        finally:
            with self._guard:
                self._writing[(name, key)] -= 1
                if self._writing[(name, key)] == 0:
                    del self._writing[(name, key)]

    @contextmanager
    def lock(self, key: str, connection: Optional[str] = None) -> Iterator[bool]:
        """
        Hold the build lock for ``key``.

        Yields True when the lock is held. When another builder keeps it past
        `CacheConfig.build_lock_timeout` the block still runs and yields False.
        """
        name, backend = self._backend(connection)
        timeout = self.cache_config.build_lock_timeout
        deadline = time.monotonic() + timeout

        with ExitStack() as stack:
            local = self._local_lock(name, key)
            acquired = local.acquire(timeout=timeout)
            stack.callback(self._release_local, name, key, acquired)
            if acquired:
                try:
                    stack.enter_context(backend.key_lock(key, max(0.0, deadline - time.monotonic())))
                except (FileLockError, StorageResolutionError) as e:
                    logger.warning(f"Build lock for {key} unavailable: {e}")
                    acquired = False
            else:
                logger.warning(f"Timed out after {timeout}s waiting for another build of {key}")
            yield acquired

    # ------------------------------------------------------------ maintenance

    def _schedule_stale_removal(self, name: str, backend: CacheBackend, key: str) -> None:
        with self._guard:
            if (name, key) in self._stale_pending:
                return
            self._stale_pending.add((name, key))
        self._maintenance.submit(self._remove_stale, name, backend, key)

    def _remove_stale(self, name: str, backend: CacheBackend, key: str) -> None:
        try:
            if self._is_building(name, key) or backend.is_locked(key):
                return
            record = self._record_for(backend, key, backend.load_index())
            if not self.is_expired(record, self.time_source()):
                return
            backend.delete(key)
            backend.remove_records([key])
            logger.info(f"Removed expired cache entry {key} from '{name}'")
        except FileNotFoundError:
            logger.debug(f"Expired cache entry {key} already gone")
        except (OSError, IndexWriteError, StorageResolutionError) as e:
            logger.warning(f"Failed to remove expired cache entry {key}: {e}")
        finally:
            with self._guard:
                self._stale_pending.discard((name, key))

    def audit(self, connection: Optional[str] = None,
              cancel_event: Optional[threading.Event] = None) -> AuditReport:
        """
        Reconcile a connection's files with its index.

        Expired files are removed; files without a record are indexed or
        removed per the orphan policy; records without a file are purged.
        Entries being built are skipped. Setting ``cancel_event`` stops the
        sweep between entries; work done so far is kept.

        Raises:
            StoreIOError: If the index cannot be updated
        """
        name, backend = self._backend(connection)
        cancel_event = cancel_event or threading.Event()
        now = self.time_source()
        report = AuditReport(connection=name, started_at=now)

        index = backend.load_index()
        keys = backend.list_keys()
        report.files_found = len(keys)
        report.database_entries = len(index)
        added: Dict[str, Dict[str, Any]] = {}
        removed: Set[str] = set()

        for key in keys:
            if cancel_event.is_set():
                break
            if self._is_building(name, key) or backend.is_locked(key):
                logger.debug(f"Audit skipping {key}: build in progress")
                continue
            try:
                st = backend.stat(key)
            except FileNotFoundError:
                continue
            report.total_size += st.size

            record = index.get(key)
            if record is None:
                report.files_without_db_entries += 1
            effective = record or self.make_record(key, parse_ttl_from_key(key), st.size, created_at=st.mtime)

            if self.is_expired(effective, now):
                if backend.delete(key):
                    report.files_removed += 1
                    report.files_size_removed += st.size
                if record is not None:
                    removed.add(key)
            elif record is None and self.audit_config.orphan_policy is OrphanPolicy.REMOVE:
                if backend.delete(key):
                    report.files_removed += 1
                    report.files_size_removed += st.size
            elif record is None:
                added[key] = effective

        report.cancelled = cancel_event.is_set()
        if not report.cancelled:
            listed = set(keys)
            for key in index:
                if key not in listed and key not in removed and not backend.exists(key):
                    removed.add(key)
            try:
                report.locks_removed = backend.sweep_locks()
            except OSError as e:
                logger.warning(f"Audit of '{name}' could not sweep lock files: {e}")

        try:
            backend.merge_records(added, removed)
        except IndexWriteError as e:
            raise StoreIOError(f"Audit of '{name}' could not update the index: {e}") from e
        report.entries_added = len(added)
        report.entries_removed = len(removed)
        report.finished_at = self.time_source()
        logger.info(f"Audit of '{name}': {report.files_removed} files removed, "
                    f"{report.entries_added} records added, {report.entries_removed} records purged"
                    f"{' (cancelled)' if report.cancelled else ''}")
        return report

    def start_audit(self, connection: Optional[str] = None) -> AuditHandle:
        """Run `audit` in the maintenance pool; the handle can cancel it."""
        cancel_event = threading.Event()
        future = self._maintenance.submit(self.audit, connection, cancel_event)
        return AuditHandle(future, cancel_event)

    def start_audit_schedule(self, interval: Optional[float] = None,
                             connection: Optional[str] = None) -> bool:
        """Audit ``connection`` every ``interval`` seconds until `close`; 0 disables."""
        interval = self.audit_config.audit_interval if interval is None else interval
        if interval <= 0 or self._schedule_thread is not None:
            return False

        def run() -> None:
            while not self._schedule_stop.wait(interval):
                try:
                    self.audit(connection, self._schedule_stop)
                except (ImgForgeError, OSError) as e:
                    logger.warning(f"Scheduled audit failed: {e}")

        self._schedule_thread = threading.Thread(target=run, name="imgforge-audit", daemon=True)
        self._schedule_thread.start()
        logger.info(f"Scheduled cache audits every {interval}s")
        return True

    def close(self, wait: bool = True) -> None:
        self._schedule_stop.set()
        self._writer.shutdown(wait=wait)
        self._maintenance.shutdown(wait=wait)
