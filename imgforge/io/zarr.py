"""
Zarr cache backend.

Each payload is stored as a one-dimensional ``uint8`` array named by its key
(keys containing ``/`` create nested groups); the array attributes carry the
write time. The side index lives in the root group's attributes.

The same backend serves the object-store connection kinds: an ``s3://`` URL
plus ``storage_options`` is handed to zarr, which resolves it through fsspec
(``s3fs`` must be installed for those kinds).
"""

import logging
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np
import zarr

from imgforge.constants.constants import ConnectionKind
from imgforge.core.exceptions import BackendInitError
from imgforge.core.xdg_paths import get_imgforge_cache_dir
from imgforge.io.base import CacheBackend, EntryStat, IndexEntries, IndexUpdate, validate_key
from imgforge.io.exceptions import IndexWriteError, StorageWriteError

logger = logging.getLogger(__name__)

INDEX_ATTR = "cache_index"
MTIME_ATTR = "mtime"
DEFAULT_STORE_NAME = "imgforge-cache.zarr"


def object_store_location(kind: ConnectionKind, config: Mapping[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """
    Map an object-store connection to a zarr URL and fsspec storage options.

    Raises:
        KeyError: If a required connection field is missing
    """
    store_name = config.get("path") or DEFAULT_STORE_NAME
    options: Dict[str, Any] = {"key": config["key"], "secret": config["secret"]}

    if kind is ConnectionKind.S3:
        bucket = config["bucket"]
        options["client_kwargs"] = {"region_name": config["region"]}
    elif kind is ConnectionKind.R2:
        bucket = config["bucket"]
        options["client_kwargs"] = {
            "endpoint_url": f"https://{config['account_id']}.r2.cloudflarestorage.com",
            "region_name": "auto",
        }
    elif kind is ConnectionKind.DOSPACES:
        bucket = config["space"]
        options["client_kwargs"] = {
            "endpoint_url": f"https://{config['region']}.digitaloceanspaces.com",
            "region_name": config["region"],
        }
    else:
        raise ValueError(f"{kind.value} is not an object-store connection")

    return f"s3://{bucket}/{str(store_name).strip('/')}", options


class ZarrCacheBackend(CacheBackend):
    """
    Cache backend over a zarr group.

    Args:
        location: Local directory or fsspec URL of the zarr store
        storage_options: Options passed to fsspec for remote URLs
        kind: Connection kind this backend serves
    """

    def __init__(self, location: Union[str, Path], storage_options: Optional[Dict[str, Any]] = None,
                 kind: ConnectionKind = ConnectionKind.ZARR):
        self.location = str(location)
        self.kind = kind
        self._lock = threading.RLock()
        try:
            if storage_options:
                self.group = zarr.open_group(self.location, mode="a", storage_options=storage_options)
            else:
                self.group = zarr.open_group(self.location, mode="a")
        except (ImportError, OSError, ValueError) as e:
            raise BackendInitError(f"Cannot open zarr cache store {self.location}: {e}") from e
        logger.debug(f"Opened zarr cache store {self.location}")

    @classmethod
    def from_connection(cls, kind: ConnectionKind, config: Mapping[str, Any]) -> "ZarrCacheBackend":
        if kind is ConnectionKind.ZARR:
            location = config.get("path") or (get_imgforge_cache_dir() / DEFAULT_STORE_NAME)
            return cls(Path(location).expanduser(), kind=kind)
        url, options = object_store_location(kind, config)
        return cls(url, options, kind=kind)

    def __repr__(self) -> str:
        return f"ZarrCacheBackend({self.location})"

    def _array(self, key: str) -> "zarr.Array":
        validate_key(key)
        try:
            node = self.group[key]
        except KeyError:
            raise FileNotFoundError(f"Zarr cache entry not found: {key}") from None
        if not isinstance(node, zarr.Array):
            raise FileNotFoundError(f"Zarr cache key is a group, not an entry: {key}")
        return node

    def read(self, key: str) -> bytes:
        with self._lock:
            return self._array(key)[:].tobytes()

    def write(self, key: str, data: bytes) -> None:
        validate_key(key)
        payload = np.frombuffer(data, dtype=np.uint8)
        with self._lock:
            try:
                array = self.group.create_dataset(
                    key,
                    data=payload,
                    chunks=(max(1, payload.size),),
                    compressor=None,
                    overwrite=True,
                )
                array.attrs[MTIME_ATTR] = time.time()
            except (OSError, ValueError, TypeError) as e:
                raise StorageWriteError(f"Failed to write zarr cache entry {key}: {e}") from e

    def delete(self, key: str) -> bool:
        with self._lock:
            try:
                self._array(key)
            except FileNotFoundError:
                return False
            del self.group[key]
            return True

    def list_keys(self) -> List[str]:
        keys = []

        def collect(name: str, node: Any) -> None:
            if isinstance(node, zarr.Array):
                keys.append(name)

        with self._lock:
            self.group.visititems(collect)
        return sorted(keys)

    def stat(self, key: str) -> EntryStat:
        with self._lock:
            array = self._array(key)
            return EntryStat(size=int(array.shape[0]), mtime=float(array.attrs.get(MTIME_ATTR, 0.0)))

    def load_index(self) -> IndexEntries:
        with self._lock:
            return dict(self.group.attrs.get(INDEX_ATTR, {}))

    def update_index(self, update_func: IndexUpdate) -> IndexEntries:
        with self._lock:
            try:
                entries = update_func(dict(self.group.attrs.get(INDEX_ATTR, {})))
                self.group.attrs[INDEX_ATTR] = entries
            except (OSError, TypeError, ValueError) as e:
                raise IndexWriteError(f"Failed to update zarr cache index {self.location}: {e}") from e
            return entries
