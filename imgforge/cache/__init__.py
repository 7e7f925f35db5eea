"""
Cache layer for imgforge: key derivation, named connections and the store.
"""

from imgforge.cache.connections import ConnectionManager, NamedConnection
from imgforge.cache.keys import (
    clean_filename,
    derive_key,
    encode_ttl_marker,
    parse_ttl_from_key,
    source_prefix,
)
from imgforge.cache.store import AuditHandle, AuditReport, CacheStore

__all__ = [
    "AuditHandle",
    "AuditReport",
    "CacheStore",
    "ConnectionManager",
    "NamedConnection",
    "clean_filename",
    "derive_key",
    "encode_ttl_marker",
    "parse_ttl_from_key",
    "source_prefix",
]
