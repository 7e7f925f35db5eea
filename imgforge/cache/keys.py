"""
Cache key derivation.

A key has three segments joined by the separator (``_-_`` by default)::

    {clean_filename}_-_{ttl_marker}_-_{parameter_hash}

The cleaned filename keeps keys readable and lets every entry derived from one
source be found by prefix. The ttl marker records the cache lifetime so that
an audit can expire entries even without an index record. The parameter hash
covers the source reference and every dimensional and transformational value,
so control parameters (output naming, cache routing) never change the key.
"""

import hashlib
import json
import logging
import re
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Mapping, Optional
from urllib.parse import unquote, urlparse

from imgforge.constants.constants import (
    FILENAME_SPECIAL_CHARACTERS,
    PERPETUAL_CACHE,
    PERPETUAL_TTL_MARKER,
)
from imgforge.core.config import KeyConfig

logger = logging.getLogger(__name__)

_HEX = re.compile(r"^[0-9a-f]+$")
_UNSAFE = re.compile("[" + re.escape("".join(sorted(FILENAME_SPECIAL_CHARACTERS))) + r"\s]")
TRUNCATION_SUFFIX_LENGTH = 8


def _source_stem(source_ref: str) -> str:
    parsed = urlparse(source_ref)
    path = parsed.path if parsed.scheme and parsed.netloc else source_ref
    path = unquote(path).replace("\\", "/")
    return PurePosixPath(path).stem


def clean_filename(source_ref: str, config: KeyConfig = KeyConfig()) -> str:
    """
    Filesystem-safe, lowercase name segment for ``source_ref``.

    Never contains ``-``, so the key separator cannot occur inside it.
    """
    stem = _source_stem(str(source_ref))
    if not stem:
        stem = hashlib.sha1(str(source_ref).encode("utf-8")).hexdigest()
    name = _UNSAFE.sub("_", stem).lower()

    if config.hash_filename:
        return hashlib.sha1(name.encode("utf-8")).hexdigest()

    limit = max(config.max_filename_length, TRUNCATION_SUFFIX_LENGTH + 2)
    if len(name) > limit:
        suffix = hashlib.blake2b(name.encode("utf-8"), digest_size=TRUNCATION_SUFFIX_LENGTH // 2).hexdigest()
        name = f"{name[:limit - TRUNCATION_SUFFIX_LENGTH - 1]}_{suffix}"
    return name


def encode_ttl_marker(ttl_seconds: int) -> str:
    """Lowercase hex of the ttl; perpetual entries use the fixed marker."""
    if ttl_seconds <= PERPETUAL_CACHE:
        return PERPETUAL_TTL_MARKER
    return format(int(ttl_seconds), "x")


def _canonical(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return str(value)


def parameter_hash(source_ref: str, parameters: Mapping[str, Any]) -> str:
    """blake2b-160 of the canonical JSON of the source and parameters."""
    payload = json.dumps({"src": str(source_ref), "params": dict(parameters)},
                         sort_keys=True, separators=(",", ":"), default=_canonical)
    return hashlib.blake2b(payload.encode("utf-8"), digest_size=20).hexdigest()


def derive_key(source_ref: str, dimensional: Mapping[str, Any], transformational: Mapping[str, Any],
               ttl_marker: str, config: KeyConfig = KeyConfig()) -> str:
    """
    Derive the cache key for a transform.

    Args:
        source_ref: Source image reference
        dimensional: Normalized dimensional parameters
        transformational: Normalized transformational parameters
        ttl_marker: Output of `encode_ttl_marker`
        config: Key construction settings

    Returns:
        The key, without a file extension
    """
    params = {**dict(dimensional), **dict(transformational)}
    sep = config.separator
    key = f"{clean_filename(source_ref, config)}{sep}{ttl_marker}{sep}{parameter_hash(source_ref, params)}"
    logger.debug(f"Derived cache key {key} for {source_ref}")
    return key


def parse_ttl_from_key(key: str, separator: str = KeyConfig.separator) -> Optional[int]:
    """
    Recover the ttl encoded in a key, or None when the key carries no marker.

    Directory prefixes and a trailing file extension are ignored. Segments are
    scanned from the end, skipping the parameter hash.
    """
    name = key.rsplit("/", 1)[-1]
    stem, dot, _ = name.rpartition(".")
    if dot:
        name = stem
    segments = name.split(separator)
    if len(segments) < 3:
        return None
    for segment in reversed(segments[1:-1]):
        if segment == PERPETUAL_TTL_MARKER:
            return PERPETUAL_CACHE
        if _HEX.match(segment):
            return int(segment, 16)
    return None


def source_prefix(source_ref: str, config: KeyConfig = KeyConfig()) -> str:
    """Stable prefix shared by every key derived from ``source_ref``."""
    return f"{clean_filename(source_ref, config)}{config.separator}"
