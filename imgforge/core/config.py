"""
Global configuration dataclasses for imgforge.

This module defines the configuration objects used throughout the engine:
parameter defaults, cache key construction, cache store behaviour, audits,
source loading and the raster backend choice. Configuration is immutable and
provided as Python objects; `TransformConfig.from_settings` maps the flat
settings map supplied by a host application, and `load_config` reads the same
structure from a YAML file.
"""

import dataclasses
import logging
import typing
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import yaml

from imgforge.constants.constants import (
    ConnectionKind,
    DEFAULT_BG_COLOR,
    DEFAULT_CACHE_DURATION,
    DEFAULT_KEY_SEPARATOR,
    DEFAULT_MAX_CANVAS_DIMENSION,
    DEFAULT_MAX_FILENAME_LENGTH,
    DEFAULT_MAX_SOURCE_DIMENSION,
    DEFAULT_MAX_SOURCE_SIZE_MB,
    DEFAULT_OUTPUT_FORMAT,
    DEFAULT_PNG_QUALITY,
    DEFAULT_QUALITY,
    CACHE_INDEX_FILENAME,
    OrphanPolicy,
    OutputFormat,
    RasterBackendKind,
    UnknownParameterPolicy,
)
from imgforge.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_TRUE_STRINGS = frozenset({"y", "yes", "true", "1", "on"})
_FALSE_STRINGS = frozenset({"n", "no", "false", "0", "off", ""})


@dataclass(frozen=True)
class ParameterConfig:
    """Defaults and policies applied while normalizing request parameters."""
    unknown_parameter_policy: UnknownParameterPolicy = UnknownParameterPolicy.IGNORE
    """Whether unknown request parameters are ignored or rejected."""

    default_quality: int = DEFAULT_QUALITY
    """JPEG/WebP quality used when the request does not set one."""

    default_png_quality: int = DEFAULT_PNG_QUALITY
    """PNG compression level (0-9) used when the request does not set one."""

    default_bg_color: str = DEFAULT_BG_COLOR
    """Background colour for formats without transparency."""

    default_cache_duration: int = DEFAULT_CACHE_DURATION
    """Cache lifetime in seconds (-1 never expires, 0 disables caching)."""

    default_output_format: OutputFormat = DEFAULT_OUTPUT_FORMAT
    """Format used when neither the request nor the source decides one."""


@dataclass(frozen=True)
class KeyConfig:
    """Configuration for cache key construction."""
    separator: str = DEFAULT_KEY_SEPARATOR
    """Separator between the filename, ttl marker and parameter hash segments."""

    max_filename_length: int = DEFAULT_MAX_FILENAME_LENGTH
    """Cleaned filenames longer than this are truncated and disambiguated."""

    hash_filename: bool = False
    """Replace the readable filename segment with its hash."""


@dataclass(frozen=True)
class CacheConfig:
    """Configuration for the cache store."""
    build_lock_timeout: float = 30.0
    """Seconds a requester waits for another builder of the same key."""

    lock_poll_interval: float = 0.05
    """Polling interval while waiting on a build lock."""

    write_timeout: float = 10.0
    """Seconds allowed for one cache write before it is abandoned."""

    index_filename: str = CACHE_INDEX_FILENAME
    """Name of the side index kept next to the stored files."""

    stale_removal_workers: int = 1
    """Worker threads used for background removal of expired entries."""


@dataclass(frozen=True)
class AuditConfig:
    """Configuration for cache audits."""
    orphan_policy: OrphanPolicy = OrphanPolicy.INDEX
    """What to do with stored files that have no index record."""

    audit_interval: float = 0.0
    """Seconds between scheduled audits; 0 disables the schedule."""


@dataclass(frozen=True)
class SourceConfig:
    """Configuration for the default source loader."""
    fetch_timeout: float = 10.0
    """Timeout in seconds for remote source fetches."""

    base_path: Optional[Path] = None
    """Directory that relative local source references resolve against."""

    user_agent: str = "imgforge"
    """User-Agent header sent with remote fetches."""

    max_source_dimension: int = DEFAULT_MAX_SOURCE_DIMENSION
    """Longest side in pixels a source may have; 0 disables the check."""

    max_source_size: float = DEFAULT_MAX_SOURCE_SIZE_MB
    """Largest encoded source in megabytes; 0 disables the check."""

    auto_adjust: bool = False
    """Downscale sources that exceed a limit instead of rejecting them."""


@dataclass(frozen=True)
class RasterConfig:
    """Configuration for the raster backend."""
    backend: RasterBackendKind = RasterBackendKind.SKIMAGE
    """Raster library used for decoding, drawing and resampling."""

    max_canvas_dimension: int = DEFAULT_MAX_CANVAS_DIMENSION
    """Longest side in pixels any intermediate or output image may have."""


@dataclass(frozen=True)
class ConnectionSpec:
    """Declared storage connection, as read from settings."""
    name: str
    kind: ConnectionKind = ConnectionKind.LOCAL
    config: Dict[str, Any] = field(default_factory=dict)


def _default_connections() -> Tuple[ConnectionSpec, ...]:
    return (ConnectionSpec(name="local", kind=ConnectionKind.LOCAL),)


@dataclass(frozen=True)
class TransformConfig:
    """
    Root configuration object for a Transformer.

    Each section is its own frozen dataclass so that components only receive
    the part of the configuration they use.
    """
    parameters: ParameterConfig = field(default_factory=ParameterConfig)
    keys: KeyConfig = field(default_factory=KeyConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    raster: RasterConfig = field(default_factory=RasterConfig)

    connections: Tuple[ConnectionSpec, ...] = field(default_factory=_default_connections)
    """Configured storage connections."""

    default_connection: str = "local"
    """Name of the connection used when a request does not choose one."""

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> "TransformConfig":
        """
        Build a configuration from a host settings map.

        Section values may be given either nested (``{"cache": {...}}``) or
        flat (``{"build_lock_timeout": 5}``); field names are unique across
        sections. Connections are given as a list of mappings with ``name``,
        ``kind`` and the remaining keys as connection config, or as a mapping
        of name to such a mapping.

        Raises:
            ValidationError: If a value cannot be coerced to its field type
        """
        base = cls()
        sections = {}
        for section_field in dataclasses.fields(cls):
            current = getattr(base, section_field.name)
            if not dataclasses.is_dataclass(current):
                continue
            nested = settings.get(section_field.name)
            overrides = dict(nested) if isinstance(nested, Mapping) else {}
            for inner in dataclasses.fields(current):
                if inner.name in settings and inner.name not in overrides:
                    overrides[inner.name] = settings[inner.name]
            if overrides:
                sections[section_field.name] = _apply_overrides(current, overrides)

        if "connections" in settings:
            sections["connections"] = _parse_connections(settings["connections"])
        if "default_connection" in settings:
            sections["default_connection"] = str(settings["default_connection"])

        config = dataclasses.replace(base, **sections)
        logger.debug(f"Built TransformConfig from settings: {sorted(sections)}")
        return config


def load_config(path: Union[str, Path]) -> TransformConfig:
    """Load a TransformConfig from a YAML file."""
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, Mapping):
        raise ValidationError(f"Configuration file {path} must contain a mapping")
    logger.info(f"Loaded configuration from {path}")
    return TransformConfig.from_settings(data)


def _apply_overrides(section: Any, overrides: Mapping[str, Any]) -> Any:
    known = {f.name: f for f in dataclasses.fields(section)}
    changes = {}
    for name, raw in overrides.items():
        if name not in known:
            logger.warning(f"Ignoring unknown {type(section).__name__} setting '{name}'")
            continue
        changes[name] = _coerce(known[name].type, raw, name)
    return dataclasses.replace(section, **changes)


def _coerce(annotation: Any, raw: Any, name: str) -> Any:
    """Coerce a settings value to the annotated field type."""
    origin = typing.get_origin(annotation)
    if origin is Union:
        if raw is None:
            return None
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        return _coerce(args[0], raw, name)

    try:
        if isinstance(annotation, type) and issubclass(annotation, Enum):
            return raw if isinstance(raw, annotation) else annotation(str(raw).strip().lower())
        if annotation is bool:
            if isinstance(raw, bool):
                return raw
            text = str(raw).strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
            raise ValueError(f"not a boolean: {raw!r}")
        if annotation is int:
            return int(str(raw).strip())
        if annotation is float:
            return float(str(raw).strip())
        if annotation is Path:
            return Path(raw).expanduser()
        if annotation is str:
            return str(raw)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid value for setting '{name}': {raw!r} ({e})") from e
    return raw


def _parse_connections(raw: Any) -> Tuple[ConnectionSpec, ...]:
    if isinstance(raw, Mapping):
        items = [dict(value, name=name) for name, value in raw.items()]
    elif isinstance(raw, (list, tuple)):
        items = [dict(item) for item in raw]
    else:
        raise ValidationError(f"'connections' must be a list or mapping, got {type(raw).__name__}")

    specs = []
    for item in items:
        name = item.pop("name", None)
        if not name:
            raise ValidationError(f"Connection definition without a name: {item}")
        kind = _coerce(ConnectionKind, item.pop("kind", item.pop("type", "local")), "kind")
        nested = item.pop("config", None)
        config = dict(nested) if isinstance(nested, Mapping) else {}
        config.update(item)
        specs.append(ConnectionSpec(name=str(name), kind=kind, config=config))
    return tuple(specs)
