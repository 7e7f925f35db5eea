"""
Parameter registry.

The registry is the fixed table of every request parameter the engine accepts,
each classified as control, dimensional or transformational with a default and
a validator. It is built once per configuration and is immutable afterwards.
"""

import functools
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional

from imgforge.constants.constants import ParameterKind
from imgforge.core.config import ParameterConfig
from imgforge.parameters import validators as v

logger = logging.getLogger(__name__)

CONTROL = ParameterKind.CONTROL
DIMENSIONAL = ParameterKind.DIMENSIONAL
TRANSFORMATIONAL = ParameterKind.TRANSFORMATIONAL


@dataclass(frozen=True)
class ParameterEntry:
    """One registry row."""
    name: str
    kind: ParameterKind
    default: Any
    validator: v.Validator
    structural: bool = False
    """Kept verbatim; an unparseable value skips its operation instead of defaulting."""

    axis: Optional[str] = None
    """Source axis ('x', 'y' or 'long') that percentage dimensions resolve against."""


class ParameterRegistry:
    """Immutable name → ParameterEntry mapping."""

    def __init__(self, entries: List[ParameterEntry]):
        table: Dict[str, ParameterEntry] = {}
        for entry in entries:
            if entry.name in table:
                raise ValueError(f"Duplicate parameter registration: {entry.name}")
            table[entry.name] = entry
        self._entries: Mapping[str, ParameterEntry] = MappingProxyType(table)

    def __getitem__(self, name: str) -> ParameterEntry:
        return self._entries[name]

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> List[ParameterEntry]:
        return list(self._entries.values())

    def names(self, kind: ParameterKind) -> List[str]:
        return [name for name, entry in self._entries.items() if entry.kind is kind]

    def kind_of(self, name: str) -> ParameterKind:
        return self._entries[name].kind

    def defaults(self) -> Dict[str, Any]:
        return {name: entry.default for name, entry in self._entries.items()}


def build_registry(config: ParameterConfig = ParameterConfig()) -> ParameterRegistry:
    """Build the parameter table with configuration-driven defaults."""
    def control(name, default=None, validator=v.as_string):
        return ParameterEntry(name, CONTROL, default, validator)

    def dimension(name, axis):
        return ParameterEntry(name, DIMENSIONAL, None, v.as_dimension, axis=axis)

    def transform(name, default=None, validator=v.as_spec, structural=False):
        return ParameterEntry(name, TRANSFORMATIONAL, default, validator, structural=structural)

    entries = [
        # Control: routing and caching only, never pixels
        control("src"),
        control("filename"),
        control("filename_prefix"),
        control("filename_suffix"),
        control("cache", config.default_cache_duration, v.as_duration),
        control("cache_dir"),
        control("overwrite_cache", False, v.as_bool),
        control("connection"),
        control("debug", False, v.as_bool),
        control("fallback_src"),
        # passed through to the host on TransformResult.host_options
        control("output"),
        control("url_only", False, v.as_bool),
        control("lazy", False, v.as_bool),
        control("default_img_width", None, v.as_dimension),
        control("default_img_height", None, v.as_dimension),

        # Dimensional
        dimension("width", "x"),
        dimension("height", "y"),
        dimension("max", "long"),
        dimension("max_width", "x"),
        dimension("max_height", "y"),
        dimension("min", "long"),
        dimension("min_width", "x"),
        dimension("min_height", "y"),

        # Transformational
        transform("allow_scale_larger", False, v.as_bool),
        transform("auto_sharpen", False, v.as_bool),
        transform("bg_color", v.as_color(config.default_bg_color), v.as_color),
        transform("border", structural=True),
        transform("crop", structural=True),
        transform("filter", structural=True),
        transform("fit", None, v.choice(["contain", "cover", "fill"])),
        transform("flip", None, v.as_flip),
        transform("interlace", False, v.as_bool),
        transform("mask", structural=True),
        transform("png_quality", config.default_png_quality, v.int_range(0, 9)),
        transform("quality", config.default_quality, v.int_range(0, 100)),
        transform("reflection", structural=True),
        transform("rotate", None, v.as_float),
        transform("rounded_corners", structural=True),
        transform("save_type", None, v.as_format),
        transform("text", structural=True),
        transform("watermark", structural=True),
        transform("sharpen", structural=True),
        transform("contrast", None, v.int_range(-100, 100)),
        transform("brightness", None, v.int_range(-255, 255)),
        transform("blur", None, v.int_range(1, 10)),
        transform("pixelate", None, v.int_range(0)),
        transform("grayscale", False, v.as_bool),
        transform("sepia", None, v.choice(["fast", "slow"], aliases={"y": "slow", "yes": "slow"})),
        transform("negate", False, v.as_bool),
        transform("colorize", structural=True),
        transform("opacity", None, v.int_range(0, 100)),
        transform("dominant_color", False, v.as_bool),
        transform("replace_colors", structural=True),
    ]
    registry = ParameterRegistry(entries)
    logger.debug(f"Built parameter registry with {len(registry)} entries")
    return registry


@functools.lru_cache(maxsize=8)
def registry_for(config: ParameterConfig) -> ParameterRegistry:
    """Shared registry for a configuration; configurations are frozen and hashable."""
    return build_registry(config)


PARAMETER_REGISTRY = registry_for(ParameterConfig())
