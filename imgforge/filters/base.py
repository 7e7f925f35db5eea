"""
Shared building blocks for filter implementations.

A filter is a plain function ``(backend, image, args, context) -> image``
tagged with `filter_definition`. `FilterArgs` reads positional tokens with
per-filter defaults and clamping; `FilterContext` carries the per-request
collaborators a few filters need (random generator, source loader, output
format).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence, Tuple

import numpy as np

from imgforge.constants.constants import OutputFormat, WHITE
from imgforge.core.exceptions import FilterSkipped, ValidationError
from imgforge.raster.base import Color, RasterBackend, RasterImage
from imgforge.raster.colors import parse_color

logger = logging.getLogger(__name__)

FilterFunc = Callable[[RasterBackend, RasterImage, "FilterArgs", "FilterContext"], RasterImage]
SourceLoader = Callable[[str], bytes]


@dataclass(frozen=True)
class FilterMeta:
    """Registration metadata attached to a filter function."""
    name: str
    aliases: Tuple[str, ...] = ()
    defaults: Tuple[Any, ...] = ()


def filter_definition(name: str, *aliases: str, defaults: Sequence[Any] = ()):
    """Tag a function as a filter; the registry collects tagged functions."""
    def decorator(func: FilterFunc) -> FilterFunc:
        func.filter_meta = FilterMeta(name, tuple(aliases), tuple(defaults))
        return func
    return decorator


@dataclass
class FilterContext:
    """Per-request collaborators available to filters."""
    rng: np.random.Generator = field(default_factory=np.random.default_rng)
    source_loader: Optional[SourceLoader] = None
    output_format: Optional[OutputFormat] = None
    background: Color = WHITE

    def load_image(self, backend: RasterBackend, reference: str) -> RasterImage:
        """Load an auxiliary image (mask, watermark); failures skip the filter."""
        if self.source_loader is None:
            raise FilterSkipped(f"No source loader available to fetch '{reference}'")
        try:
            return backend.decode(self.source_loader(reference))
        except FilterSkipped:
            raise
        except Exception as e:
            raise FilterSkipped(f"Unable to load auxiliary image '{reference}': {e}") from e

    @property
    def supports_alpha(self) -> bool:
        return self.output_format is None or self.output_format.supports_alpha


class FilterArgs:
    """
    Positional argument reader.

    Missing or empty tokens fall back to the filter's defaults. Numeric values
    are clamped to the filter's range; tokens that cannot be parsed raise
    ValidationError.
    """

    def __init__(self, tokens: Sequence[str], defaults: Sequence[Any] = ()):
        self.tokens = tuple(str(t).strip() for t in tokens)
        self.defaults = tuple(defaults)

    def __len__(self) -> int:
        return len(self.tokens)

    def raw(self, index: int) -> Any:
        if index < len(self.tokens) and self.tokens[index] != "":
            return self.tokens[index]
        if index < len(self.defaults):
            return self.defaults[index]
        return None

    def has(self, index: int) -> bool:
        return index < len(self.tokens) and self.tokens[index] != ""

    def text(self, index: int, default: Optional[str] = None) -> Optional[str]:
        value = self.raw(index)
        return default if value is None else str(value)

    def number(self, index: int, low: Optional[float] = None, high: Optional[float] = None,
               default: Optional[float] = None) -> Optional[float]:
        value = self.raw(index)
        if value is None:
            return default
        try:
            number = float(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Argument {index + 1} must be numeric, got {value!r}") from e
        if not np.isfinite(number):
            raise ValidationError(f"Argument {index + 1} must be finite, got {value!r}")
        if low is not None:
            number = max(low, number)
        if high is not None:
            number = min(high, number)
        return number

    def integer(self, index: int, low: Optional[int] = None, high: Optional[int] = None,
                default: Optional[int] = None) -> Optional[int]:
        number = self.number(index, low, high, default)
        return None if number is None else int(round(number))

    def color(self, index: int, default: Optional[Color] = None) -> Optional[Color]:
        value = self.raw(index)
        if value in (None, ""):
            return default
        return parse_color(str(value))

    def dimension(self, index: int, reference: int, default: Optional[int] = None) -> Optional[int]:
        """Pixels or a percentage of ``reference``."""
        value = self.raw(index)
        if value is None:
            return default
        return parse_dimension(value, reference)

    def choice(self, index: int, options: Sequence[str], default: Optional[str] = None) -> Optional[str]:
        value = self.text(index, default)
        if value is None:
            return None
        value = value.lower()
        if value not in options:
            raise ValidationError(f"Argument {index + 1} must be one of {list(options)}, got {value!r}")
        return value


def parse_dimension(value: Any, reference: int) -> int:
    """Resolve ``12``, ``12px`` or ``50%`` against ``reference``."""
    text = str(value).strip().lower()
    try:
        if text.endswith("%"):
            return int(round(float(text[:-1]) / 100.0 * reference))
        if text.endswith("px"):
            text = text[:-2]
        return int(round(float(text)))
    except (ValueError, OverflowError) as e:
        raise ValidationError(f"Invalid dimension {value!r}") from e


def clamp_channels(values: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)
