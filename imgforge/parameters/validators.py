"""
Parameter validators.

Each validator takes a raw request value (normally a string) and returns the
typed value or raises ValidationError. Validators are plain callables so that
registry entries can be declared as data.
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from imgforge.constants.constants import OUTPUT_FORMAT_ALIASES
from imgforge.core.duration import parse_duration
from imgforge.core.exceptions import ValidationError
from imgforge.raster.colors import parse_color, to_hex

Validator = Callable[[Any], Any]

_TRUE = {"y", "yes", "true", "on", "1"}
_FALSE = {"n", "no", "false", "off", "0", ""}
_DIMENSION = re.compile(r"^(-?\d+(?:\.\d+)?)\s*(px|%)?$")


@dataclass(frozen=True)
class Percentage:
    """A dimension expressed relative to the source image."""
    value: float

    def resolve(self, reference: int) -> int:
        return int(round(reference * self.value / 100.0))

    def __str__(self) -> str:
        return f"{self.value:g}%"


Dimension = Union[int, Percentage]


def _text(raw: Any) -> str:
    if raw is None:
        return ""
    return str(raw).strip()


def as_string(raw: Any) -> Optional[str]:
    text = _text(raw)
    return text or None


def as_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    text = _text(raw).lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValidationError(f"Expected a yes/no value, got {raw!r}")


def int_range(low: Optional[int] = None, high: Optional[int] = None) -> Validator:
    """Integer validator; out-of-range values are rejected."""
    def validate(raw: Any) -> Optional[int]:
        text = _text(raw)
        if not text:
            return None
        try:
            value = int(round(float(text)))
        except (ValueError, OverflowError) as e:
            raise ValidationError(f"Expected an integer, got {raw!r}") from e
        if (low is not None and value < low) or (high is not None and value > high):
            raise ValidationError(f"Value {value} outside range [{low}, {high}]")
        return value
    return validate


def as_float(raw: Any) -> Optional[float]:
    text = _text(raw)
    if not text:
        return None
    try:
        value = float(text)
    except ValueError as e:
        raise ValidationError(f"Expected a number, got {raw!r}") from e
    if not math.isfinite(value):
        raise ValidationError(f"Expected a finite number, got {raw!r}")
    return value


def as_dimension(raw: Any) -> Optional[Dimension]:
    """Pixels (``120`` or ``120px``) or a percentage of the source (``50%``)."""
    text = _text(raw).lower()
    if not text:
        return None
    match = _DIMENSION.match(text)
    if not match:
        raise ValidationError(f"Invalid dimension {raw!r}")
    number, unit = float(match.group(1)), match.group(2)
    if number < 0:
        raise ValidationError(f"Dimension must not be negative: {raw!r}")
    if unit == "%":
        return Percentage(number)
    return int(round(number))


def as_color(raw: Any) -> Optional[str]:
    """Canonical ``#rrggbb`` (or ``#rrggbbaa`` when not opaque)."""
    text = _text(raw)
    if not text:
        return None
    rgba = parse_color(text)
    return to_hex(rgba) if rgba[3] == 255 else to_hex(rgba) + f"{rgba[3]:02x}"


def choice(options: Iterable[str], aliases: Optional[Mapping[str, str]] = None) -> Validator:
    allowed = frozenset(options)
    aliases = dict(aliases or {})

    def validate(raw: Any) -> Optional[str]:
        text = _text(raw).lower()
        if not text:
            return None
        text = aliases.get(text, text)
        if text not in allowed:
            raise ValidationError(f"{raw!r} is not one of {sorted(allowed)}")
        return text
    return validate


def as_duration(raw: Any) -> int:
    return parse_duration(raw if isinstance(raw, int) else _text(raw))


def as_format(raw: Any) -> Optional[str]:
    text = _text(raw).lower().lstrip(".")
    if not text:
        return None
    if text not in OUTPUT_FORMAT_ALIASES:
        raise ValidationError(f"Unsupported output format {raw!r}")
    return OUTPUT_FORMAT_ALIASES[text].value


as_flip = choice(
    ["h", "v", "both"],
    aliases={"horizontal": "h", "vertical": "v", "hv": "both", "vh": "both", "h|v": "both", "v|h": "both"},
)


def as_spec(raw: Any) -> Optional[str]:
    """Structured specification kept verbatim; parsed by the operation that uses it."""
    text = _text(raw)
    return text or None
